import json
import logging
import queue
import threading
import uuid
from collections import defaultdict
from typing import Any, List, Optional

import redis
from redis.exceptions import RedisError

from keeva.core.config import settings
from keeva.domain.status import is_privileged
from keeva.interfaces.INotifier import INotifier

logger = logging.getLogger(__name__)

# Events
ORDERS_NEW = "orders:new"
ORDERS_STATUS = "orders:status"
ORDERS_CANCELLED = "orders:cancelled"
ORDERS_INIT = "orders:init"

STAFF_ROOM = "staff"

_OUTBOX_SIZE = 1000
_STOP = object()


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


class QueueSink:
    """Hands messages to a websocket's event loop without waiting on it."""

    def __init__(self, loop, queue):
        self.loop = loop
        self.queue = queue

    def deliver(self, message: dict):
        self.loop.call_soon_threadsafe(self.queue.put_nowait, message)


class RealtimeNotifier(INotifier):
    """Room-scoped fan-out of order events to connected clients.

    Every customer connection sits in its own user room, privileged roles
    also sit in the staff room. Delivery is best-effort: a dead connection
    is logged and skipped, never reported to the caller.

    With Redis, events are also published on ``channel`` by a background
    thread, and a listener thread relays other workers' events into the
    local rooms. Envelopes carry ``origin`` so a worker skips its own.
    """

    def __init__(self, redis_url: Optional[str] = settings.REDIS_URL,
                 channel: str = settings.EVENTS_CHANNEL, redis_client=None):
        self._lock = threading.RLock()
        self._connections = {}                 # connection_id -> sink
        self._owners = {}                      # connection_id -> authenticated user id
        self._rooms = defaultdict(set)         # room -> connection ids
        self._memberships = defaultdict(set)   # connection_id -> rooms
        self.channel = channel
        self.instance_id = uuid.uuid4().hex

        self._outbox = queue.Queue(maxsize=_OUTBOX_SIZE)
        self._stopping = threading.Event()
        self._threads = []
        self._pubsub = None

        # Cross-worker fan-out (optional)
        self.redis = redis_client
        self.redis_available = redis_client is not None
        if self.redis is None and redis_url:
            try:
                self.redis = redis.from_url(
                    redis_url,
                    decode_responses=True,
                    socket_connect_timeout=1,
                    socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
                )
                self.redis.ping()
                self.redis_available = True
                logger.info("✅ RealtimeNotifier: connected to Redis")
            except RedisError as e:
                logger.warning(f"⚠️ RealtimeNotifier: Redis unreachable ({e}), in-process delivery only")
                self.redis_available = False

        if self.redis_available:
            self._start_workers()

    # --- connection registry ---

    def connect(self, connection_id: str, user_id: str, sink) -> None:
        with self._lock:
            self._connections[connection_id] = sink
            self._owners[connection_id] = str(user_id)

    def disconnect(self, connection_id: str) -> None:
        with self._lock:
            self._connections.pop(connection_id, None)
            self._owners.pop(connection_id, None)
            for room in self._memberships.pop(connection_id, set()):
                members = self._rooms.get(room)
                if members is not None:
                    members.discard(connection_id)
                    if not members:
                        del self._rooms[room]

    def join(self, connection_id: str, user_id: str, role: str) -> bool:
        """Put a connection in its rooms. Joining twice changes nothing.

        Only the user the socket authenticated as may join it to rooms.
        """
        rooms = {user_room(user_id)}
        if is_privileged(role):
            rooms.add(STAFF_ROOM)

        with self._lock:
            if connection_id not in self._connections:
                return False
            if self._owners.get(connection_id) != str(user_id):
                logger.warning(f"⚠️ User {user_id} tried to join socket {connection_id} owned by someone else")
                return False
            for room in rooms:
                self._rooms[room].add(connection_id)
            self._memberships[connection_id].update(rooms)
        return True

    def is_connected(self, connection_id: str) -> bool:
        with self._lock:
            return connection_id in self._connections

    # --- delivery ---

    def emit(self, event: str, payload: Any, target_user_id: Optional[str] = None) -> None:
        message = {"event": event, "data": payload}
        self._fan_out(message, target_user_id)
        self._enqueue_publish(message, target_user_id)

    def send_snapshot(self, connection_id: str, user_id: str, role: str, orders: List[dict]) -> bool:
        """Join-then-replay: subscribe the socket, then push the current order list."""
        if not self.join(connection_id, user_id, role):
            logger.info(f"Snapshot skipped, socket {connection_id} is not connected for user {user_id}")
            return False
        with self._lock:
            sink = self._connections.get(connection_id)
        if sink is None:
            return False
        return self._deliver(connection_id, sink, {"event": ORDERS_INIT, "data": orders})

    def close(self) -> None:
        """Stop the Redis threads; queued publishes are flushed first."""
        if self._stopping.is_set():
            return
        self._stopping.set()
        if self._threads:
            self._outbox.put(_STOP)
        for thread in self._threads:
            thread.join(timeout=5)
        if self._pubsub is not None:
            try:
                self._pubsub.close()
            except RedisError as e:
                logger.warning(f"⚠️ Closing Redis subscription failed: {e}")

    def _fan_out(self, message: dict, target_user_id: Optional[str]) -> None:
        with self._lock:
            if target_user_id is None:
                recipients = set(self._connections)
            else:
                recipients = self._rooms.get(user_room(str(target_user_id)), set()) | self._rooms.get(STAFF_ROOM, set())
            sinks = [(cid, self._connections[cid]) for cid in recipients if cid in self._connections]

        for connection_id, sink in sinks:
            self._deliver(connection_id, sink, message)

    def _deliver(self, connection_id: str, sink, message: dict) -> bool:
        try:
            sink.deliver(message)
            return True
        except Exception as e:
            logger.warning(f"⚠️ Dropping {message['event']} for socket {connection_id}: {e}")
            return False

    # --- redis ---

    def _start_workers(self) -> None:
        publisher = threading.Thread(target=self._publish_loop, name="notifier-publish", daemon=True)
        self._threads.append(publisher)

        try:
            self._pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
            self._pubsub.subscribe(self.channel)
            listener = threading.Thread(target=self._listen_loop, name="notifier-listen", daemon=True)
            self._threads.append(listener)
        except RedisError as e:
            logger.warning(f"⚠️ RealtimeNotifier: cannot subscribe to {self.channel} ({e}), publishing only")
            self._pubsub = None

        for thread in self._threads:
            thread.start()

    def _enqueue_publish(self, message: dict, target_user_id: Optional[str]) -> None:
        if not self.redis_available or self._stopping.is_set():
            return
        envelope = dict(
            message,
            target=str(target_user_id) if target_user_id is not None else None,
            origin=self.instance_id,
        )
        try:
            self._outbox.put_nowait(json.dumps(envelope, default=str))
        except queue.Full:
            logger.warning(f"⚠️ Redis outbox full, {message['event']} stays local")

    def _publish_loop(self) -> None:
        while True:
            data = self._outbox.get()
            if data is _STOP:
                return
            if not self.redis_available:
                continue
            try:
                self.redis.publish(self.channel, data)
            except RedisError as e:
                logger.error(f"❌ Redis publish failed: {e}. Switching to in-process delivery.")
                self.redis_available = False

    def _listen_loop(self) -> None:
        while not self._stopping.is_set() and self.redis_available:
            try:
                message = self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except RedisError as e:
                logger.error(f"❌ Redis subscription lost: {e}. Switching to in-process delivery.")
                self.redis_available = False
                return
            if message and message.get("type") == "message":
                self._relay(message.get("data"))

    def _relay(self, raw) -> None:
        try:
            envelope = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"⚠️ Ignoring malformed event on {self.channel}")
            return
        if envelope.get("origin") == self.instance_id or not envelope.get("event"):
            return
        message = {"event": envelope["event"], "data": envelope.get("data")}
        self._fan_out(message, envelope.get("target"))
