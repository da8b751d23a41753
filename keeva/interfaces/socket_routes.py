import asyncio
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from keeva.core.errors import KeevaError
from keeva.infrastructure.notification_service import QueueSink
from keeva.interfaces.auth import actor_from_token

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws/orders")
async def orders_socket(websocket: WebSocket, token: Optional[str] = Query(default=None)):
    """Realtime order channel.

    The first frame carries the connection id; pass it as ``socketId`` to
    ``GET /orders/list`` to get the current orders pushed as ``orders:init``.
    """
    try:
        actor = actor_from_token(websocket.app.state.user_repo, token)
    except KeevaError as e:
        logger.info(f"Socket rejected: {e.message}")
        await websocket.close(code=1008)
        return

    await websocket.accept()
    notifier = websocket.app.state.notifier
    connection_id = uuid.uuid4().hex
    queue = asyncio.Queue()

    notifier.connect(connection_id, actor.user_id, QueueSink(asyncio.get_running_loop(), queue))
    notifier.join(connection_id, actor.user_id, actor.role)
    await websocket.send_json({"event": "connected", "connectionId": connection_id})

    async def pump():
        while True:
            message = await queue.get()
            await websocket.send_json(message)

    sender = asyncio.create_task(pump())
    try:
        while True:
            # Inbound frames are ignored, reading only detects the disconnect
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"Socket {connection_id} disconnected")
    finally:
        sender.cancel()
        notifier.disconnect(connection_id)
