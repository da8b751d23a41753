import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from keeva.core.config import settings
from keeva.core.errors import KeevaError

# 1. Infrastructure & Domain Imports
from keeva.domain import models  # noqa: F401  (registers tables on Base)
from keeva.infrastructure.database import Base, SessionLocal, engine
from keeva.infrastructure.notification_service import RealtimeNotifier
from keeva.infrastructure.payment_gateway import RazorpayGateway
from keeva.infrastructure.repositories.order_repository import SqlAlchemyOrderRepository
from keeva.infrastructure.repositories.user_repository import SqlAlchemyUserRepository
from keeva.application.checkout import CheckoutService
from keeva.application.lifecycle import OrderLifecycleManager
from keeva.interfaces import order_routes, socket_routes

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------
# DATABASE CONNECTION (With Retry Logic)
# ---------------------------------------------------------
def wait_for_database(bind, retries: int = settings.DB_CONNECT_RETRIES,
                      wait_seconds: int = settings.DB_CONNECT_WAIT_SECONDS) -> None:
    for attempt in range(retries):
        try:
            logger.info(f"🔄 Attempting DB connection ({attempt + 1}/{retries})...")
            Base.metadata.create_all(bind=bind)
            logger.info("✅ DB Connected and Tables Created.")
            return
        except OperationalError:
            logger.warning(f"⚠️ DB not ready yet. Waiting {wait_seconds}s...")
            time.sleep(wait_seconds)
    raise RuntimeError(f"Could not connect to DB after {retries} attempts")


# ---------------------------------------------------------
# COMPOSITION ROOT
# ---------------------------------------------------------
def create_app(session_factory=SessionLocal, bind=engine, gateway=None, notifier=None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # Flush and stop the Redis fan-out threads
        app.state.notifier.close()

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)
    wait_for_database(bind)

    order_repo = SqlAlchemyOrderRepository(session_factory)
    user_repo = SqlAlchemyUserRepository(session_factory)
    notifier = notifier or RealtimeNotifier()
    gateway = gateway or RazorpayGateway()

    app.state.user_repo = user_repo
    app.state.notifier = notifier
    app.state.lifecycle = OrderLifecycleManager(order_repo, notifier)
    app.state.checkout = CheckoutService(order_repo, user_repo, gateway, notifier)

    # Include Routers
    app.include_router(order_routes.router)
    app.include_router(socket_routes.router)

    @app.exception_handler(KeevaError)
    async def keeva_error_handler(request: Request, exc: KeevaError):
        if exc.status_code >= 500:
            logger.error(f"❌ {request.method} {request.url.path}: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"ok": False, "message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def body_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"ok": False, "message": "Malformed request body"})

    @app.get("/")
    def health_check():
        return {"status": "active", "system": "Keeva Orders"}

    return app


app = create_app()
