import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from chatrelay.database.connection import close_mongo_connection, connect_to_mongo, get_database
from chatrelay.errors import install_error_handlers
from chatrelay.repositories.conversation_repository import ConversationRepository
from chatrelay.repositories.device_repository import DeviceRepository
from chatrelay.repositories.message_repository import MessageRepository
from chatrelay.repositories.notification_repository import NotificationRepository
from chatrelay.routers.chat import router as chat_router
from chatrelay.routers.conversations import router as conversations_router
from chatrelay.routers.devices import router as devices_router
from chatrelay.routers.notifications import router as notifications_router
from chatrelay.services.notification_service import NotificationService
from chatrelay.settings import settings
from chatrelay.utils.logging import configure_logging
from chatrelay.utils.notifications import build_push
from chatrelay.utils.realtime_bus import build_bus
from chatrelay.utils.websocket_manager import ConnectionManager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):

    configure_logging()
    db = await connect_to_mongo()
    for repo in (ConversationRepository(db), MessageRepository(db), NotificationRepository(db), DeviceRepository(db)):
        await repo.ensure_indexes()
    # one push client per process, handed to the fan-out engine
    push = build_push(settings)
    app.state.notifications = NotificationService(
        NotificationRepository(db),
        DeviceRepository(db),
        push,
        max_concurrency=settings.push_max_concurrency,
    )
    app.state.connections = ConnectionManager()
    app.state.bus = build_bus(settings, app.state.connections)
    logger.info("chatrelay started", extra={"push_enabled": push.enabled, "realtime_redis": app.state.bus.enabled})
    try:
        yield
    finally:
        await app.state.notifications.drain()
        await app.state.bus.close()
        await close_mongo_connection()


def create_app() -> FastAPI:
    app = FastAPI(title="chatrelay", lifespan=lifespan)
    install_error_handlers(app)

    app.include_router(conversations_router)
    app.include_router(chat_router)
    app.include_router(notifications_router)
    app.include_router(devices_router)

    @app.get("/")
    async def root():

        db = get_database()
        collections = await db.list_collection_names()
        return {"message": "Connected to MongoDB!", "collections": collections}

    return app


app = create_app()
