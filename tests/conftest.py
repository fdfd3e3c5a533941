import time

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from chatrelay.database.connection import mongo_db_dependency
from chatrelay.main import create_app
from chatrelay.repositories.conversation_repository import ConversationRepository
from chatrelay.repositories.device_repository import DeviceRepository
from chatrelay.repositories.message_repository import MessageRepository
from chatrelay.repositories.notification_repository import NotificationRepository
from chatrelay.services.chat_service import ChatService
from chatrelay.services.conversation_service import ConversationService
from chatrelay.services.notification_service import NotificationService
from chatrelay.settings import settings
from chatrelay.utils.notifications import DispatchOutcome
from chatrelay.utils.realtime_bus import LocalBus
from chatrelay.utils.websocket_manager import ConnectionManager


class FakePush:
    """Records dispatches; recipients can be set up to fail or blow up."""

    enabled = True

    def __init__(self) -> None:
        self.calls = []
        self.fail_for = set()
        self.raise_for = set()

    async def dispatch(self, recipient_id, tokens, payload):
        self.calls.append((recipient_id, list(tokens), payload))
        if recipient_id in self.raise_for:
            raise RuntimeError("gateway exploded")
        if recipient_id in self.fail_for:
            return DispatchOutcome(delivered=False, reason="rejected")
        return DispatchOutcome(delivered=True)

    @property
    def recipients(self):
        return sorted(call[0] for call in self.calls)


def make_token(user_id: str, ttl: int = 300) -> str:
    now = int(time.time())
    return jwt.encode({"sub": user_id, "iat": now, "exp": now + ttl}, settings.jwt_secret, algorithm=settings.jwt_algorithm)


@pytest.fixture
def auth():
    def _headers(user_id: str) -> dict:
        return {"Authorization": f"Bearer {make_token(user_id)}"}

    return _headers


@pytest.fixture
def token():
    return make_token


@pytest.fixture
def db():
    return AsyncMongoMockClient(tz_aware=True)["chatrelay_test"]


@pytest.fixture
def push():
    return FakePush()


@pytest.fixture
def devices(db):
    return DeviceRepository(db)


@pytest_asyncio.fixture
async def notification_service(db, devices, push):
    service = NotificationService(NotificationRepository(db), devices, push, max_concurrency=2)
    try:
        yield service
    finally:
        await service.drain()


@pytest.fixture
def conversation_service(db):
    return ConversationService(ConversationRepository(db))


@pytest.fixture
def chat_service(db, conversation_service, notification_service):
    return ChatService(MessageRepository(db), conversation_service, notification_service)


@pytest_asyncio.fixture
async def app(db, notification_service):
    application = create_app()
    application.dependency_overrides[mongo_db_dependency] = lambda: db
    application.state.notifications = notification_service
    application.state.connections = ConnectionManager()
    application.state.bus = LocalBus(application.state.connections)
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture
async def api_client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
