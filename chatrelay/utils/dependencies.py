import jwt
from fastapi import Depends, HTTPException, status
from fastapi.requests import HTTPConnection
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from chatrelay.database.connection import mongo_db_dependency
from chatrelay.repositories.conversation_repository import ConversationRepository
from chatrelay.repositories.device_repository import DeviceRepository
from chatrelay.repositories.message_repository import MessageRepository
from chatrelay.services.chat_service import ChatService
from chatrelay.services.conversation_service import ConversationService
from chatrelay.services.notification_service import NotificationService
from chatrelay.utils.security import decode_access_token

security = HTTPBearer()


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return {"_id": payload["sub"]}


# process-wide collaborators live on app.state (built in the lifespan)
def get_notification_service(conn: HTTPConnection) -> NotificationService:
    return conn.app.state.notifications


def get_bus(conn: HTTPConnection):
    return conn.app.state.bus


def get_connection_manager(conn: HTTPConnection):
    return conn.app.state.connections


def get_device_repository(db=Depends(mongo_db_dependency)) -> DeviceRepository:
    return DeviceRepository(db)


def get_conversation_service(db=Depends(mongo_db_dependency)) -> ConversationService:
    return ConversationService(ConversationRepository(db))


def get_chat_service(
    db=Depends(mongo_db_dependency),
    conversations: ConversationService = Depends(get_conversation_service),
    notifications: NotificationService = Depends(get_notification_service),
) -> ChatService:
    return ChatService(MessageRepository(db), conversations, notifications)
