import logging
from typing import Dict, List

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Sockets held by this process, several per user (one per open client)."""

    def __init__(self) -> None:
        self.active_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.setdefault(user_id, []).append(websocket)

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        conns = self.active_connections.get(user_id)
        if not conns:
            return
        if websocket in conns:
            conns.remove(websocket)
        if not conns:
            del self.active_connections[user_id]

    def is_connected(self, user_id: str) -> bool:
        return bool(self.active_connections.get(user_id))

    async def send_personal_message(self, receiver_id: str, message: str) -> None:
        for conn in list(self.active_connections.get(receiver_id, [])):
            try:
                await conn.send_text(message)
            except RuntimeError:
                # socket closed under us; forget it
                logger.debug("dropping closed socket", extra={"recipient_id": receiver_id})
                self.disconnect(receiver_id, conn)
