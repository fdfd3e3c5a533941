"""Domain errors raised by the chat services.

The HTTP layer maps each kind to a status code (see ``install_error_handlers``):
validation 400, forbidden 403, not found 404, conflict 409.
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class ChatRelayError(Exception):

    code = "error"
    status_code = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ChatRelayError):

    code = "validation_error"
    status_code = 400


class ForbiddenError(ChatRelayError):

    code = "forbidden"
    status_code = 403


class NotFoundError(ChatRelayError):

    code = "not_found"
    status_code = 404


class ConflictError(ChatRelayError):
    """A direct conversation between the same two actors is already active.

    ``existing_id`` lets the caller fall back to the existing conversation.
    """

    code = "conflict"
    status_code = 409

    def __init__(self, message: str = "", existing_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.existing_id = existing_id


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ChatRelayError)
    async def chat_error_handler(request: Request, exc: ChatRelayError):
        payload = {"detail": exc.message, "code": exc.code}
        if isinstance(exc, ConflictError) and exc.existing_id:
            payload["existing_id"] = exc.existing_id
        return JSONResponse(status_code=exc.status_code, content=payload)
