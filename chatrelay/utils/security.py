from typing import Any, Dict

import jwt

from chatrelay.settings import settings


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify a bearer token issued by the auth service; raises ``jwt.InvalidTokenError``."""
    payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    if not payload.get("sub"):
        raise jwt.InvalidTokenError("token has no subject")
    return payload
