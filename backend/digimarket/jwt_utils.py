import time
from typing import Any, Dict, Optional

import jwt
from flask import current_app

ALGORITHM = "HS256"
DEFAULT_ACCESS_TTL = 60 * 60 * 24 * 7


def _secret() -> str:
    return current_app.config.get("SECRET_KEY") or "dev-secret-change-me"


def create_access_token(user_id: int, ttl_seconds: Optional[int] = None) -> str:
    ttl = int(ttl_seconds or current_app.config.get("ACCESS_TOKEN_TTL_SECONDS") or DEFAULT_ACCESS_TTL)
    now = int(time.time())
    return jwt.encode(
        {"sub": str(int(user_id)), "iat": now, "exp": now + ttl, "type": "access"},
        _secret(),
        algorithm=ALGORITHM,
    )


def decode_token(token: str, expected_type: str = "access") -> Optional[Dict[str, Any]]:
    """Claims of a valid, unexpired token of ``expected_type``; None otherwise."""
    try:
        claims = jwt.decode(token, _secret(), algorithms=[ALGORITHM], options={"require": ["sub", "exp"]})
    except jwt.PyJWTError:
        return None
    if claims.get("type") != expected_type:
        return None
    return claims


def get_bearer_token(auth_header: str) -> Optional[str]:
    scheme, _, value = (auth_header or "").strip().partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()
