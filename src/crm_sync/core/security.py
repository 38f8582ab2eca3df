"""JWT verification for requests from the surrounding application.

Access tokens are issued by the host application and signed with the shared
JWT_SECRET_KEY. The ``sub`` claim is the user id that owns integrations and
mappings.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi import HTTPException, status
from jose import JWTError, jwt

from src.crm_sync.config import get_settings

ACCESS_TOKEN_TYPE = "access"


def create_access_token(user_id: str, expires_delta: timedelta | None = None) -> str:
    """Create a signed access token for ``user_id``.

    Used by tooling and tests; production tokens come from the host app.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + (expires_delta or timedelta(minutes=30)),
        "type": ACCESS_TOKEN_TYPE,
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> dict:
    """Decode and validate an access token.

    Returns:
        The decoded payload dict.

    Raises:
        HTTPException(401): If the token is invalid, expired, of another
            type, or has no subject.
    """
    settings = get_settings()
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError:
        raise credentials_exception

    if payload.get("type", ACCESS_TOKEN_TYPE) != ACCESS_TOKEN_TYPE:
        raise credentials_exception
    if not payload.get("sub"):
        raise credentials_exception
    return payload
