"""
JWT helpers.

Tokens are minted by the identity service; this engine only verifies
them.  The payload carries ``sub`` (user id) and ``role_names``.
``create_access_token`` exists for scripts and tests that need to act
as an operator.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from session_guard.core.config import settings

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=60))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode & validate a JWT.  Raises HTTPException on failure."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    subject = payload.get("sub") or payload.get("user_id")
    try:
        uuid.UUID(str(subject))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload["sub"] = str(subject)
    return payload


async def get_current_user_token(token: str = Depends(oauth2_scheme)) -> dict[str, Any]:
    """FastAPI dependency — the decoded payload of the bearer token."""
    return decode_access_token(token)


async def get_current_user_id(
    token_payload: dict[str, Any] = Depends(get_current_user_token),
) -> uuid.UUID:
    return uuid.UUID(token_payload["sub"])
