from __future__ import annotations

import datetime
import uuid
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.database import get_db
from app.schema.sql import User

JWT_ALGORITHM = "HS256"

security_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
  return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def create_access_token(user_id: uuid.UUID, *, secret: str, expires_in: datetime.timedelta = datetime.timedelta(hours=1)) -> str:
  """Issue an HS256 token whose subject is the user id."""
  now = datetime.datetime.now(datetime.UTC)
  return jwt.encode({"sub": str(user_id), "iat": now, "exp": now + expires_in}, secret, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> uuid.UUID:
  """Verify a bearer token and return the user id it was issued for."""
  secret = get_settings().auth_jwt_secret
  # Without a signing secret no token can be trusted.
  if not secret:
    raise _unauthorized("Authentication is not configured")

  try:
    claims = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], options={"require": ["sub", "exp"]})
  except jwt.PyJWTError as exc:
    raise _unauthorized("Invalid authentication credentials") from exc

  try:
    return uuid.UUID(str(claims["sub"]))
  except ValueError as exc:
    raise _unauthorized("Invalid token claims") from exc


async def _load_active_user(db: AsyncSession, user_id: uuid.UUID) -> User:
  user = await db.get(User, user_id)
  if user is None:
    raise _unauthorized("User not found")
  # Block deactivated accounts even when their token is still valid.
  if not user.is_active:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user")
  return user


async def get_token_user_id(token: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)]) -> uuid.UUID:
  """Validate the bearer token before any database work is done."""
  if token is None or not token.credentials:
    raise _unauthorized("Not authenticated")
  return decode_access_token(token.credentials)


async def get_current_active_user(user_id: Annotated[uuid.UUID, Depends(get_token_user_id)], db: AsyncSession = Depends(get_db)) -> User:  # noqa: B008
  """Resolve the bearer token to an active user row."""
  return await _load_active_user(db, user_id)


async def authenticate_websocket_token(token: str | None, db: AsyncSession) -> User:
  """Apply the bearer-token check to a WebSocket handshake query parameter."""
  if not token:
    raise _unauthorized("Not authenticated")
  return await _load_active_user(db, decode_access_token(token))
