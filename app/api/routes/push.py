"""Routes for Web Push subscription lifecycle management."""

from __future__ import annotations

import re
import urllib.parse

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_core import PydanticCustomError

from app.api.deps import get_notification_service
from app.core.security import get_current_active_user
from app.notifications.service import NotificationService
from app.schema.sql import User

_ALLOWED_PUSH_HOSTS = {"fcm.googleapis.com", "updates.push.services.mozilla.com", "push.services.mozilla.com", "web.push.apple.com"}
_ALLOWED_PUSH_HOST_SUFFIXES = (".notify.windows.com", ".push.apple.com")
_BASE64_RE = re.compile(r"^[A-Za-z0-9_-]+={0,2}$")

router = APIRouter()


def _validate_push_endpoint(value: str) -> str:
  """Restrict endpoints to known provider hosts over HTTPS."""
  normalized = value.strip()
  parsed = urllib.parse.urlparse(normalized)

  if parsed.scheme.lower() != "https":
    raise PydanticCustomError("push_endpoint_https", "endpoint must use https.")

  host = (parsed.hostname or "").lower()
  if host not in _ALLOWED_PUSH_HOSTS and not host.endswith(_ALLOWED_PUSH_HOST_SUFFIXES):
    raise PydanticCustomError("push_endpoint_host", "endpoint host is not allowed.")

  return normalized


class PushSubscriptionKeys(BaseModel):
  """Browser-provided key material for Web Push encryption."""

  p256dh: str = Field(min_length=40, max_length=512)
  auth: str = Field(min_length=16, max_length=256)
  model_config = ConfigDict(extra="forbid")

  @field_validator("p256dh")
  @classmethod
  def validate_p256dh(cls, value: str) -> str:
    """Validate p256dh key shape using a strict base64url policy."""
    normalized = value.strip()
    if not _BASE64_RE.fullmatch(normalized):
      raise PydanticCustomError("push_p256dh_format", "p256dh must be base64url encoded.")

    return normalized

  @field_validator("auth")
  @classmethod
  def validate_auth(cls, value: str) -> str:
    """Validate auth secret shape using a strict base64url policy."""
    normalized = value.strip()
    if not _BASE64_RE.fullmatch(normalized):
      raise PydanticCustomError("push_auth_format", "auth must be base64url encoded.")

    return normalized


class PushSubscribeRequest(BaseModel):
  """Standard browser push subscription object payload."""

  endpoint: str = Field(min_length=1, max_length=2048)
  expiration_time: int | None = Field(default=None, alias="expirationTime")
  keys: PushSubscriptionKeys
  model_config = ConfigDict(extra="forbid", populate_by_name=True)

  @field_validator("endpoint")
  @classmethod
  def validate_endpoint(cls, value: str) -> str:
    return _validate_push_endpoint(value)


class PushUnsubscribeRequest(BaseModel):
  """Payload for deleting an existing push subscription."""

  endpoint: str = Field(min_length=1, max_length=2048)
  model_config = ConfigDict(extra="forbid")

  @field_validator("endpoint")
  @classmethod
  def validate_endpoint(cls, value: str) -> str:
    """Apply the same strict endpoint validation as subscribe."""
    return _validate_push_endpoint(value)


@router.get("/public-key")
async def get_public_key(service: NotificationService = Depends(get_notification_service)) -> dict[str, str]:  # noqa: B008
  """Expose the VAPID public key browsers need to subscribe."""
  public_key = service.vapid_public_key
  if not public_key:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Web Push is not configured")
  return {"publicKey": public_key}


@router.post("/subscribe", status_code=status.HTTP_201_CREATED)
async def subscribe_to_push(
  payload: PushSubscribeRequest,
  current_user: User = Depends(get_current_active_user),  # noqa: B008
  service: NotificationService = Depends(get_notification_service),  # noqa: B008
  user_agent: str | None = Header(default=None),  # noqa: B008
) -> dict[str, bool]:
  """Upsert the authenticated user's browser push subscription."""
  normalized_user_agent = None
  if user_agent:
    # Clamp user agent size to reduce storage abuse while keeping device context.
    normalized_user_agent = user_agent.strip()[:512] or None

  try:
    await service.subscribe(user_id=current_user.id, endpoint=payload.endpoint, p256dh=payload.keys.p256dh, auth=payload.keys.auth, user_agent=normalized_user_agent)
  except Exception as exc:  # noqa: BLE001
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save push subscription") from exc

  return {"success": True}


@router.delete("/unsubscribe", status_code=status.HTTP_204_NO_CONTENT)
async def unsubscribe_from_push(payload: PushUnsubscribeRequest, current_user: User = Depends(get_current_active_user), service: NotificationService = Depends(get_notification_service)) -> Response:  # noqa: B008
  """Delete a push subscription owned by the authenticated user."""
  # Delete by user and endpoint while keeping the operation idempotent.
  try:
    await service.unsubscribe(user_id=current_user.id, endpoint=payload.endpoint)
  except Exception as exc:  # noqa: BLE001
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to delete push subscription") from exc

  return Response(status_code=status.HTTP_204_NO_CONTENT)
