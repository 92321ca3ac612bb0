"""Routes for the authenticated user's notification inbox and live updates."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.deps import get_db_session_factory, get_notification_repository, get_notification_service
from app.core.security import authenticate_websocket_token, get_current_active_user
from app.notifications.contracts import MAX_PAGE_LIMIT, NotificationFilters
from app.notifications.error_log import log_notification_error
from app.notifications.in_app_repo import NotificationRepository
from app.notifications.service import NotificationService
from app.schema.sql import User

logger = logging.getLogger(__name__)

router = APIRouter()


class BulkDeleteRequest(BaseModel):
  """Ids of notifications to delete in one call."""

  ids: list[uuid.UUID] = Field(min_length=1, max_length=MAX_PAGE_LIMIT)
  model_config = ConfigDict(extra="forbid")


def _failure(operation: str, exc: Exception, current_user: User, detail: str, **context: Any) -> HTTPException:
  log_notification_error(operation, exc, "error", {"userId": str(current_user.id), **context})
  return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


@router.get("/")
async def list_notifications(
  current_user: User = Depends(get_current_active_user),  # noqa: B008
  repository: NotificationRepository = Depends(get_notification_repository),  # noqa: B008
  page: int = Query(1, ge=1),  # noqa: B008
  limit: int = Query(20),  # noqa: B008
  type: str | None = Query(None),  # noqa: B008
  read: bool | None = Query(None),  # noqa: B008
  start_date: datetime | None = Query(None, alias="startDate"),  # noqa: B008
  end_date: datetime | None = Query(None, alias="endDate"),  # noqa: B008
  search: str | None = Query(None, max_length=200),  # noqa: B008
  sort_by: Literal["created_at", "priority"] = Query("created_at", alias="sortBy"),  # noqa: B008
  sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),  # noqa: B008
) -> dict[str, Any]:
  """
  List the current user's notifications, newest first by default.

  - **limit**: clamped to 1..100.
  - **read**: `true` for read only, `false` for unread only.
  - **startDate** / **endDate**: inclusive bounds on creation time.
  - **search**: case-insensitive match on title or message.
  - **sortBy**: `created_at` or `priority` (critical > high > medium > low).
  """
  filters = NotificationFilters(type=type, read=read, start_date=start_date, end_date=end_date, search=search, sort_by=sort_by, sort_order=sort_order)
  try:
    result = await repository.list(current_user.id, filters, page=page, limit=min(MAX_PAGE_LIMIT, max(1, limit)))
  except Exception as exc:  # noqa: BLE001
    raise _failure("notification.list", exc, current_user, "Failed to list notifications") from exc

  return {"notifications": [item.to_api() for item in result.items], "total": result.total, "unreadCount": result.unread_count, "page": result.page, "limit": result.limit, "hasMore": result.has_more}


@router.get("/unread-count")
async def get_unread_count(current_user: User = Depends(get_current_active_user), repository: NotificationRepository = Depends(get_notification_repository)) -> dict[str, int]:  # noqa: B008
  try:
    count = await repository.count_unread(current_user.id)
  except Exception as exc:  # noqa: BLE001
    raise _failure("notification.list", exc, current_user, "Failed to count notifications") from exc
  return {"count": count}


@router.patch("/read-all")
async def mark_all_notifications_read(current_user: User = Depends(get_current_active_user), service: NotificationService = Depends(get_notification_service)) -> dict[str, Any]:  # noqa: B008
  """Mark every unread notification of the current user as read."""
  try:
    updated = await service.repository.mark_all_read(current_user.id)
  except Exception as exc:  # noqa: BLE001
    raise _failure("notification.mark_all_read", exc, current_user, "Failed to mark notifications as read") from exc

  await service.send_unread_count_update(current_user.id)
  return {"success": True, "updatedCount": updated, "unreadCount": 0}


@router.patch("/{notification_id}/read")
async def mark_notification_read(notification_id: uuid.UUID, current_user: User = Depends(get_current_active_user), service: NotificationService = Depends(get_notification_service)) -> dict[str, Any]:  # noqa: B008
  """Mark one notification as read; repeating the call is harmless."""
  try:
    found = await service.repository.mark_read(notification_id, user_id=current_user.id)
    unread_count = await service.repository.count_unread(current_user.id) if found else 0
  except Exception as exc:  # noqa: BLE001
    raise _failure("notification.mark_read", exc, current_user, "Failed to mark notification as read", notificationId=str(notification_id)) from exc

  if not found:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")

  await service.send_unread_count_update(current_user.id)
  return {"success": True, "unreadCount": unread_count}


@router.delete("/")
async def delete_notifications(payload: BulkDeleteRequest, current_user: User = Depends(get_current_active_user), service: NotificationService = Depends(get_notification_service)) -> dict[str, Any]:  # noqa: B008
  """Delete several of the current user's notifications."""
  try:
    deleted = await service.repository.delete_many(current_user.id, payload.ids)
  except Exception as exc:  # noqa: BLE001
    raise _failure("notification.delete", exc, current_user, "Failed to delete notifications", requested=len(payload.ids)) from exc

  await service.send_unread_count_update(current_user.id)
  return {"success": True, "deletedCount": deleted}


@router.delete("/{notification_id}")
async def delete_notification(notification_id: uuid.UUID, current_user: User = Depends(get_current_active_user), service: NotificationService = Depends(get_notification_service)) -> dict[str, bool]:  # noqa: B008
  try:
    deleted = await service.repository.delete(notification_id, user_id=current_user.id)
  except Exception as exc:  # noqa: BLE001
    raise _failure("notification.delete", exc, current_user, "Failed to delete notification", notificationId=str(notification_id)) from exc

  if not deleted:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")

  await service.send_unread_count_update(current_user.id)
  return {"success": True}


@router.websocket("/ws")
async def notifications_socket(
  websocket: WebSocket,
  token: str | None = Query(None),  # noqa: B008
  service: NotificationService = Depends(get_notification_service),  # noqa: B008
  session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),  # noqa: B008
) -> None:
  """Stream new notifications and unread counters to the connected user."""
  # Authenticate with a short-lived session so no connection is held for the socket lifetime.
  try:
    async with session_factory() as session:
      user = await authenticate_websocket_token(token, session)
  except HTTPException as exc:
    logger.info("WebSocket rejected status=%s detail=%s", exc.status_code, exc.detail)
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
    return

  manager = service.connection_manager
  await manager.connect(user.id, websocket)
  try:
    unread_count = await service.repository.count_unread(user.id)
    await websocket.send_json({"type": "init", "unreadCount": unread_count})
    while True:
      raw = await websocket.receive_text()
      if _is_ping(raw):
        await websocket.send_json({"type": "pong"})
  except WebSocketDisconnect:
    logger.debug("WebSocket disconnected user_id=%s", user.id)
  finally:
    manager.disconnect(user.id, websocket)


def _is_ping(raw: str) -> bool:
  if raw.strip() == "ping":
    return True
  try:
    message = json.loads(raw)
  except json.JSONDecodeError:
    return False
  return isinstance(message, dict) and message.get("type") == "ping"
