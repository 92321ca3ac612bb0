"""Shared FastAPI dependencies for persistence and the notification pipeline."""

from __future__ import annotations

import logging

from fastapi import Depends
from fastapi.requests import HTTPConnection
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from app.core.database import get_db, get_session_factory, require_session_factory
from app.notifications.factory import build_notification_service
from app.notifications.in_app_repo import NotificationRepository
from app.notifications.service import NotificationService

logger = logging.getLogger(__name__)


async def get_db_session(session: AsyncSession = Depends(get_db)) -> AsyncSession:  # noqa: B008
  """Dependency to get the database session."""
  return session


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
  """Session factory for handlers that must open short-lived sessions themselves (WebSocket)."""
  return require_session_factory()


def get_notification_service(connection: HTTPConnection) -> NotificationService:
  """Return the process-wide notification service built at startup."""
  service = getattr(connection.app.state, "notification_service", None)
  if service is None:
    # Lifespan did not run (e.g. mounted sub-app); build once and cache on the app.
    logger.info("Notification service missing from app state; building lazily")
    service = build_notification_service(get_settings(), session_factory=get_session_factory())
    connection.app.state.notification_service = service
  return service


def get_notification_repository(service: NotificationService = Depends(get_notification_service)) -> NotificationRepository:  # noqa: B008
  return service.repository
