"""Factory helpers for notification services."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings
from app.notifications.contracts import PushSender
from app.notifications.in_app_repo import NotificationRepository
from app.notifications.preferences_repo import NotificationPreferencesRepository
from app.notifications.push_sender import NullPushSender, VapidConfig, WebPushSender
from app.notifications.push_subscription_repo import PushSubscriptionRepository
from app.notifications.realtime import NotificationConnectionManager
from app.notifications.service import NotificationService

logger = logging.getLogger(__name__)


def build_notification_service(
  settings: Settings, *, session_factory: async_sessionmaker[AsyncSession] | None = None, connection_manager: NotificationConnectionManager | None = None, push_sender: PushSender | None = None
) -> NotificationService:
  """Construct a notification service based on environment configuration."""
  push_enabled = settings.push_configured
  if push_sender is None:
    if push_enabled:
      push_sender = WebPushSender(vapid_config=VapidConfig(public_key=settings.push_vapid_public_key or "", private_key=settings.push_vapid_private_key or "", sub=settings.push_vapid_sub), timeout_seconds=settings.push_timeout_seconds)
    else:
      # Keep in-app and WebSocket delivery working when VAPID keys are absent.
      logger.warning("VAPID keys not configured; Web Push is disabled.")
      push_sender = NullPushSender()

  return NotificationService(
    repository=NotificationRepository(session_factory=session_factory),
    push_subscription_repo=PushSubscriptionRepository(session_factory=session_factory),
    push_sender=push_sender,
    connection_manager=connection_manager or NotificationConnectionManager(),
    push_enabled=push_enabled,
    vapid_public_key=settings.push_vapid_public_key,
    preferences_repo=NotificationPreferencesRepository(session_factory=session_factory),
  )
