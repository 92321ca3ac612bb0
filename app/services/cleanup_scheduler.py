"""Daily retention cleanup for notifications."""

from __future__ import annotations

import asyncio
import datetime
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import DEFAULT_CLEANUP_TIMEZONE, DEFAULT_READ_RETENTION_DAYS, DEFAULT_UNREAD_RETENTION_DAYS, Settings
from app.core.database import require_session_factory
from app.notifications.error_log import log_notification_error
from app.services.maintenance import RetentionResult, purge_expired_notifications

logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = "notification_retention_cleanup"
CLEANUP_HOUR = 3
CLEANUP_MINUTE = 0


@dataclass(frozen=True)
class RetentionSettings:
  read_days: int
  unread_days: int


def _utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


class NotificationCleanupScheduler:
  """Owns the daily retention job and guarantees at most one cycle runs at a time."""

  def __init__(
    self,
    *,
    read_retention_days: int = DEFAULT_READ_RETENTION_DAYS,
    unread_retention_days: int = DEFAULT_UNREAD_RETENTION_DAYS,
    timezone: str = DEFAULT_CLEANUP_TIMEZONE,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    clock: Callable[[], datetime.datetime] = _utcnow,
  ) -> None:
    if read_retention_days <= 0 or unread_retention_days <= 0:
      raise ValueError("Retention periods must be positive.")
    self._retention = RetentionSettings(read_days=read_retention_days, unread_days=unread_retention_days)
    self._timezone = timezone
    self._session_factory = session_factory
    self._clock = clock
    self._scheduler: AsyncIOScheduler | None = None
    self._lock = asyncio.Lock()

  @classmethod
  def from_settings(cls, settings: Settings, *, session_factory: async_sessionmaker[AsyncSession] | None = None) -> NotificationCleanupScheduler:
    return cls(read_retention_days=settings.read_retention_days, unread_retention_days=settings.unread_retention_days, timezone=settings.cleanup_timezone, session_factory=session_factory)

  @property
  def is_scheduled(self) -> bool:
    return self._scheduler is not None

  @property
  def is_running(self) -> bool:
    return self._lock.locked()

  @property
  def retention_settings(self) -> RetentionSettings:
    return self._retention

  @property
  def job(self) -> Job | None:
    if self._scheduler is None:
      return None
    return self._scheduler.get_job(CLEANUP_JOB_ID)

  def start(self) -> None:
    """Register the daily 03:00 job; must be called from a running event loop."""
    if self._scheduler is not None:
      logger.info("Notification cleanup scheduler already started")
      return

    scheduler = AsyncIOScheduler(timezone=self._timezone)
    trigger = CronTrigger(hour=CLEANUP_HOUR, minute=CLEANUP_MINUTE, timezone=self._timezone)
    # Coalesce missed runs so a sleeping host does not fire a burst of cleanups on wake.
    scheduler.add_job(self.run_once, trigger=trigger, id=CLEANUP_JOB_ID, coalesce=True, max_instances=1, replace_existing=True)
    scheduler.start()
    self._scheduler = scheduler
    logger.info("Notification cleanup scheduled daily at %02d:%02d %s", CLEANUP_HOUR, CLEANUP_MINUTE, self._timezone)

  def stop(self) -> None:
    if self._scheduler is None:
      return
    self._scheduler.shutdown(wait=False)
    self._scheduler = None
    logger.info("Notification cleanup scheduler stopped")

  async def run_once(self) -> RetentionResult | None:
    """Run one cleanup cycle now.

    Returns None when another cycle is already in progress or when the cycle
    failed; failures are logged as critical and never escape.
    """
    if self._lock.locked():
      logger.info("Notification cleanup already running; skipping")
      return None

    async with self._lock:
      started = time.perf_counter()
      try:
        session_factory = self._session_factory or require_session_factory()
        async with session_factory() as session:
          result = await purge_expired_notifications(session, now=self._clock(), read_retention_days=self._retention.read_days, unread_retention_days=self._retention.unread_days)
      except Exception as exc:  # noqa: BLE001
        log_notification_error("cleanup.run", exc, "critical", {"readDays": self._retention.read_days, "unreadDays": self._retention.unread_days})
        return None

      elapsed_ms = (time.perf_counter() - started) * 1000
      logger.info("Notification cleanup finished in %.0fms read_deleted=%s unread_deleted=%s total=%s", elapsed_ms, result.read_deleted, result.unread_deleted, result.total_deleted)
      return result
