import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from app.core.database import dispose_engine, get_session_factory
from app.core.logging import _initialize_logging
from app.notifications.factory import build_notification_service
from app.services.cleanup_scheduler import NotificationCleanupScheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Initialize logging, build the notification pipeline and own the cleanup job."""
  from app.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("app.core.lifespan")

  try:
    _initialize_logging(settings)
    logger.info("Startup complete - logging verified.")
  except Exception:
    # Keep serving with the default handlers when the log directory is unavailable.
    logger.warning("Initial logging setup failed; continuing with default handlers.", exc_info=True)

  logger.info("Database DSN=%s", _redact_dsn(settings.pg_dsn))
  session_factory = get_session_factory()

  # One service and one scheduler per process; routes read them from app.state.
  notification_service = build_notification_service(settings, session_factory=session_factory)
  cleanup_scheduler = NotificationCleanupScheduler.from_settings(settings, session_factory=session_factory)
  app.state.notification_service = notification_service
  app.state.cleanup_scheduler = cleanup_scheduler

  if settings.cleanup_enabled and session_factory is not None:
    cleanup_scheduler.start()
  else:
    logger.info("Notification cleanup scheduler not started enabled=%s database_configured=%s", settings.cleanup_enabled, session_factory is not None)

  try:
    yield
  finally:
    cleanup_scheduler.stop()
    await notification_service.drain()
    await dispose_engine()
    logger.info("Shutdown complete.")


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  # Guard against malformed DSNs without a scheme.
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
