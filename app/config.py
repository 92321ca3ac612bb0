"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.utils.env import default_env_path, env_first, load_env_file

load_env_file(default_env_path(), override=False)

DEFAULT_READ_RETENTION_DAYS = 90
DEFAULT_UNREAD_RETENTION_DAYS = 180
DEFAULT_CLEANUP_TIMEZONE = "America/Sao_Paulo"
DEFAULT_VAPID_SUB = "mailto:admin@example.com"


@dataclass(frozen=True)
class Settings:
  """Typed settings for the helpdesk notification service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  push_vapid_public_key: str | None
  push_vapid_private_key: str | None
  push_vapid_sub: str
  push_timeout_seconds: float
  read_retention_days: int
  unread_retention_days: int
  cleanup_timezone: str
  cleanup_enabled: bool
  auth_jwt_secret: str | None

  @property
  def push_configured(self) -> bool:
    """Web Push needs both halves of the VAPID key pair."""
    return bool(self.push_vapid_public_key and self.push_vapid_private_key)


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("HELPDESK_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("HELPDESK_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("HELPDESK_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _parse_positive_int(raw: str | None, *, name: str, default: int) -> int:
  if raw is None or raw.strip() == "":
    return default
  value = int(raw)
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _parse_timezone(raw: str | None) -> str:
  name = (raw or DEFAULT_CLEANUP_TIMEZONE).strip()
  try:
    ZoneInfo(name)
  except (ZoneInfoNotFoundError, ValueError) as exc:
    raise ValueError(f"HELPDESK_CLEANUP_TIMEZONE is not a valid timezone: {name!r}") from exc
  return name


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("HELPDESK_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("HELPDESK_DEBUG"))

  log_max_bytes = _parse_positive_int(os.getenv("HELPDESK_LOG_MAX_BYTES"), name="HELPDESK_LOG_MAX_BYTES", default=5242880)  # 5MB default

  log_backup_count = int(os.getenv("HELPDESK_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("HELPDESK_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Allow opt-in logging of 4xx HTTPExceptions for diagnostics.
  log_http_4xx = _parse_bool(os.getenv("HELPDESK_LOG_HTTP_4XX"))

  push_vapid_public_key = _optional_str(env_first("HELPDESK_PUSH_VAPID_PUBLIC_KEY", "VAPID_PUBLIC_KEY"))
  push_vapid_private_key = _optional_str(env_first("HELPDESK_PUSH_VAPID_PRIVATE_KEY", "VAPID_PRIVATE_KEY"))
  push_vapid_sub = _optional_str(env_first("HELPDESK_PUSH_VAPID_SUB", "VAPID_SUBJECT")) or DEFAULT_VAPID_SUB
  if not (push_vapid_sub.startswith("mailto:") or push_vapid_sub.startswith("https://")):
    raise ValueError("HELPDESK_PUSH_VAPID_SUB must start with 'mailto:' or 'https://'.")

  push_timeout_seconds = float(os.getenv("HELPDESK_PUSH_TIMEOUT_SECONDS", "10"))
  if push_timeout_seconds <= 0:
    raise ValueError("HELPDESK_PUSH_TIMEOUT_SECONDS must be positive.")

  read_retention_days = _parse_positive_int(
    env_first("HELPDESK_READ_NOTIFICATIONS_RETENTION_DAYS", "READ_NOTIFICATIONS_RETENTION_DAYS"), name="READ_NOTIFICATIONS_RETENTION_DAYS", default=DEFAULT_READ_RETENTION_DAYS
  )
  unread_retention_days = _parse_positive_int(
    env_first("HELPDESK_UNREAD_NOTIFICATIONS_RETENTION_DAYS", "UNREAD_NOTIFICATIONS_RETENTION_DAYS"), name="UNREAD_NOTIFICATIONS_RETENTION_DAYS", default=DEFAULT_UNREAD_RETENTION_DAYS
  )

  database = get_database_settings()

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("HELPDESK_ALLOWED_ORIGINS")),
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=log_http_4xx,
    pg_dsn=database.pg_dsn,
    pg_connect_timeout=database.pg_connect_timeout,
    push_vapid_public_key=push_vapid_public_key,
    push_vapid_private_key=push_vapid_private_key,
    push_vapid_sub=push_vapid_sub,
    push_timeout_seconds=push_timeout_seconds,
    read_retention_days=read_retention_days,
    unread_retention_days=unread_retention_days,
    cleanup_timezone=_parse_timezone(os.getenv("HELPDESK_CLEANUP_TIMEZONE")),
    cleanup_enabled=_parse_bool(os.getenv("HELPDESK_CLEANUP_ENABLED"), default=True),
    auth_jwt_secret=_optional_str(os.getenv("HELPDESK_AUTH_JWT_SECRET")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  # Keep database configuration isolated so migrations and offline scripts don't require unrelated env vars.
  debug = _parse_bool(os.getenv("HELPDESK_DEBUG"))
  pg_connect_timeout = _parse_positive_int(os.getenv("HELPDESK_PG_CONNECT_TIMEOUT"), name="HELPDESK_PG_CONNECT_TIMEOUT", default=5)

  # Support fallback to DATABASE_URL for backward compatibility
  pg_dsn = _optional_str(os.getenv("HELPDESK_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL"))

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
