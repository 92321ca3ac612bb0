from __future__ import annotations

import pytest
from app.config import get_database_settings, get_settings

_MANAGED_VARS = [
  "HELPDESK_PUSH_VAPID_PUBLIC_KEY",
  "HELPDESK_PUSH_VAPID_PRIVATE_KEY",
  "HELPDESK_PUSH_VAPID_SUB",
  "VAPID_PUBLIC_KEY",
  "VAPID_PRIVATE_KEY",
  "VAPID_SUBJECT",
  "HELPDESK_READ_NOTIFICATIONS_RETENTION_DAYS",
  "HELPDESK_UNREAD_NOTIFICATIONS_RETENTION_DAYS",
  "READ_NOTIFICATIONS_RETENTION_DAYS",
  "UNREAD_NOTIFICATIONS_RETENTION_DAYS",
  "HELPDESK_CLEANUP_TIMEZONE",
  "HELPDESK_PUSH_TIMEOUT_SECONDS",
  "HELPDESK_PG_DSN",
  "DATABASE_URL",
]


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
  for name in _MANAGED_VARS:
    monkeypatch.delenv(name, raising=False)
  get_settings.cache_clear()
  get_database_settings.cache_clear()
  yield
  get_settings.cache_clear()
  get_database_settings.cache_clear()


def test_defaults():
  settings = get_settings()

  assert settings.allowed_origins == ("http://localhost:5173",)
  assert settings.read_retention_days == 90
  assert settings.unread_retention_days == 180
  assert settings.cleanup_timezone == "America/Sao_Paulo"
  assert settings.push_vapid_sub == "mailto:admin@example.com"
  assert settings.push_timeout_seconds == 10.0
  assert settings.push_configured is False
  assert settings.pg_dsn is None


def test_prefixed_names_win_over_legacy_names(monkeypatch):
  monkeypatch.setenv("READ_NOTIFICATIONS_RETENTION_DAYS", "30")
  monkeypatch.setenv("UNREAD_NOTIFICATIONS_RETENTION_DAYS", "60")
  monkeypatch.setenv("HELPDESK_UNREAD_NOTIFICATIONS_RETENTION_DAYS", "365")
  monkeypatch.setenv("VAPID_PUBLIC_KEY", "legacy-public")
  monkeypatch.setenv("HELPDESK_PUSH_VAPID_PRIVATE_KEY", "private")

  settings = get_settings()

  assert (settings.read_retention_days, settings.unread_retention_days) == (30, 365)
  assert settings.push_vapid_public_key == "legacy-public"
  assert settings.push_configured is True


def test_database_url_fallback(monkeypatch):
  monkeypatch.setenv("DATABASE_URL", "postgresql://helpdesk@localhost/helpdesk")

  assert get_database_settings().pg_dsn == "postgresql://helpdesk@localhost/helpdesk"


@pytest.mark.parametrize(
  "name,value",
  [
    ("HELPDESK_READ_NOTIFICATIONS_RETENTION_DAYS", "0"),
    ("HELPDESK_UNREAD_NOTIFICATIONS_RETENTION_DAYS", "-5"),
    ("HELPDESK_CLEANUP_TIMEZONE", "Mars/Olympus_Mons"),
    ("HELPDESK_PUSH_VAPID_SUB", "admin@example.com"),
    ("HELPDESK_PUSH_TIMEOUT_SECONDS", "0"),
    ("HELPDESK_ALLOWED_ORIGINS", "*"),
  ],
)
def test_invalid_values_raise(monkeypatch, name, value):
  monkeypatch.setenv(name, value)

  with pytest.raises(ValueError):
    get_settings()
