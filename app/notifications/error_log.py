"""Structured error records for the notification pipeline."""

from __future__ import annotations

import datetime
import logging
import traceback
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

Severity = Literal["info", "warning", "error", "critical"]

ERROR_LOGGER_NAME = "app.notifications.errors"

_SEVERITY_LEVELS: dict[str, int] = {"info": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR, "critical": logging.CRITICAL}

logger = logging.getLogger(ERROR_LOGGER_NAME)


@dataclass(frozen=True)
class NotificationErrorRecord:
  """A single pipeline failure as handed to the log sink."""

  operation: str
  error: object
  severity: Severity
  context: Mapping[str, Any] | None
  message: str
  stack: str | None
  timestamp: datetime.datetime


def _format_stack(error: object) -> str | None:
  if not isinstance(error, BaseException) or error.__traceback__ is None:
    return None
  return "".join(traceback.format_exception(type(error), error, error.__traceback__))


def log_notification_error(operation: str, error: object, severity: Severity = "error", context: Mapping[str, Any] | None = None) -> NotificationErrorRecord:
  """Emit one structured record for a notification pipeline failure.

  `error` may be any thrown value, not only exceptions. The record carries the
  original object and the caller's context unchanged so log handlers can inspect
  them through `record.notification_error`.
  """
  level = _SEVERITY_LEVELS.get(severity)
  if level is None:
    raise ValueError(f"Unknown severity: {severity!r}")

  try:
    message = str(error)
  except Exception:  # noqa: BLE001
    message = repr(error)

  record = NotificationErrorRecord(operation=operation, error=error, severity=severity, context=context, message=message, stack=_format_stack(error), timestamp=datetime.datetime.now(datetime.UTC))
  logger.log(level, "Notification pipeline failure operation=%s severity=%s error=%s context=%s", operation, severity, message, dict(context) if context else {}, extra={"notification_error": record})
  return record
