import logging
import logging.handlers
import sys
import time
import traceback
from pathlib import Path
from types import TracebackType

from app.config import Settings

LOG_LINE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"

# Third-party loggers routed to the service handlers instead of their own defaults.
_ROUTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi", "apscheduler")

_LOG_FILE_PATH: Path | None = None
_LOGGING_INITIALIZED = False


def _truncate_stack(lines: list[str], *, keep: int) -> str:
  # Keep the header line and the innermost frames, which name the failing call.
  if len(lines) > keep + 1:
    return "".join(lines[:1] + ["    ...\n"] + lines[-keep:])
  return "".join(lines)


class PipelineFormatter(logging.Formatter):
  """Render pipeline failure records with the stack captured by log_notification_error.

  Those records carry the traceback on `record.notification_error.stack` rather
  than `exc_info`.
  `stack_lines` bounds how many frames are printed; None prints all of them.
  """

  def __init__(self, fmt: str, *, datefmt: str | None = None, stack_lines: int | None = None) -> None:
    super().__init__(fmt, datefmt=datefmt)
    self._stack_lines = stack_lines

  # ruff: noqa: N802
  def formatException(self, ei: tuple[type[BaseException] | None, BaseException | None, TracebackType | None]) -> str:
    lines = traceback.format_exception(*ei)
    return "".join(lines) if self._stack_lines is None else _truncate_stack(lines, keep=self._stack_lines)

  def format(self, record: logging.LogRecord) -> str:
    text = super().format(record)
    failure = getattr(record, "notification_error", None)
    stack = getattr(failure, "stack", None)
    if not stack or record.exc_info:
      return text
    lines = stack.splitlines(keepends=True)
    rendered = "".join(lines) if self._stack_lines is None else _truncate_stack(lines, keep=self._stack_lines)
    return f"{text}\n{rendered.rstrip()}"


def _rotated_name(default_name: str) -> str:
  """Name backups notifications.log-1 instead of notifications.log.1."""
  base, _, num = default_name.rpartition(".")
  if num.isdigit():
    return f"{base}-{num}"
  return default_name


def _build_handlers(settings: Settings) -> tuple[logging.Handler, logging.Handler, Path]:
  """Create a truncated stdout handler and a full-detail rotating file handler."""
  log_dir = Path(__file__).resolve().parent.parent.parent / "logs"
  try:
    log_dir.mkdir(parents=True, exist_ok=True)
  except OSError as exc:
    raise RuntimeError(f"Failed to create log directory at {log_dir}: {exc}") from exc

  log_path = log_dir / f"helpdesk_notifications_{time.strftime('%Y%m%d_%H%M%S')}.log"
  try:
    log_path.touch(exist_ok=True)
  except OSError as exc:
    raise RuntimeError(f"Failed to create log file at {log_path}: {exc}") from exc

  stream = logging.StreamHandler(sys.stdout)
  stream.setFormatter(PipelineFormatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT, stack_lines=5))

  file_handler = logging.handlers.RotatingFileHandler(log_path, encoding="utf-8", maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count)
  file_handler.namer = _rotated_name
  file_handler.setFormatter(PipelineFormatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))
  return stream, file_handler, log_path


def setup_logging(settings: Settings) -> Path:
  """Route the service, server and scheduler loggers through one pair of handlers."""
  stream_handler, file_handler, log_path = _build_handlers(settings)
  for logger_name in _ROUTED_LOGGERS:
    log = logging.getLogger(logger_name)
    log.handlers = [stream_handler, file_handler]
    log.propagate = False

  level = logging.DEBUG if settings.debug else logging.INFO
  logging.basicConfig(level=level, handlers=[stream_handler, file_handler], force=True)
  logging.getLogger().setLevel(level)
  # APScheduler logs every job submission at INFO; keep only its warnings outside debug.
  if not settings.debug:
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
  return log_path


def _initialize_logging(settings: Settings) -> None:
  """Initialize logging once per process and record the effective pipeline settings."""
  global _LOG_FILE_PATH, _LOGGING_INITIALIZED
  if _LOGGING_INITIALIZED:
    return
  _LOG_FILE_PATH = setup_logging(settings)
  _LOGGING_INITIALIZED = True
  logger = logging.getLogger("app.core.logging")
  logger.info("Logging initialized. Writing to %s", _LOG_FILE_PATH)
  logger.info(
    "Notification pipeline env=%s push_configured=%s retention read_days=%s unread_days=%s cleanup_enabled=%s cleanup_timezone=%s",
    settings.environment,
    settings.push_configured,
    settings.read_retention_days,
    settings.unread_retention_days,
    settings.cleanup_enabled,
    settings.cleanup_timezone,
  )
