import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.config import get_settings

logger = logging.getLogger("app.core.exceptions")

# Fields that may carry push key material or raw bodies; never echoed into logs.
_REDACTED_DETAIL_KEYS = frozenset({"input", "body", "payload", "content", "keys", "auth", "p256dh", "token"})


def _coerce_json_safe(value: Any) -> Any:
  """Convert unsupported values into JSON-safe primitives for error responses."""
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    error_message = str(value)
    return f"{type(value).__name__}: {error_message}" if error_message else type(value).__name__
  return str(value)


def _request_context(request: Request) -> tuple[str | None, str, str]:
  return getattr(request.state, "request_id", None), request.method, request.url.path


def _error_payload(detail: Any, *, request_id: str | None = None) -> dict[str, Any]:
  """Build the client-facing error body; the request id lets support find the server log line."""
  payload: dict[str, Any] = {"detail": detail}
  if request_id:
    payload["requestId"] = request_id
  return payload


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key != "input"}
    if isinstance(scrubbed.get("ctx"), dict):
      scrubbed["ctx"] = {key: value for key, value in scrubbed["ctx"].items() if key != "input"}
    sanitized.append(_coerce_json_safe(scrubbed))
  return sanitized


def _sanitize_http_detail(detail: Any) -> Any:
  """Return an HTTPException detail payload safe for logs."""
  if isinstance(detail, dict):
    return {key: _sanitize_http_detail(value) for key, value in detail.items() if key not in _REDACTED_DETAIL_KEYS}
  if isinstance(detail, list):
    return [_sanitize_http_detail(item) for item in detail]
  return detail


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Turn unhandled errors into an opaque 500 that still carries the request id."""
  request_id, method, path = _request_context(request)
  logger.error("Unhandled exception request_id=%s %s %s error_type=%s", request_id, method, path, type(exc).__name__, exc_info=exc)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_payload("Internal Server Error", request_id=request_id))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  request_id, method, path = _request_context(request)
  sanitized_errors = _sanitize_validation_errors(exc.errors())
  # 422s are client-correctable; one warning line without payloads is enough.
  logger.warning("Request validation failed request_id=%s %s %s errors=%s", request_id, method, path, sanitized_errors)
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_error_payload(sanitized_errors, request_id=request_id))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Mask server-side details on 5xx; 503 keeps its detail so clients can tell push is unavailable."""
  request_id, method, path = _request_context(request)
  headers = getattr(exc, "headers", None)
  if exc.status_code >= 500 and exc.status_code != status.HTTP_503_SERVICE_UNAVAILABLE:
    logger.error("HTTPException request_id=%s %s %s status_code=%s detail=%s", request_id, method, path, exc.status_code, exc.detail, exc_info=exc.__cause__ or exc)
    return JSONResponse(status_code=exc.status_code, content=_error_payload("Internal Server Error", request_id=request_id), headers=headers)

  if get_settings().log_http_4xx:
    logger.warning("HTTPException request_id=%s %s %s status_code=%s detail=%s", request_id, method, path, exc.status_code, _sanitize_http_detail(exc.detail))

  return JSONResponse(status_code=exc.status_code, content=_error_payload(exc.detail, request_id=request_id), headers=headers)
