import logging
import time
import uuid
from typing import Any

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger("app.core.middleware")

REQUEST_ID_HEADER = "x-request-id"


def _normalize_headers(scope: Scope) -> dict[str, str]:
  """Normalize scope headers so downstream logging can check them safely."""
  return {key.decode("latin-1").lower(): value.decode("latin-1") for key, value in scope.get("headers", [])}


def _build_request_url(scope: Scope) -> str:
  """Build a readable URL path for logging without relying on Request bodies."""
  path = scope.get("path", "")
  query_string = scope.get("query_string", b"")
  if query_string:
    # WebSocket handshakes carry the bearer token in the query string.
    redacted = "&".join("token=***" if part.startswith("token=") else part for part in query_string.decode("latin-1").split("&"))
    return f"{path}?{redacted}"

  return path


class RequestLoggingMiddleware:
  """Log request metadata and attach a request id to every HTTP response."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    """Record request/response metadata without logging request bodies."""
    # Skip lifespan events; WebSocket handshakes are logged but carry no response status.
    if scope["type"] not in {"http", "websocket"}:
      await self.app(scope, receive, send)
      return

    headers = _normalize_headers(scope)
    # Reuse a caller-provided request id so traces line up across services.
    request_id = headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    scope.setdefault("state", {})["request_id"] = request_id

    start_time = time.time()
    method = scope.get("method", "WEBSOCKET")
    url = _build_request_url(scope)
    logger.info("Incoming request request_id=%s %s %s", request_id, method, url)

    if scope["type"] == "websocket":
      await self.app(scope, receive, send)
      return

    status_code: int | None = None

    async def send_wrapper(message: dict[str, Any]) -> None:
      nonlocal status_code
      if message.get("type") == "http.response.start":
        status_code = message.get("status")
        # Attach a request id to responses to correlate clients with server logs.
        response_headers = MutableHeaders(scope=message)
        if REQUEST_ID_HEADER not in response_headers:
          response_headers[REQUEST_ID_HEADER] = request_id

      await send(message)

    await self.app(scope, receive, send_wrapper)

    process_time = (time.time() - start_time) * 1000
    logger.info("Response request_id=%s %s %s status=%s (took %.2fms)", request_id, method, scope.get("path", ""), status_code or 0, process_time)
