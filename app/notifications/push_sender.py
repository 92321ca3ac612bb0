"""Web Push delivery with bounded exponential backoff."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any

from pywebpush import WebPushException, webpush
from starlette.concurrency import run_in_threadpool

from app.notifications.contracts import InvalidPushSubscriptionError, NotificationRecord, PushNotification, PushSender, TransientPushProviderError
from app.schema.notifications import NotificationPriority

logger = logging.getLogger(__name__)

PUSH_TTL_SECONDS = 86400

_PERMANENT_STATUSES = frozenset({HTTPStatus.NOT_FOUND, HTTPStatus.GONE})
_HIGH_URGENCY = frozenset({NotificationPriority.CRITICAL.value, NotificationPriority.HIGH.value})


@dataclass(frozen=True)
class VapidConfig:
  """Configuration required to sign Web Push requests."""

  public_key: str
  private_key: str
  sub: str


@dataclass(frozen=True)
class RetryPolicy:
  """Exponential backoff: one initial attempt followed by up to `max_retries` retries."""

  max_retries: int = 3
  base_delay_seconds: float = 1.0

  def delay_for(self, retry_index: int) -> float:
    """Delay before retry number `retry_index` (0-based): 1s, 2s, 4s with the defaults."""
    return self.base_delay_seconds * (2**retry_index)


def push_urgency(priority: str) -> str:
  return "high" if priority in _HIGH_URGENCY else "normal"


def build_push_payload(record: NotificationRecord) -> dict[str, Any]:
  """Build the JSON body the service worker renders."""
  payload: dict[str, Any] = {
    "id": str(record.id),
    "title": record.title,
    "message": record.message,
    "type": record.type,
    "priority": record.priority,
    "ticketId": str(record.ticket_id) if record.ticket_id else None,
    "ticketCode": record.ticket_code,
    "url": f"/tickets/{record.ticket_id}" if record.ticket_id else "/",
    "timestamp": record.created_at.isoformat(),
    "requireInteraction": record.priority == NotificationPriority.CRITICAL.value,
  }
  # Only urgent notifications vibrate; the browser default applies otherwise.
  if record.priority == NotificationPriority.CRITICAL.value:
    payload["vibrate"] = [200, 100, 200]
  elif record.priority == NotificationPriority.HIGH.value:
    payload["vibrate"] = [100]
  return payload


class WebPushSender(PushSender):
  """`pywebpush` backed sender with retry and invalid-endpoint handling."""

  def __init__(
    self, *, vapid_config: VapidConfig, timeout_seconds: float = 10.0, retry_policy: RetryPolicy | None = None, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
  ) -> None:
    self._vapid_config = vapid_config
    self._timeout_seconds = timeout_seconds
    self._retry_policy = retry_policy or RetryPolicy()
    self._sleep = sleep

  @property
  def retry_policy(self) -> RetryPolicy:
    return self._retry_policy

  def _deliver(self, notification: PushNotification) -> None:
    subscription_info = {"endpoint": notification.endpoint, "keys": {"p256dh": notification.p256dh, "auth": notification.auth}}
    # Send with VAPID signing so browser push services can verify origin.
    webpush(
      subscription_info=subscription_info,
      data=json.dumps(notification.payload),
      vapid_private_key=self._vapid_config.private_key,
      vapid_claims={"sub": self._vapid_config.sub},
      ttl=notification.ttl,
      headers={"Urgency": notification.urgency},
      timeout=self._timeout_seconds,
    )

  async def send(self, notification: PushNotification) -> None:
    """Send a Web Push payload, retrying transient failures with exponential backoff."""
    policy = self._retry_policy
    attempt = 0
    while True:
      try:
        # pywebpush is blocking; keep it off the event loop.
        await run_in_threadpool(self._deliver, notification)
        return
      except WebPushException as exc:
        status_code = _extract_status_code(exc)
        if status_code in _PERMANENT_STATUSES:
          raise InvalidPushSubscriptionError(f"Push subscription is invalid (status={status_code})", status_code=status_code) from exc
        last_error: Exception = exc
      except Exception as exc:  # noqa: BLE001
        # Network errors and timeouts carry no status and are always retried.
        status_code = None
        last_error = exc

      if attempt >= policy.max_retries:
        raise TransientPushProviderError(f"Push delivery failed after {attempt} retries (status={status_code or 'unknown'})", status_code=status_code, retries=attempt) from last_error

      delay = policy.delay_for(attempt)
      attempt += 1
      logger.warning("Push attempt failed; retrying endpoint=%s status=%s retry=%s/%s delay=%.1fs", _endpoint_label(notification.endpoint), status_code, attempt, policy.max_retries, delay)
      await self._sleep(delay)


class NullPushSender(PushSender):
  """No-op push sender used when push notifications are unconfigured."""

  async def send(self, notification: PushNotification) -> None:
    """Drop the notification while recording a warning."""
    logger.warning("Web Push not configured; dropping push endpoint=%s", _endpoint_label(notification.endpoint))


def _extract_status_code(exc: WebPushException) -> int | None:
  """Extract an HTTP status code from a pywebpush exception when available."""
  response = getattr(exc, "response", None)
  if response is None:
    return None

  status = getattr(response, "status_code", None)
  if isinstance(status, int):
    return status

  return None


def _endpoint_label(endpoint: str) -> str:
  # Push endpoints embed a per-device token; log only a short prefix.
  return endpoint[:60] + "..." if len(endpoint) > 60 else endpoint
