"""Contracts for the notification store and its delivery channels."""

from __future__ import annotations

import datetime
import uuid
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from app.schema.notifications import NotificationPriority

SortField = Literal["created_at", "priority"]
SortOrder = Literal["asc", "desc"]

MAX_PAGE_LIMIT = 100
DEFAULT_PAGE_LIMIT = 20


@dataclass(frozen=True)
class NotificationDraft:
  """Represents a notification an event producer wants to persist and deliver."""

  user_id: uuid.UUID
  type: str
  title: str
  message: str
  priority: str = NotificationPriority.MEDIUM.value
  ticket_id: uuid.UUID | None = None
  ticket_code: str | None = None
  metadata: dict[str, Any] | None = None

  def __post_init__(self) -> None:
    # Reject drafts that would violate table constraints before touching the database.
    if not self.type or not self.title or not self.message:
      raise ValueError("Notification type, title and message must be non-empty.")
    if self.priority not in {p.value for p in NotificationPriority}:
      raise ValueError(f"Unknown notification priority: {self.priority!r}")


@dataclass(frozen=True)
class NotificationRecord:
  """Immutable snapshot of a persisted notification row."""

  id: uuid.UUID
  user_id: uuid.UUID
  type: str
  priority: str
  title: str
  message: str
  ticket_id: uuid.UUID | None
  ticket_code: str | None
  metadata: dict[str, Any] | None
  created_at: datetime.datetime
  read_at: datetime.datetime | None

  @property
  def is_read(self) -> bool:
    return self.read_at is not None

  def to_api(self) -> dict[str, Any]:
    """Serialize for HTTP and WebSocket clients."""
    return {
      "id": str(self.id),
      "userId": str(self.user_id),
      "type": self.type,
      "priority": self.priority,
      "title": self.title,
      "message": self.message,
      "ticketId": str(self.ticket_id) if self.ticket_id else None,
      "ticketCode": self.ticket_code,
      "metadata": self.metadata,
      "createdAt": self.created_at.isoformat(),
      "readAt": self.read_at.isoformat() if self.read_at else None,
    }


@dataclass(frozen=True)
class NotificationFilters:
  """Optional filters applied when listing a user's notifications."""

  type: str | None = None
  read: bool | None = None
  start_date: datetime.datetime | None = None
  end_date: datetime.datetime | None = None
  search: str | None = None
  sort_by: SortField = "created_at"
  sort_order: SortOrder = "desc"


@dataclass(frozen=True)
class NotificationPage:
  """One page of notifications plus the counters the inbox UI needs."""

  items: list[NotificationRecord]
  total: int
  unread_count: int
  page: int
  limit: int
  has_more: bool


@dataclass(frozen=True)
class PushSubscriptionEntry:
  """Capture a single web push subscription payload for storage."""

  user_id: uuid.UUID
  endpoint: str
  p256dh: str
  auth: str
  user_agent: str | None = None


# Notification types a user can switch off, keyed to the preference flag that controls them.
PREFERENCE_FLAG_BY_TYPE: dict[str, str] = {
  "new_ticket": "new_ticket_assigned",
  "status_change": "ticket_status_changed",
  "status_changed": "ticket_status_changed",
  "status_update": "ticket_status_changed",
  "new_reply": "new_reply_received",
  "ticket_escalated": "ticket_escalated",
  "ticket_due_soon": "ticket_due_soon",
  "new_customer": "new_customer_registered",
  "new_user": "new_user_created",
  "system_maintenance": "system_maintenance",
}


@dataclass(frozen=True)
class NotificationPreferences:
  """Per-type delivery opt-outs for one user.

  Every flag defaults to on, and types without a flag are always delivered.
  The preferences gate real-time channels only; the in-app row is stored regardless.
  """

  user_id: uuid.UUID
  new_ticket_assigned: bool = True
  ticket_status_changed: bool = True
  new_reply_received: bool = True
  ticket_escalated: bool = True
  ticket_due_soon: bool = True
  new_customer_registered: bool = True
  new_user_created: bool = True
  system_maintenance: bool = True

  def allows(self, notification_type: str) -> bool:
    flag = PREFERENCE_FLAG_BY_TYPE.get(notification_type)
    return flag is None or getattr(self, flag) is not False


@dataclass(frozen=True)
class PushNotification:
  """Represents a Web Push message addressed to one subscription."""

  endpoint: str
  p256dh: str
  auth: str
  payload: dict[str, Any]
  urgency: str = "normal"
  ttl: int = 86400


@dataclass(frozen=True)
class DispatchSummary:
  """Aggregated delivery outcome for one notification across channels."""

  notification_id: uuid.UUID
  websocket_sessions: int = 0
  push_sent: int = 0
  push_pruned: int = 0
  push_failed: int = 0
  push_skipped: bool = False
  suppressed: bool = False


class NotificationError(Exception):
  """Base class for all notification delivery failures."""


class NotificationProviderError(NotificationError):
  """Exception raised when the push provider returns a delivery error."""


class InvalidPushSubscriptionError(NotificationProviderError):
  """Exception raised when a push subscription endpoint is expired or invalid."""

  def __init__(self, message: str, *, status_code: int | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code


class TransientPushProviderError(NotificationProviderError):
  """Exception raised when transient push provider failures exhaust retries."""

  def __init__(self, message: str, *, status_code: int | None = None, retries: int = 0) -> None:
    super().__init__(message)
    self.status_code = status_code
    self.retries = retries


class PushSender(Protocol):
  """Delivery contract for sending push notifications."""

  async def send(self, notification: PushNotification) -> None:
    """Send a push notification, raising a NotificationProviderError on failure."""
