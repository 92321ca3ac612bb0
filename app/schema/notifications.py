"""SQLAlchemy model for persistent per-user notifications."""

from __future__ import annotations

import datetime
import uuid
from enum import Enum

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Index, Text, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class NotificationType(str, Enum):
  """Known notification categories; other strings are stored as catch-all types."""

  NEW_TICKET = "new_ticket"
  STATUS_CHANGE = "status_change"
  NEW_REPLY = "new_reply"
  PARTICIPANT_ADDED = "participant_added"
  PARTICIPANT_REMOVED = "participant_removed"
  TICKET_ESCALATED = "ticket_escalated"
  TICKET_DUE_SOON = "ticket_due_soon"


class NotificationPriority(str, Enum):
  LOW = "low"
  MEDIUM = "medium"
  HIGH = "high"
  CRITICAL = "critical"


def _utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


class Notification(Base):
  """Persist one user-facing notification; the system of record for every delivery channel."""

  __tablename__ = "notifications"
  __table_args__ = (
    CheckConstraint("priority IN ('low', 'medium', 'high', 'critical')", name="ck_notifications_priority"),
    CheckConstraint("type <> ''", name="ck_notifications_type_not_empty"),
    CheckConstraint("title <> ''", name="ck_notifications_title_not_empty"),
    CheckConstraint("message <> ''", name="ck_notifications_message_not_empty"),
    Index("ix_notifications_user_read_created", "user_id", "read_at", "created_at"),
  )

  id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
  user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
  type: Mapped[str] = mapped_column(Text, nullable=False, index=True)
  priority: Mapped[str] = mapped_column(Text, nullable=False, index=True, default=NotificationPriority.MEDIUM.value, server_default=NotificationPriority.MEDIUM.value)
  title: Mapped[str] = mapped_column(Text, nullable=False)
  message: Mapped[str] = mapped_column(Text, nullable=False)
  # Weak back-reference for navigation only; tickets are owned elsewhere.
  ticket_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
  ticket_code: Mapped[str | None] = mapped_column(Text, nullable=True)
  metadata_json: Mapped[dict | None] = mapped_column("metadata", JSON().with_variant(JSONB(), "postgresql"), nullable=True)
  read_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True, default=_utcnow, server_default=func.now())
