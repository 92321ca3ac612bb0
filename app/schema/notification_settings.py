"""SQLAlchemy model for per-user notification delivery preferences."""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Boolean, DateTime, ForeignKey, Uuid, func, true
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


def _flag() -> Mapped[bool]:
  return mapped_column(Boolean, nullable=False, default=True, server_default=true())


class UserNotificationSettings(Base):
  """One row per user who changed a delivery preference; users without a row receive everything."""

  __tablename__ = "user_notification_settings"

  user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
  new_ticket_assigned: Mapped[bool] = _flag()
  ticket_status_changed: Mapped[bool] = _flag()
  new_reply_received: Mapped[bool] = _flag()
  ticket_escalated: Mapped[bool] = _flag()
  ticket_due_soon: Mapped[bool] = _flag()
  new_customer_registered: Mapped[bool] = _flag()
  new_user_created: Mapped[bool] = _flag()
  system_maintenance: Mapped[bool] = _flag()
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
