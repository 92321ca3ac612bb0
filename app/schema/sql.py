from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Boolean, DateTime, String, func, true
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.schema.notification_settings import UserNotificationSettings  # noqa: F401
from app.schema.notifications import Notification  # noqa: F401
from app.schema.push_subscriptions import PushSubscription  # noqa: F401


class User(Base):
  """Account row owned by the identity subsystem; modelled only as far as notifications need it."""

  __tablename__ = "users"

  id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
  email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
  full_name: Mapped[str | None] = mapped_column(String, nullable=True)
  is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true(), nullable=False)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
