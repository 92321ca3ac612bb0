"""Repository for per-user notification delivery preferences."""

from __future__ import annotations

import dataclasses
import uuid
from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import require_session_factory
from app.notifications.contracts import NotificationPreferences
from app.schema.notification_settings import UserNotificationSettings

_FLAG_FIELDS = tuple(field.name for field in dataclasses.fields(NotificationPreferences) if field.name != "user_id")


def _to_preferences(row: UserNotificationSettings) -> NotificationPreferences:
  return NotificationPreferences(user_id=row.user_id, **{name: getattr(row, name) for name in _FLAG_FIELDS})


class NotificationPreferencesRepository:
  """Read and write the user_notification_settings rows."""

  def __init__(self, *, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory

  def _sessions(self) -> async_sessionmaker[AsyncSession]:
    return self._session_factory or require_session_factory()

  async def get_for_user(self, *, user_id: uuid.UUID) -> NotificationPreferences | None:
    """Return the user's preferences, or None when they never changed the defaults."""
    return (await self.get_for_users(user_ids=[user_id])).get(user_id)

  async def get_for_users(self, *, user_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, NotificationPreferences]:
    """Load preferences for several users with a single query; users without a row are absent."""
    distinct_ids = list(dict.fromkeys(user_ids))
    if not distinct_ids:
      return {}
    async with self._sessions()() as session:
      rows = (await session.execute(select(UserNotificationSettings).where(UserNotificationSettings.user_id.in_(distinct_ids)))).scalars().all()
      return {row.user_id: _to_preferences(row) for row in rows}

  async def upsert(self, preferences: NotificationPreferences) -> None:
    """Store every flag for the user, creating the row on first change."""
    async with self._sessions()() as session:
      insert = sqlite.insert if session.get_bind().dialect.name == "sqlite" else postgresql.insert
      flags = {name: getattr(preferences, name) for name in _FLAG_FIELDS}
      stmt = insert(UserNotificationSettings).values(user_id=preferences.user_id, **flags)
      stmt = stmt.on_conflict_do_update(index_elements=["user_id"], set_={**flags, "updated_at": func.now()})
      await session.execute(stmt)
      await session.commit()
