"""Repository helpers for Web Push subscription persistence."""

from __future__ import annotations

import datetime
import uuid
from collections.abc import Iterable

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import require_session_factory
from app.notifications.contracts import PushSubscriptionEntry
from app.schema.push_subscriptions import PushSubscription


def _utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


def _to_entry(row: PushSubscription) -> PushSubscriptionEntry:
  return PushSubscriptionEntry(user_id=row.user_id, endpoint=row.endpoint, p256dh=row.p256dh, auth=row.auth, user_agent=row.user_agent)


class PushSubscriptionRepository:
  """Persist and manage push subscriptions in Postgres."""

  def __init__(self, *, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory

  def _sessions(self) -> async_sessionmaker[AsyncSession]:
    return self._session_factory or require_session_factory()

  async def upsert(self, entry: PushSubscriptionEntry) -> None:
    """Insert or update a subscription row keyed by endpoint."""
    async with self._sessions()() as session:
      await self._upsert_with_session(session=session, entry=entry)

  async def _upsert_with_session(self, *, session: AsyncSession, entry: PushSubscriptionEntry) -> None:
    # Upsert by endpoint so a browser refresh rotates keys cleanly and a new login on a shared device takes it over.
    insert = sqlite.insert if session.get_bind().dialect.name == "sqlite" else postgresql.insert
    now = _utcnow()
    values = {"user_id": entry.user_id, "endpoint": entry.endpoint, "p256dh": entry.p256dh, "auth": entry.auth, "user_agent": entry.user_agent, "last_used_at": now}
    stmt = insert(PushSubscription).values(id=uuid.uuid4(), created_at=now, **values)
    stmt = stmt.on_conflict_do_update(index_elements=["endpoint"], set_={"user_id": entry.user_id, "p256dh": entry.p256dh, "auth": entry.auth, "user_agent": entry.user_agent, "last_used_at": now})
    await session.execute(stmt)
    await session.commit()

  async def delete_for_user_endpoint(self, *, user_id: uuid.UUID, endpoint: str) -> int:
    """Delete a subscription for a specific user and endpoint."""
    async with self._sessions()() as session:
      # Constrain delete by user ownership so users cannot remove other devices.
      stmt = delete(PushSubscription).where(PushSubscription.user_id == user_id, PushSubscription.endpoint == endpoint)
      result = await session.execute(stmt)
      await session.commit()
      return int(result.rowcount or 0)

  async def list_for_user(self, *, user_id: uuid.UUID) -> list[PushSubscriptionEntry]:
    """List all push subscriptions for a user."""
    return await self.list_for_users(user_ids=[user_id])

  async def list_for_users(self, *, user_ids: Iterable[uuid.UUID]) -> list[PushSubscriptionEntry]:
    """List subscriptions for several users with a single query."""
    distinct_ids = list(dict.fromkeys(user_ids))
    if not distinct_ids:
      return []
    async with self._sessions()() as session:
      stmt = select(PushSubscription).where(PushSubscription.user_id.in_(distinct_ids)).order_by(PushSubscription.created_at)
      rows = (await session.execute(stmt)).scalars().all()
      return [_to_entry(row) for row in rows]

  async def touch(self, *, endpoint: str) -> None:
    """Record that a send was attempted against this endpoint."""
    async with self._sessions()() as session:
      await session.execute(update(PushSubscription).where(PushSubscription.endpoint == endpoint).values(last_used_at=_utcnow()))
      await session.commit()

  async def delete_by_endpoint(self, *, endpoint: str) -> int:
    """Delete subscriptions by endpoint regardless of owner."""
    async with self._sessions()() as session:
      # Remove invalidated endpoints immediately to avoid repeated provider errors.
      result = await session.execute(delete(PushSubscription).where(PushSubscription.endpoint == endpoint))
      await session.commit()
      return int(result.rowcount or 0)
