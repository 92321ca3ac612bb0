"""Repository for the notification store."""

from __future__ import annotations

import datetime
import logging
import uuid
from collections.abc import Sequence

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql.elements import ColumnElement

from app.core.database import require_session_factory
from app.notifications.contracts import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT, NotificationDraft, NotificationFilters, NotificationPage, NotificationRecord
from app.schema.notifications import Notification

logger = logging.getLogger(__name__)

_PRIORITY_RANK = case({"critical": 4, "high": 3, "medium": 2, "low": 1}, value=Notification.priority, else_=0)


def _to_record(row: Notification) -> NotificationRecord:
  return NotificationRecord(
    id=row.id,
    user_id=row.user_id,
    type=row.type,
    priority=row.priority,
    title=row.title,
    message=row.message,
    ticket_id=row.ticket_id,
    ticket_code=row.ticket_code,
    metadata=row.metadata_json,
    created_at=_as_utc(row.created_at),
    read_at=_as_utc(row.read_at) if row.read_at else None,
  )


def _utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


def _as_utc(value: datetime.datetime) -> datetime.datetime:
  # Some drivers hand back naive timestamps; the store only ever writes UTC.
  return value if value.tzinfo is not None else value.replace(tzinfo=datetime.UTC)


def _new_row(draft: NotificationDraft) -> Notification:
  return Notification(
    user_id=draft.user_id,
    type=draft.type,
    priority=draft.priority,
    title=draft.title,
    message=draft.message,
    ticket_id=draft.ticket_id,
    ticket_code=draft.ticket_code,
    metadata_json=draft.metadata,
    created_at=_utcnow(),
    read_at=None,
  )


def _escape_like(term: str) -> str:
  # Search is a literal substring match; LIKE wildcards typed by the user match themselves.
  return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _owned(notification_id: uuid.UUID, user_id: uuid.UUID | None) -> list[ColumnElement[bool]]:
  clauses: list[ColumnElement[bool]] = [Notification.id == notification_id]
  if user_id is not None:
    clauses.append(Notification.user_id == user_id)
  return clauses


class NotificationRepository:
  """Persist and query user notifications in Postgres."""

  def __init__(self, *, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory

  def _sessions(self) -> async_sessionmaker[AsyncSession]:
    # Resolve lazily so the app can start before the engine is configured.
    return self._session_factory or require_session_factory()

  async def create(self, draft: NotificationDraft) -> NotificationRecord:
    """Insert a new unread notification row."""
    async with self._sessions()() as session:
      row = _new_row(draft)
      session.add(row)
      await session.commit()
      return _to_record(row)

  async def create_many(self, drafts: Sequence[NotificationDraft]) -> list[NotificationRecord]:
    """Insert a batch of notifications in one transaction; either every row is stored or none is."""
    if not drafts:
      return []
    async with self._sessions()() as session:
      rows = [_new_row(draft) for draft in drafts]
      session.add_all(rows)
      try:
        await session.commit()
      except Exception:
        await session.rollback()
        raise
      logger.debug("Created notification batch size=%s", len(rows))
      return [_to_record(row) for row in rows]

  async def get(self, notification_id: uuid.UUID, *, user_id: uuid.UUID | None = None) -> NotificationRecord | None:
    async with self._sessions()() as session:
      row = (await session.execute(select(Notification).where(*_owned(notification_id, user_id)))).scalar_one_or_none()
      return _to_record(row) if row is not None else None

  async def mark_read(self, notification_id: uuid.UUID, *, user_id: uuid.UUID | None = None) -> bool:
    """Set read_at once; returns whether the notification exists for the caller."""
    async with self._sessions()() as session:
      exists = (await session.execute(select(Notification.id).where(*_owned(notification_id, user_id)))).scalar_one_or_none()
      if exists is None:
        return False
      # Only null read_at rows are touched so a second call never moves the timestamp.
      stmt = update(Notification).where(*_owned(notification_id, user_id), Notification.read_at.is_(None)).values(read_at=_utcnow())
      await session.execute(stmt)
      await session.commit()
      return True

  async def mark_all_read(self, user_id: uuid.UUID) -> int:
    async with self._sessions()() as session:
      stmt = update(Notification).where(Notification.user_id == user_id, Notification.read_at.is_(None)).values(read_at=_utcnow())
      result = await session.execute(stmt)
      await session.commit()
      return int(result.rowcount or 0)

  async def count_unread(self, user_id: uuid.UUID) -> int:
    async with self._sessions()() as session:
      return await self._count_unread_with_session(session=session, user_id=user_id)

  async def _count_unread_with_session(self, *, session: AsyncSession, user_id: uuid.UUID) -> int:
    stmt = select(func.count()).select_from(Notification).where(Notification.user_id == user_id, Notification.read_at.is_(None))
    return int((await session.execute(stmt)).scalar_one())

  async def list(self, user_id: uuid.UUID, filters: NotificationFilters | None = None, *, page: int = 1, limit: int = DEFAULT_PAGE_LIMIT) -> NotificationPage:
    """Return one filtered, sorted page of the user's notifications."""
    filters = filters or NotificationFilters()
    page = max(1, page)
    limit = min(MAX_PAGE_LIMIT, max(1, limit))
    offset = (page - 1) * limit

    conditions: list[ColumnElement[bool]] = [Notification.user_id == user_id]
    if filters.type:
      conditions.append(Notification.type == filters.type)
    if filters.read is True:
      conditions.append(Notification.read_at.is_not(None))
    elif filters.read is False:
      conditions.append(Notification.read_at.is_(None))
    if filters.start_date is not None:
      conditions.append(Notification.created_at >= filters.start_date)
    if filters.end_date is not None:
      conditions.append(Notification.created_at <= filters.end_date)
    if filters.search and filters.search.strip():
      term = f"%{_escape_like(filters.search.strip())}%"
      conditions.append(or_(Notification.title.ilike(term, escape="\\"), Notification.message.ilike(term, escape="\\")))

    sort_column = _PRIORITY_RANK if filters.sort_by == "priority" else Notification.created_at
    ordering = [sort_column.asc() if filters.sort_order == "asc" else sort_column.desc()]
    # Break priority ties newest first so pages stay stable.
    if filters.sort_by == "priority":
      ordering.append(Notification.created_at.desc())
    ordering.append(Notification.id)

    async with self._sessions()() as session:
      total = int((await session.execute(select(func.count()).select_from(Notification).where(*conditions))).scalar_one())
      unread_count = await self._count_unread_with_session(session=session, user_id=user_id)
      rows = (await session.execute(select(Notification).where(*conditions).order_by(*ordering).offset(offset).limit(limit))).scalars().all()

    items = [_to_record(row) for row in rows]
    return NotificationPage(items=items, total=total, unread_count=unread_count, page=page, limit=limit, has_more=offset + len(items) < total)

  async def delete(self, notification_id: uuid.UUID, *, user_id: uuid.UUID | None = None) -> bool:
    async with self._sessions()() as session:
      result = await session.execute(delete(Notification).where(*_owned(notification_id, user_id)))
      await session.commit()
      return bool(result.rowcount)

  async def delete_many(self, user_id: uuid.UUID, notification_ids: Sequence[uuid.UUID]) -> int:
    """Delete several notifications, constrained to the owner."""
    if not notification_ids:
      return 0
    async with self._sessions()() as session:
      stmt = delete(Notification).where(Notification.user_id == user_id, Notification.id.in_(list(notification_ids)))
      result = await session.execute(stmt)
      await session.commit()
      logger.debug("Deleted notifications user_id=%s requested=%s deleted=%s", user_id, len(notification_ids), result.rowcount)
      return int(result.rowcount or 0)
