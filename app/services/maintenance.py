"""Maintenance services for scheduled background cleanup tasks."""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from app.schema.notifications import Notification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetentionResult:
  """Rows removed by one retention cycle and the cutoffs that selected them."""

  read_deleted: int
  unread_deleted: int
  read_cutoff: datetime.datetime
  unread_cutoff: datetime.datetime

  @property
  def total_deleted(self) -> int:
    return self.read_deleted + self.unread_deleted


async def purge_expired_notifications(session: AsyncSession, *, now: datetime.datetime, read_retention_days: int, unread_retention_days: int) -> RetentionResult:
  """Delete notifications older than their retention window.

  How/Why:
    - Age is measured from `created_at` for both read and unread rows, so a row
      created long ago and read today is still eligible.
    - The read and unread predicates are disjoint on `read_at` nullity; no row
      is counted twice.
    - Only the notifications table is touched.
  """
  read_cutoff = now - datetime.timedelta(days=read_retention_days)
  unread_cutoff = now - datetime.timedelta(days=unread_retention_days)
  logger.info("Purging read notifications created before %s and unread before %s", read_cutoff.isoformat(), unread_cutoff.isoformat())

  read_result = await session.execute(sa.delete(Notification).where(Notification.read_at.is_not(None), Notification.created_at < read_cutoff))
  unread_result = await session.execute(sa.delete(Notification).where(Notification.read_at.is_(None), Notification.created_at < unread_cutoff))
  await session.commit()

  return RetentionResult(read_deleted=int(read_result.rowcount or 0), unread_deleted=int(unread_result.rowcount or 0), read_cutoff=read_cutoff, unread_cutoff=unread_cutoff)
