from __future__ import annotations

import asyncio
import datetime
import logging
import random
import uuid

import pytest
from app.notifications.error_log import ERROR_LOGGER_NAME
from app.schema.notifications import Notification
from app.schema.push_subscriptions import PushSubscription
from app.schema.sql import User
from app.services.cleanup_scheduler import CLEANUP_JOB_ID, NotificationCleanupScheduler
from app.services.maintenance import RetentionResult, purge_expired_notifications
from sqlalchemy import func, select

NOW = datetime.datetime(2026, 6, 15, 6, 0, 0, tzinfo=datetime.UTC)


async def _insert(session_factory, user_id: uuid.UUID, *, age_days: int, read_age_days: int | None = None) -> uuid.UUID:
  """Store a notification created `age_days` ago, read `read_age_days` ago when given."""
  read_at = NOW - datetime.timedelta(days=read_age_days) if read_age_days is not None else None
  row = Notification(user_id=user_id, type="status_change", title="Status changed", message="Ticket resolved", created_at=NOW - datetime.timedelta(days=age_days), read_at=read_at)
  async with session_factory() as session:
    session.add(row)
    await session.commit()
    return row.id


async def _remaining_ids(session_factory) -> set[uuid.UUID]:
  async with session_factory() as session:
    return set((await session.execute(select(Notification.id))).scalars().all())


async def _purge(session_factory) -> RetentionResult:
  async with session_factory() as session:
    return await purge_expired_notifications(session, now=NOW, read_retention_days=90, unread_retention_days=180)


def _scheduler(session_factory, **kwargs) -> NotificationCleanupScheduler:
  return NotificationCleanupScheduler(session_factory=session_factory, clock=lambda: NOW, **kwargs)


@pytest.mark.anyio
@pytest.mark.parametrize("seed", [3, 17, 101])
async def test_retention_matches_age_threshold_for_random_ages(session_factory, make_user, seed):
  rng = random.Random(seed)
  user = await make_user()
  expected_kept: set[uuid.UUID] = set()
  expected_read_deleted = expected_unread_deleted = 0
  for _ in range(40):
    age, read = rng.randint(1, 200), rng.random() < 0.5
    # Read time falls anywhere between creation and now; only creation age decides eligibility.
    notification_id = await _insert(session_factory, user.id, age_days=age, read_age_days=rng.randint(0, age) if read else None)
    threshold = 90 if read else 180
    if age > threshold:
      expected_read_deleted += read
      expected_unread_deleted += not read
    else:
      expected_kept.add(notification_id)

  result = await _purge(session_factory)

  assert (result.read_deleted, result.unread_deleted) == (expected_read_deleted, expected_unread_deleted)
  assert await _remaining_ids(session_factory) == expected_kept


@pytest.mark.anyio
async def test_read_notifications_around_ninety_days(session_factory, make_user):
  user = await make_user()
  expired = await _insert(session_factory, user.id, age_days=95, read_age_days=94)
  kept = await _insert(session_factory, user.id, age_days=85, read_age_days=84)

  result = await _purge(session_factory)

  assert result.read_deleted == 1
  assert result.read_cutoff == NOW - datetime.timedelta(days=90)
  remaining = await _remaining_ids(session_factory)
  assert expired not in remaining
  assert remaining == {kept}


@pytest.mark.anyio
async def test_read_age_is_measured_from_creation_not_from_read_time(session_factory, make_user):
  user = await make_user()
  # Read moments ago, but created long before the read window.
  old_but_just_read = await _insert(session_factory, user.id, age_days=100, read_age_days=0)
  # Read long ago, but created inside the read window.
  recent_read_long_ago = await _insert(session_factory, user.id, age_days=89, read_age_days=89)

  result = await _purge(session_factory)

  assert (result.read_deleted, result.unread_deleted) == (1, 0)
  remaining = await _remaining_ids(session_factory)
  assert old_but_just_read not in remaining
  assert recent_read_long_ago in remaining


@pytest.mark.anyio
async def test_unread_notifications_around_one_hundred_eighty_days(session_factory, make_user):
  user = await make_user()
  expired = await _insert(session_factory, user.id, age_days=181)
  fresh = await _insert(session_factory, user.id, age_days=179)
  # Unread rows past the read window but inside the unread window survive.
  mid = await _insert(session_factory, user.id, age_days=120)

  result = await _purge(session_factory)

  assert (result.read_deleted, result.unread_deleted) == (0, 1)
  remaining = await _remaining_ids(session_factory)
  assert expired not in remaining
  assert {fresh, mid} <= remaining


@pytest.mark.anyio
async def test_cleanup_leaves_users_and_push_subscriptions_untouched(session_factory, make_user):
  users = [await make_user() for _ in range(3)]
  inactive = await make_user(is_active=False)
  async with session_factory() as session:
    for user in [*users, inactive]:
      session.add(PushSubscription(user_id=user.id, endpoint=f"https://fcm.googleapis.com/fcm/send/{user.id}", p256dh="k", auth="a"))
    await session.commit()
  for user in users:
    await _insert(session_factory, user.id, age_days=199)
    await _insert(session_factory, user.id, age_days=150, read_age_days=149)

  async with session_factory() as session:
    users_before = [(u.id, u.email, u.is_active) for u in (await session.execute(select(User).order_by(User.id))).scalars()]

  result = await _scheduler(session_factory).run_once()

  assert result is not None
  assert result.total_deleted == 6
  async with session_factory() as session:
    users_after = [(u.id, u.email, u.is_active) for u in (await session.execute(select(User).order_by(User.id))).scalars()]
    subscriptions = (await session.execute(select(func.count()).select_from(PushSubscription))).scalar_one()
  assert users_after == users_before
  assert subscriptions == 4


@pytest.mark.anyio
async def test_concurrent_run_once_executes_a_single_cycle(session_factory, monkeypatch):
  started = asyncio.Event()
  release = asyncio.Event()
  calls = {"count": 0}

  async def _blocking_purge(session, **kwargs):
    calls["count"] += 1
    started.set()
    await release.wait()
    return RetentionResult(read_deleted=0, unread_deleted=0, read_cutoff=NOW, unread_cutoff=NOW)

  monkeypatch.setattr("app.services.cleanup_scheduler.purge_expired_notifications", _blocking_purge)
  scheduler = _scheduler(session_factory)

  first = asyncio.create_task(scheduler.run_once())
  await started.wait()
  assert scheduler.is_running is True
  skipped = await asyncio.gather(scheduler.run_once(), scheduler.run_once())
  release.set()
  completed = await first

  assert skipped == [None, None]
  assert isinstance(completed, RetentionResult)
  assert calls["count"] == 1
  assert scheduler.is_running is False


@pytest.mark.anyio
async def test_cleanup_failure_is_logged_critical_and_swallowed(session_factory, monkeypatch, caplog):
  caplog.set_level(logging.CRITICAL, logger=ERROR_LOGGER_NAME)

  async def _broken_purge(session, **kwargs):
    raise RuntimeError("connection reset")

  monkeypatch.setattr("app.services.cleanup_scheduler.purge_expired_notifications", _broken_purge)
  scheduler = _scheduler(session_factory)

  assert await scheduler.run_once() is None
  assert scheduler.is_running is False

  records = [r.notification_error for r in caplog.records if hasattr(r, "notification_error")]
  assert len(records) == 1
  assert (records[0].operation, records[0].severity) == ("cleanup.run", "critical")
  assert isinstance(records[0].error, RuntimeError)

  # The lock was released, so the next cycle runs normally.
  monkeypatch.setattr("app.services.cleanup_scheduler.purge_expired_notifications", purge_expired_notifications)
  assert isinstance(await scheduler.run_once(), RetentionResult)


@pytest.mark.anyio
async def test_start_registers_daily_cron_job_once(session_factory):
  scheduler = _scheduler(session_factory, timezone="America/Sao_Paulo")
  assert scheduler.is_scheduled is False
  assert scheduler.job is None

  scheduler.start()
  try:
    job = scheduler.job
    assert scheduler.is_scheduled is True
    assert job is not None
    assert job.id == CLEANUP_JOB_ID
    assert job.coalesce is True
    assert job.max_instances == 1
    assert str(job.trigger.timezone) == "America/Sao_Paulo"
    fields = {field.name: str(field) for field in job.trigger.fields}
    assert (fields["hour"], fields["minute"]) == ("3", "0")

    scheduler.start()
    assert scheduler.job is not None
  finally:
    scheduler.stop()

  assert scheduler.is_scheduled is False
  scheduler.stop()


def test_scheduler_exposes_retention_settings_and_rejects_non_positive_windows():
  scheduler = NotificationCleanupScheduler(read_retention_days=30, unread_retention_days=60)
  assert (scheduler.retention_settings.read_days, scheduler.retention_settings.unread_days) == (30, 60)
  with pytest.raises(ValueError):
    NotificationCleanupScheduler(read_retention_days=0)
