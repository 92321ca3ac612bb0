"""Notification orchestration: persist first, then fan out to delivery channels."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from collections.abc import Iterable, Sequence
from enum import Enum
from typing import Any

from app.notifications.contracts import PREFERENCE_FLAG_BY_TYPE, DispatchSummary, InvalidPushSubscriptionError, NotificationDraft, NotificationPreferences, NotificationRecord, PushNotification, PushSender, PushSubscriptionEntry, TransientPushProviderError
from app.notifications.error_log import log_notification_error
from app.notifications.in_app_repo import NotificationRepository
from app.notifications.preferences_repo import NotificationPreferencesRepository
from app.notifications.push_sender import PUSH_TTL_SECONDS, build_push_payload, push_urgency
from app.notifications.push_subscription_repo import PushSubscriptionRepository
from app.notifications.realtime import NotificationConnectionManager
from app.schema.notifications import NotificationPriority

logger = logging.getLogger(__name__)


class PushOutcome(str, Enum):
  SENT = "sent"
  PRUNED = "pruned"
  FAILED = "failed"


def _allows(preferences: NotificationPreferences | None, notification_type: str) -> bool:
  return preferences is None or preferences.allows(notification_type)


class NotificationService:
  """Persists notifications and delivers them over WebSocket and Web Push."""

  def __init__(
    self,
    *,
    repository: NotificationRepository,
    push_subscription_repo: PushSubscriptionRepository,
    push_sender: PushSender,
    connection_manager: NotificationConnectionManager,
    push_enabled: bool,
    vapid_public_key: str | None = None,
    preferences_repo: NotificationPreferencesRepository | None = None,
  ) -> None:
    self._repository = repository
    self._push_subscription_repo = push_subscription_repo
    self._push_sender = push_sender
    self._connection_manager = connection_manager
    self._push_enabled = push_enabled
    self._vapid_public_key = vapid_public_key
    self._preferences_repo = preferences_repo
    self._tasks: set[asyncio.Task[Any]] = set()

  @property
  def repository(self) -> NotificationRepository:
    return self._repository

  @property
  def connection_manager(self) -> NotificationConnectionManager:
    return self._connection_manager

  @property
  def push_enabled(self) -> bool:
    return self._push_enabled

  @property
  def vapid_public_key(self) -> str | None:
    return self._vapid_public_key if self._push_enabled else None

  async def notify(self, draft: NotificationDraft) -> NotificationRecord:
    """Persist a notification and schedule its delivery without waiting for it.

    Persistence errors propagate to the caller. Delivery runs in a background
    task and can never fail or roll back the stored row.
    """
    record = await self._repository.create(draft)
    self._spawn(self.dispatch(record), context={"notificationId": str(record.id), "userId": str(record.user_id)})
    return record

  async def notify_many(
    self,
    user_ids: Iterable[uuid.UUID],
    *,
    type: str,
    title: str,
    message: str,
    priority: str = NotificationPriority.MEDIUM.value,
    ticket_id: uuid.UUID | None = None,
    ticket_code: str | None = None,
    metadata: dict[str, Any] | None = None,
  ) -> list[NotificationRecord]:
    """Create one notification per distinct user and deliver them with a single subscription lookup.

    The rows are stored in one transaction, so a persistence error leaves no
    recipient with an undelivered notification.
    """
    drafts = [
      NotificationDraft(user_id=user_id, type=type, title=title, message=message, priority=priority, ticket_id=ticket_id, ticket_code=ticket_code, metadata=metadata)
      for user_id in dict.fromkeys(user_ids)
    ]
    records = await self._repository.create_many(drafts)

    if records:
      self._spawn(self._dispatch_batch(records), context={"notificationType": type, "recipients": len(records)})
    return records

  async def _dispatch_batch(self, records: Sequence[NotificationRecord]) -> list[DispatchSummary]:
    preferences = await self._load_preferences(records)
    allowed = {record.id: _allows(preferences.get(record.user_id), record.type) for record in records}

    by_user: dict[uuid.UUID, list[PushSubscriptionEntry]] = defaultdict(list)
    recipients = [record.user_id for record in records if allowed[record.id]]
    if self._push_enabled and recipients:
      try:
        for subscription in await self._push_subscription_repo.list_for_users(user_ids=recipients):
          by_user[subscription.user_id].append(subscription)
      except Exception as exc:  # noqa: BLE001
        # Without subscriptions the WebSocket channel still runs for every recipient.
        log_notification_error("push.lookup_subscriptions", exc, "error", {"recipients": len(recipients)})

    return list(await asyncio.gather(*(self.dispatch(record, subscriptions=by_user.get(record.user_id, []), allowed=allowed[record.id]) for record in records)))

  async def _load_preferences(self, records: Sequence[NotificationRecord]) -> dict[uuid.UUID, NotificationPreferences]:
    """Fetch preferences for recipients of switchable types; a failed lookup delivers to everyone."""
    user_ids = [record.user_id for record in records if record.type in PREFERENCE_FLAG_BY_TYPE]
    if self._preferences_repo is None or not user_ids:
      return {}
    try:
      return await self._preferences_repo.get_for_users(user_ids=user_ids)
    except Exception as exc:  # noqa: BLE001
      log_notification_error("preferences.lookup", exc, "warning", {"recipients": len(user_ids)})
      return {}

  async def dispatch(self, record: NotificationRecord, *, subscriptions: Sequence[PushSubscriptionEntry] | None = None, allowed: bool | None = None) -> DispatchSummary:
    """Deliver a stored notification over every channel concurrently; never raises.

    `allowed` carries a preference decision already made for a batch; when it is
    None the recipient's preferences are looked up here.
    """
    if allowed is None:
      preferences = await self._load_preferences([record])
      allowed = _allows(preferences.get(record.user_id), record.type)
    if not allowed:
      logger.info("Notification delivery suppressed by user preference id=%s user_id=%s type=%s", record.id, record.user_id, record.type)
      return DispatchSummary(notification_id=record.id, push_skipped=True, suppressed=True)

    websocket_result, push_result = await asyncio.gather(self._deliver_websocket(record), self._deliver_push(record, subscriptions), return_exceptions=True)

    sessions = websocket_result if isinstance(websocket_result, int) else 0
    if isinstance(push_result, BaseException):
      log_notification_error("dispatch.task", push_result, "error", {"notificationId": str(record.id), "userId": str(record.user_id)})
      outcomes: list[PushOutcome] | None = []
    else:
      outcomes = push_result

    summary = DispatchSummary(
      notification_id=record.id,
      websocket_sessions=sessions,
      push_sent=sum(1 for o in outcomes or () if o is PushOutcome.SENT),
      push_pruned=sum(1 for o in outcomes or () if o is PushOutcome.PRUNED),
      push_failed=sum(1 for o in outcomes or () if o is PushOutcome.FAILED),
      push_skipped=outcomes is None,
    )
    logger.info(
      "Notification dispatched id=%s user_id=%s websocket_sessions=%s push_sent=%s push_pruned=%s push_failed=%s",
      record.id,
      record.user_id,
      summary.websocket_sessions,
      summary.push_sent,
      summary.push_pruned,
      summary.push_failed,
    )
    return summary

  async def _deliver_websocket(self, record: NotificationRecord) -> int:
    try:
      return await self._connection_manager.send_to_user(record.user_id, {"type": "notification", "data": record.to_api()})
    except Exception as exc:  # noqa: BLE001
      # Real-time delivery is best effort; the client catches up from the store on reconnect.
      log_notification_error("websocket.deliver", exc, "warning", {"userId": str(record.user_id), "notificationId": str(record.id)})
      return 0

  async def _deliver_push(self, record: NotificationRecord, subscriptions: Sequence[PushSubscriptionEntry] | None) -> list[PushOutcome] | None:
    context = {"userId": str(record.user_id), "notificationId": str(record.id), "notificationType": record.type}
    if not self._push_enabled:
      log_notification_error("push.deliver", "Web Push not configured", "warning", context)
      return None

    if subscriptions is None:
      try:
        subscriptions = await self._push_subscription_repo.list_for_user(user_id=record.user_id)
      except Exception as exc:  # noqa: BLE001
        log_notification_error("push.lookup_subscriptions", exc, "error", context)
        return []

    if not subscriptions:
      logger.debug("No push subscriptions user_id=%s", record.user_id)
      return []

    payload = build_push_payload(record)
    # Each subscription settles independently so one bad device never blocks the others.
    results = await asyncio.gather(*(self._send_to_subscription(subscription, payload, record.priority) for subscription in subscriptions), return_exceptions=True)
    outcomes: list[PushOutcome] = []
    for subscription, result in zip(subscriptions, results, strict=True):
      if isinstance(result, BaseException):
        log_notification_error("push.deliver", result, "error", {**context, "endpoint": subscription.endpoint})
        outcomes.append(PushOutcome.FAILED)
      else:
        outcomes.append(result)
    return outcomes

  async def _send_to_subscription(self, subscription: PushSubscriptionEntry, payload: dict[str, Any], priority: str) -> PushOutcome:
    """Send to one device and reconcile the registry with the provider's answer."""
    context = {"userId": str(subscription.user_id), "notificationId": payload.get("id"), "endpoint": subscription.endpoint}
    notification = PushNotification(endpoint=subscription.endpoint, p256dh=subscription.p256dh, auth=subscription.auth, payload=payload, urgency=push_urgency(priority), ttl=PUSH_TTL_SECONDS)
    try:
      await self._push_sender.send(notification)
    except InvalidPushSubscriptionError as exc:
      # The provider says this device is gone for good; remove it so it is never retried.
      log_notification_error("push.prune_subscription", exc, "info", {**context, "statusCode": exc.status_code})
      try:
        await self._push_subscription_repo.delete_by_endpoint(endpoint=subscription.endpoint)
      except Exception as delete_exc:  # noqa: BLE001
        log_notification_error("push.prune_subscription", delete_exc, "error", context)
      return PushOutcome.PRUNED
    except TransientPushProviderError as exc:
      log_notification_error("push.deliver", exc, "error", {**context, "retries": exc.retries, "statusCode": exc.status_code})
      await self._touch(subscription.endpoint, context)
      return PushOutcome.FAILED
    except Exception as exc:  # noqa: BLE001
      log_notification_error("push.deliver", exc, "error", context)
      return PushOutcome.FAILED

    await self._touch(subscription.endpoint, context)
    return PushOutcome.SENT

  async def _touch(self, endpoint: str, context: dict[str, Any]) -> None:
    try:
      await self._push_subscription_repo.touch(endpoint=endpoint)
    except Exception as exc:  # noqa: BLE001
      log_notification_error("push.deliver", exc, "warning", context)

  async def send_unread_count_update(self, user_id: uuid.UUID) -> None:
    """Push the current unread counter to the user's open sessions."""
    if self._connection_manager.session_count(user_id) == 0:
      return
    try:
      count = await self._repository.count_unread(user_id)
      await self._connection_manager.send_to_user(user_id, {"type": "unread_count", "count": count})
    except Exception as exc:  # noqa: BLE001
      log_notification_error("websocket.unread_count", exc, "warning", {"userId": str(user_id)})

  async def subscribe(self, *, user_id: uuid.UUID, endpoint: str, p256dh: str, auth: str, user_agent: str | None = None) -> None:
    try:
      await self._push_subscription_repo.upsert(PushSubscriptionEntry(user_id=user_id, endpoint=endpoint, p256dh=p256dh, auth=auth, user_agent=user_agent))
    except Exception as exc:
      log_notification_error("push.subscribe", exc, "error", {"userId": str(user_id), "endpoint": endpoint})
      raise
    logger.info("Push subscription registered user_id=%s", user_id)

  async def unsubscribe(self, *, user_id: uuid.UUID, endpoint: str) -> None:
    try:
      await self._push_subscription_repo.delete_for_user_endpoint(user_id=user_id, endpoint=endpoint)
    except Exception as exc:
      log_notification_error("push.unsubscribe", exc, "error", {"userId": str(user_id), "endpoint": endpoint})
      raise
    logger.info("Push subscription removed user_id=%s", user_id)

  def _spawn(self, coro: Any, *, context: dict[str, Any]) -> None:
    # Hold a reference until completion so the loop cannot garbage-collect running deliveries.
    task = asyncio.create_task(coro)
    self._tasks.add(task)
    task.add_done_callback(self._tasks.discard)
    task.add_done_callback(lambda t: self._log_task_error(t, context))

  @staticmethod
  def _log_task_error(task: asyncio.Task[Any], context: dict[str, Any]) -> None:
    """Log background task exceptions to avoid silent delivery failures."""
    if task.cancelled():
      return
    exc = task.exception()
    if exc is not None:
      log_notification_error("dispatch.task", exc, "error", context)

  async def drain(self) -> None:
    """Wait for in-flight deliveries; used on shutdown and in tests."""
    while self._tasks:
      await asyncio.gather(*list(self._tasks), return_exceptions=True)
