"""Schema package exports."""

from .notification_settings import UserNotificationSettings
from .notifications import Notification, NotificationPriority, NotificationType
from .push_subscriptions import PushSubscription
from .sql import User

__all__ = ["Notification", "NotificationPriority", "NotificationType", "PushSubscription", "User", "UserNotificationSettings"]
