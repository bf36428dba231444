from .models import Notification, NotificationKind
from .sink import NotificationSink, StoredNotificationSink

__all__ = [
    "Notification",
    "NotificationKind",
    "NotificationSink",
    "StoredNotificationSink",
]
