"""
Notification sink.

The share flow only needs `notify(...)`. Delivery (push, email, ...) is out of
scope; notifications are stored per user and read back by the API.
"""

from __future__ import annotations

import uuid
from typing import Optional, Protocol

from src.backend.store import DocumentStore
from src.shared.timestamps import utc_timestamp

from .models import Notification, NotificationKind


COLLECTION_NAME = "notifications"


class NotificationSink(Protocol):
    async def notify(
        self,
        user_id: str,
        kind: NotificationKind,
        message: str,
        related_id: Optional[str] = None,
    ) -> None:
        ...


class StoredNotificationSink:
    def __init__(self, *, store: DocumentStore) -> None:
        self._docs = store.collection(COLLECTION_NAME)

    async def notify(
        self,
        user_id: str,
        kind: NotificationKind,
        message: str,
        related_id: Optional[str] = None,
    ) -> None:
        notification = Notification(
            id=str(uuid.uuid4()),
            user_id=user_id,
            kind=kind,
            message=message,
            created_at=utc_timestamp(),
            related_id=related_id,
        )
        self._docs.set(notification.id, notification.to_persist_dict())

    def list_for_user(self, user_id: str, *, unread_only: bool = False) -> list[Notification]:
        docs = self._docs.where(userId=user_id)
        if unread_only:
            docs = [d for d in docs if not d.get("read")]
        docs.sort(key=lambda d: str(d.get("createdAt", "")), reverse=True)
        return [Notification.from_persist_dict(d) for d in docs]

    def unread_count(self, user_id: str) -> int:
        return len(self.list_for_user(user_id, unread_only=True))

    def mark_read(self, notification_id: str, user_id: str) -> bool:
        updated = self._docs.compare_and_update(
            notification_id,
            expected={"userId": user_id},
            fields={"read": True},
        )
        return updated is not None

    def mark_all_read(self, user_id: str) -> int:
        marked = 0
        for notification in self.list_for_user(user_id, unread_only=True):
            if self.mark_read(notification.id, user_id):
                marked += 1
        return marked
