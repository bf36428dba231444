from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from src.backend.accounts.api import Actor, ActorDependency

from .models import Notification, NotificationKind
from .sink import StoredNotificationSink


class NotificationOut(BaseModel):
    id: str
    kind: NotificationKind
    message: str
    read: bool
    created_at: str
    related_id: Optional[str] = None


class UnreadCountOut(BaseModel):
    unread: int


def _notification_out(n: Notification) -> NotificationOut:
    return NotificationOut(
        id=n.id,
        kind=n.kind,
        message=n.message,
        read=n.read,
        created_at=n.created_at,
        related_id=n.related_id,
    )


def create_notifications_router(*, sink: StoredNotificationSink, actor: ActorDependency) -> APIRouter:
    router = APIRouter(prefix="/api/notifications", tags=["notifications"])

    @router.get("", response_model=List[NotificationOut])
    def list_notifications(unread_only: bool = False, current: Actor = Depends(actor)) -> List[NotificationOut]:
        return [_notification_out(n) for n in sink.list_for_user(current.user_id, unread_only=unread_only)]

    @router.get("/unread-count", response_model=UnreadCountOut)
    def unread_count(current: Actor = Depends(actor)) -> UnreadCountOut:
        return UnreadCountOut(unread=sink.unread_count(current.user_id))

    @router.post("/{notification_id}/read")
    def mark_read(notification_id: str, current: Actor = Depends(actor)) -> dict[str, bool]:
        if not sink.mark_read(notification_id, current.user_id):
            raise HTTPException(status_code=404, detail="Notification not found")
        return {"read": True}

    @router.post("/read-all", response_model=UnreadCountOut)
    def mark_all_read(current: Actor = Depends(actor)) -> UnreadCountOut:
        sink.mark_all_read(current.user_id)
        return UnreadCountOut(unread=sink.unread_count(current.user_id))

    return router
