from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class NotificationKind(str, Enum):
    SHARE_RECEIVED = "share_received"
    SHARE_ACCEPTED = "share_accepted"
    SHARE_REJECTED = "share_rejected"


@dataclass
class Notification:
    id: str
    user_id: str
    kind: NotificationKind
    message: str
    created_at: str
    related_id: Optional[str] = None
    read: bool = False

    def to_persist_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "userId": self.user_id,
            "type": self.kind.value,
            "message": self.message,
            "read": self.read,
            "createdAt": self.created_at,
        }
        if self.related_id is not None:
            data["relatedShareId"] = self.related_id
        return data

    @classmethod
    def from_persist_dict(cls, data: dict[str, Any]) -> "Notification":
        related = data.get("relatedShareId")
        return cls(
            id=str(data.get("id", "") or ""),
            user_id=str(data.get("userId", "") or ""),
            kind=NotificationKind(str(data.get("type", NotificationKind.SHARE_RECEIVED.value))),
            message=str(data.get("message", "") or ""),
            created_at=str(data.get("createdAt", "") or ""),
            related_id=str(related) if related is not None else None,
            read=bool(data.get("read", False)),
        )
