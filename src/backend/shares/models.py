"""
Models for the share handshake.

    inTransit --accept--> accepted   (terminal)
    inTransit --reject--> rejected   (terminal)
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from src.backend.prompts.models import PromptSet


class ShareState(str, Enum):
    IN_TRANSIT = "inTransit"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    def is_terminal(self) -> bool:
        return self != ShareState.IN_TRANSIT


@dataclass
class ShareOffer:
    id: str
    prompt_set_id: str
    prompt_set_snapshot: PromptSet
    sender_id: str
    recipient_id: str
    state: ShareState
    created_at: str
    responded_at: Optional[str] = None

    def involves(self, user_id: str) -> bool:
        return user_id in (self.sender_id, self.recipient_id)

    def to_persist_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "promptSetId": self.prompt_set_id,
            "promptSetSnapshot": copy.deepcopy(self.prompt_set_snapshot.to_persist_dict()),
            "senderId": self.sender_id,
            "recipientId": self.recipient_id,
            "state": self.state.value,
            "createdAt": self.created_at,
        }
        if self.responded_at is not None:
            data["respondedAt"] = self.responded_at
        return data

    @classmethod
    def from_persist_dict(cls, data: dict[str, Any]) -> "ShareOffer":
        raw_snapshot = data.get("promptSetSnapshot")
        snapshot = PromptSet.from_persist_dict(raw_snapshot if isinstance(raw_snapshot, dict) else {})
        responded_at = data.get("respondedAt")
        return cls(
            id=str(data.get("id", "") or ""),
            prompt_set_id=str(data.get("promptSetId", "") or snapshot.id),
            prompt_set_snapshot=snapshot,
            sender_id=str(data.get("senderId", "") or ""),
            recipient_id=str(data.get("recipientId", "") or ""),
            state=ShareState(str(data.get("state", ShareState.IN_TRANSIT.value))),
            created_at=str(data.get("createdAt", "") or ""),
            responded_at=str(responded_at) if responded_at is not None else None,
        )
