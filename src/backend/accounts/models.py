from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class Role(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


@dataclass(frozen=True)
class Account:
    id: str
    display_name: str
    role: Role = Role.MEMBER
    created_at: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def to_persist_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "role": self.role.value,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_persist_dict(cls, data: dict[str, Any]) -> "Account":
        try:
            role = Role(str(data.get("role", Role.MEMBER.value)))
        except ValueError:
            role = Role.MEMBER
        account_id = str(data.get("id", "") or "")
        return cls(
            id=account_id,
            display_name=str(data.get("displayName", "") or account_id),
            role=role,
            created_at=str(data.get("createdAt", "") or ""),
        )
