from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NamedTuple, Optional

from src.shared.errors import ErrorKind


@dataclass(frozen=True)
class MediaRecord:
    """
    One image reference in an owner's media library.

    `id` is derived from (owner_id, normalized url); see MediaStore.record_id().
    """
    id: str
    owner_id: str
    url: str
    created_at: str
    source_prompt_set_id: Optional[str] = None
    source_version_id: Optional[str] = None

    def to_persist_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "userId": self.owner_id,
            "url": self.url,
            "createdAt": self.created_at,
        }
        if self.source_prompt_set_id is not None:
            data["promptSetId"] = self.source_prompt_set_id
        if self.source_version_id is not None:
            data["versionId"] = self.source_version_id
        return data

    @classmethod
    def from_persist_dict(cls, data: dict[str, Any]) -> "MediaRecord":
        prompt_set_id = data.get("promptSetId")
        version_id = data.get("versionId")
        return cls(
            id=str(data.get("id", "") or ""),
            owner_id=str(data.get("userId", "") or ""),
            url=str(data.get("url", "") or ""),
            created_at=str(data.get("createdAt", "") or ""),
            source_prompt_set_id=str(prompt_set_id) if prompt_set_id is not None else None,
            source_version_id=str(version_id) if version_id is not None else None,
        )


class MediaMetadata(NamedTuple):
    """Who owns an image and where it came from."""
    owner_id: str
    prompt_set_id: Optional[str] = None
    version_id: Optional[str] = None
    created_at: Optional[str] = None


class PutResult(NamedTuple):
    """Result of MediaStore.put()."""
    record: Optional[MediaRecord]
    created: bool
    error: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.record is not None


class SyncCandidate(NamedTuple):
    """An image found on a prompt-set version, offered to sync_from_source()."""
    owner_id: str
    url: str
    prompt_set_id: Optional[str] = None
    version_id: Optional[str] = None
    created_at: Optional[str] = None


class SyncResult(NamedTuple):
    added: int
    cleaned: int
