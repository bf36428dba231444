"""
Models for media export/import and JSON backups.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple, Optional

from src.shared.errors import MalformedArchiveError


MANIFEST_FORMAT_VERSION = "1.0"


class Resolution(str, Enum):
    """
    Answer to "this image already exists in your library".

    - OVERWRITE / SKIP: this entry only
    - OVERWRITE_ALL / SKIP_ALL: this entry and every later conflict of the
      same import (sticky)
    """
    OVERWRITE = "overwrite"
    SKIP = "skip"
    OVERWRITE_ALL = "overwriteAll"
    SKIP_ALL = "skipAll"

    @property
    def is_sticky(self) -> bool:
        return self in (Resolution.OVERWRITE_ALL, Resolution.SKIP_ALL)

    @property
    def skips(self) -> bool:
        return self in (Resolution.SKIP, Resolution.SKIP_ALL)


class BackupKind(str, Enum):
    PROMPT_SET = "promptSet"
    MEDIA = "media"
    ALL = "all"

    @property
    def includes_prompt_sets(self) -> bool:
        return self in (BackupKind.PROMPT_SET, BackupKind.ALL)

    @property
    def includes_media(self) -> bool:
        return self in (BackupKind.MEDIA, BackupKind.ALL)


def _opt_str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


@dataclass(frozen=True)
class ManifestEntry:
    id: str
    filename: str
    original_url: str
    owner_id: str
    created_at: str
    prompt_set_id: Optional[str] = None
    version_id: Optional[str] = None

    def to_persist_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "originalUrl": self.original_url,
            "promptSetId": self.prompt_set_id,
            "versionId": self.version_id,
            "createdAt": self.created_at,
            "userId": self.owner_id,
        }

    @classmethod
    def from_persist_dict(cls, data: dict[str, Any]) -> "ManifestEntry":
        return cls(
            id=str(data.get("id", "") or ""),
            filename=str(data.get("filename", "") or ""),
            original_url=str(data.get("originalUrl", "") or ""),
            owner_id=str(data.get("userId", "") or ""),
            created_at=str(data.get("createdAt", "") or ""),
            prompt_set_id=_opt_str(data.get("promptSetId")),
            version_id=_opt_str(data.get("versionId")),
        )


@dataclass
class ArchiveManifest:
    """
    metadata.json of an export:

        {"version": "1.0", "images": [{"id", "filename", "originalUrl", ...}]}
    """
    format_version: str = MANIFEST_FORMAT_VERSION
    entries: list[ManifestEntry] = field(default_factory=list)

    def to_json(self) -> str:
        payload = {
            "images": [e.to_persist_dict() for e in self.entries],
            "version": self.format_version,
        }
        return json.dumps(payload, ensure_ascii=False, indent=2)

    @classmethod
    def from_json(cls, text: str) -> "ArchiveManifest":
        """
        Raises:
            MalformedArchiveError: If the text is not a manifest.
        """
        try:
            raw = json.loads(text)
        except ValueError as exc:
            raise MalformedArchiveError(f"Invalid archive: metadata.json is not JSON ({exc})") from exc

        if not isinstance(raw, dict):
            raise MalformedArchiveError("Invalid archive: metadata.json must be an object")

        images = raw.get("images")
        if not isinstance(images, list):
            raise MalformedArchiveError("Invalid archive: metadata.json has no image list")

        entries = [
            ManifestEntry.from_persist_dict(item if isinstance(item, dict) else {})
            for item in images
        ]
        return cls(format_version=str(raw.get("version", MANIFEST_FORMAT_VERSION)), entries=entries)


class ImportSummary(NamedTuple):
    restored: int
    skipped: int
    total: int

    def to_dict(self) -> dict[str, int]:
        return {"restored": self.restored, "skipped": self.skipped, "total": self.total}


class RestoreSummary(NamedTuple):
    restored_prompt_sets: int
    restored_media: int


@dataclass(frozen=True)
class Backup:
    id: str
    owner_id: str
    kind: BackupKind
    file_name: str
    payload: str
    created_at: str

    def to_persist_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.owner_id,
            "type": self.kind.value,
            "fileName": self.file_name,
            "file": self.payload,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_persist_dict(cls, data: dict[str, Any]) -> "Backup":
        try:
            kind = BackupKind(str(data.get("type", BackupKind.ALL.value)))
        except ValueError:
            kind = BackupKind.ALL
        return cls(
            id=str(data.get("id", "") or ""),
            owner_id=str(data.get("userId", "") or ""),
            kind=kind,
            file_name=str(data.get("fileName", "") or ""),
            payload=str(data.get("file", "") or ""),
            created_at=str(data.get("createdAt", "") or ""),
        )
