from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Optional


def _opt_str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


@dataclass
class PromptVersion:
    id: str
    prompt_set_id: str
    version_number: int
    prompt_text: str
    created_at: str
    updated_at: str
    image_url: Optional[str] = None
    image_generated_at: Optional[str] = None
    video_url: Optional[str] = None
    video_generated_at: Optional[str] = None
    notes: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    # Fields this service does not interpret (attachments, style prefs, ...)
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN_KEYS = (
        "id",
        "promptSetId",
        "versionNumber",
        "promptText",
        "imageUrl",
        "imageGeneratedAt",
        "videoUrl",
        "videoGeneratedAt",
        "notes",
        "tags",
        "createdAt",
        "updatedAt",
    )

    def to_persist_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = copy.deepcopy(self.extra)
        data.update(
            {
                "id": self.id,
                "promptSetId": self.prompt_set_id,
                "versionNumber": self.version_number,
                "promptText": self.prompt_text,
                "tags": list(self.tags),
                "createdAt": self.created_at,
                "updatedAt": self.updated_at,
            }
        )
        if self.image_url is not None:
            data["imageUrl"] = self.image_url
        if self.image_generated_at is not None:
            data["imageGeneratedAt"] = self.image_generated_at
        if self.video_url is not None:
            data["videoUrl"] = self.video_url
        if self.video_generated_at is not None:
            data["videoGeneratedAt"] = self.video_generated_at
        if self.notes is not None:
            data["notes"] = self.notes
        return data

    @classmethod
    def from_persist_dict(cls, data: dict[str, Any]) -> "PromptVersion":
        try:
            version_number = int(data.get("versionNumber", 1) or 1)
        except (TypeError, ValueError):
            version_number = 1

        raw_tags = data.get("tags")
        tags = [str(t) for t in raw_tags] if isinstance(raw_tags, list) else []

        return cls(
            id=str(data.get("id", "") or ""),
            prompt_set_id=str(data.get("promptSetId", "") or ""),
            version_number=version_number,
            prompt_text=str(data.get("promptText", "") or ""),
            created_at=str(data.get("createdAt", "") or ""),
            updated_at=str(data.get("updatedAt", "") or ""),
            image_url=_opt_str(data.get("imageUrl")) or None,
            image_generated_at=_opt_str(data.get("imageGeneratedAt")),
            video_url=_opt_str(data.get("videoUrl")) or None,
            video_generated_at=_opt_str(data.get("videoGeneratedAt")),
            notes=_opt_str(data.get("notes")),
            tags=tags,
            extra={k: copy.deepcopy(v) for k, v in data.items() if k not in cls._KNOWN_KEYS},
        )


@dataclass
class PromptSet:
    id: str
    owner_id: str
    title: str
    created_at: str
    updated_at: str
    description: Optional[str] = None
    category_id: Optional[str] = None
    notes: Optional[str] = None
    versions: list[PromptVersion] = field(default_factory=list)

    def to_persist_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "userId": self.owner_id,
            "title": self.title,
            "versions": [v.to_persist_dict() for v in self.versions],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.description is not None:
            data["description"] = self.description
        if self.category_id is not None:
            data["categoryId"] = self.category_id
        if self.notes is not None:
            data["notes"] = self.notes
        return data

    @classmethod
    def from_persist_dict(cls, data: dict[str, Any]) -> "PromptSet":
        raw_versions = data.get("versions")
        versions = []
        if isinstance(raw_versions, list):
            versions = [PromptVersion.from_persist_dict(v) for v in raw_versions if isinstance(v, dict)]

        return cls(
            id=str(data.get("id", "") or ""),
            owner_id=str(data.get("userId", "") or ""),
            title=str(data.get("title", "") or ""),
            created_at=str(data.get("createdAt", "") or ""),
            updated_at=str(data.get("updatedAt", "") or ""),
            description=_opt_str(data.get("description")),
            category_id=_opt_str(data.get("categoryId")),
            notes=_opt_str(data.get("notes")),
            versions=versions,
        )

    def deep_copy(self) -> "PromptSet":
        """Independent value copy (serialize/deserialize round trip)."""
        return PromptSet.from_persist_dict(copy.deepcopy(self.to_persist_dict()))
