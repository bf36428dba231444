"""
Prompt set persistence.

Editing prompt text is out of scope here; the repository only offers what the
share and backup flows need: lookup, creation of an already-built set, owner
listing, and id-keyed upsert for restores.
"""

from __future__ import annotations

from typing import Optional

from src.backend.store import DocumentStore
from src.shared.timestamps import utc_timestamp

from .models import PromptSet


COLLECTION_NAME = "promptSets"


class PromptSetRepository:
    def __init__(self, *, store: DocumentStore) -> None:
        self._docs = store.collection(COLLECTION_NAME)

    def get_by_id(self, prompt_set_id: str) -> Optional[PromptSet]:
        raw = self._docs.get(prompt_set_id)
        return PromptSet.from_persist_dict(raw) if raw is not None else None

    def owner_of(self, prompt_set_id: str) -> Optional[str]:
        raw = self._docs.get(prompt_set_id)
        return str(raw.get("userId", "")) if raw is not None else None

    def create(self, owner_id: str, prompt_set: PromptSet) -> PromptSet:
        """
        Persist `prompt_set` as a new set owned by `owner_id`.

        Ids are taken from the given set; callers assign fresh ones. Every
        version is re-pointed at the set id.
        """
        created = prompt_set.deep_copy()
        created.owner_id = owner_id
        if not created.created_at:
            created.created_at = utc_timestamp()
        if not created.updated_at:
            created.updated_at = created.created_at
        for version in created.versions:
            version.prompt_set_id = created.id

        stored, inserted = self._docs.insert_if_absent(created.id, created.to_persist_dict())
        if not inserted:
            raise ValueError(f"prompt set {created.id} already exists")
        return PromptSet.from_persist_dict(stored)

    def upsert_raw(self, raw: dict) -> bool:
        """
        Store a backup document as-is, keyed by its id.

        Returns:
            True if the id was new, False if an existing set was overwritten.
        """
        prompt_set_id = str(raw.get("id", "") or "")
        if not prompt_set_id:
            raise ValueError("prompt set without id")
        is_new = not self._docs.contains(prompt_set_id)
        self._docs.set(prompt_set_id, raw)
        return is_new

    def save(self, prompt_set: PromptSet) -> PromptSet:
        stored = self._docs.set(prompt_set.id, prompt_set.to_persist_dict())
        return PromptSet.from_persist_dict(stored)

    def list_by_owner(self, owner_id: str) -> list[PromptSet]:
        return self._sorted(self._docs.where(userId=owner_id))

    def list_all(self) -> list[PromptSet]:
        return self._sorted(self._docs.all())

    def list_raw(self, owner_id: Optional[str] = None) -> list[dict]:
        docs = self._docs.all() if owner_id is None else self._docs.where(userId=owner_id)
        return sorted(docs, key=lambda d: str(d.get("createdAt", "")))

    @staticmethod
    def _sorted(docs: list[dict]) -> list[PromptSet]:
        docs = sorted(docs, key=lambda d: str(d.get("createdAt", "")), reverse=True)
        return [PromptSet.from_persist_dict(d) for d in docs]
