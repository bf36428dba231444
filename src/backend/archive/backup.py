"""
JSON backups of prompt sets and media records.

A backup payload is the raw documents of one owner:

    {"promptSets": [...], "media": [...]}

Restore merges by id: existing documents are overwritten, unseen ones are
inserted, and only inserted ones are counted.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from src.backend.media import MediaStore
from src.backend.prompts import PromptSetRepository
from src.backend.store import DocumentStore
from src.shared.errors import MalformedBackupError
from src.shared.timestamps import utc_timestamp

from .models import Backup, BackupKind, RestoreSummary


COLLECTION_NAME = "backups"

logger = logging.getLogger(__name__)


def generate_backup_name(kind: BackupKind) -> str:
    """
    Format: backup-{kind}-{YYYY-MM-DDTHH-MM-SS-mmmZ}.json
    """
    now = datetime.now(timezone.utc)
    timestamp = now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"
    return f"backup-{kind.value}-{timestamp}.json"


class BackupService:
    def __init__(self, *, store: DocumentStore, prompt_sets: PromptSetRepository, media: MediaStore) -> None:
        self._docs = store.collection(COLLECTION_NAME)
        self._prompt_sets = prompt_sets
        self._media = media

    def create_backup(self, owner_id: str, kind: BackupKind, *, include_all: bool = False) -> Backup:
        """
        Snapshot `owner_id`'s documents. include_all snapshots every owner;
        callers must check the actor is an admin.
        """
        source_owner: Optional[str] = None if include_all else owner_id
        data: dict[str, Any] = {}
        if kind.includes_prompt_sets:
            data["promptSets"] = self._prompt_sets.list_raw(source_owner)
        if kind.includes_media:
            data["media"] = self._media.list_raw(source_owner)

        backup = Backup(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            kind=kind,
            file_name=generate_backup_name(kind),
            payload=json.dumps(data, ensure_ascii=False),
            created_at=utc_timestamp(),
        )
        self._docs.set(backup.id, backup.to_persist_dict())
        logger.info(
            "Backup %s created for %s: %d prompt sets, %d media",
            backup.file_name,
            owner_id,
            len(data.get("promptSets", [])),
            len(data.get("media", [])),
        )
        return backup

    def list_backups(self, owner_id: str, *, is_admin: bool = False) -> list[Backup]:
        docs = self._docs.all() if is_admin else self._docs.where(userId=owner_id)
        docs.sort(key=lambda d: str(d.get("createdAt", "")), reverse=True)
        return [Backup.from_persist_dict(d) for d in docs]

    def get_backup(self, backup_id: str, acting_user_id: str, *, is_admin: bool = False) -> Optional[Backup]:
        raw = self._docs.get(backup_id)
        if raw is None:
            return None
        backup = Backup.from_persist_dict(raw)
        if not is_admin and backup.owner_id != acting_user_id:
            return None
        return backup

    def delete_backup(self, backup_id: str, acting_user_id: str, *, is_admin: bool = False) -> bool:
        if self.get_backup(backup_id, acting_user_id, is_admin=is_admin) is None:
            logger.info("Backup delete refused or missing: %s by %s", backup_id, acting_user_id)
            return False
        return self._docs.delete(backup_id)

    def restore(self, payload_json: str, *, restrict_to_owner: Optional[str] = None) -> RestoreSummary:
        """
        Merge a backup payload into the live collections.

        Args:
            payload_json: Backup file content.
            restrict_to_owner: When set, only documents owned by this account
                are merged, and none replaces a document someone else owns.

        Raises:
            MalformedBackupError: If the payload is not a JSON object.
        """
        try:
            data = json.loads(payload_json)
        except (TypeError, ValueError) as exc:
            raise MalformedBackupError(f"Invalid backup file format: {exc}") from exc
        if not isinstance(data, dict):
            raise MalformedBackupError("Invalid backup file format: expected an object")

        restored_sets = self._merge(
            data.get("promptSets"),
            self._prompt_sets.upsert_raw,
            self._prompt_sets.owner_of,
            restrict_to_owner,
        )
        restored_media = self._merge(
            data.get("media"),
            self._media.upsert_raw,
            self._media.owner_of,
            restrict_to_owner,
            id_matches=self._media_id_matches,
        )

        summary = RestoreSummary(restored_prompt_sets=restored_sets, restored_media=restored_media)
        logger.info(
            "Backup restored: %d new prompt sets, %d new media",
            summary.restored_prompt_sets,
            summary.restored_media,
        )
        return summary

    def _media_id_matches(self, item: dict) -> bool:
        return item.get("id") == self._media.record_id(str(item.get("userId", "")), str(item.get("url", "")))

    @staticmethod
    def _merge(
        items: Any,
        upsert: Callable[[dict], bool],
        owner_of: Callable[[str], Optional[str]],
        restrict_to_owner: Optional[str],
        *,
        id_matches: Optional[Callable[[dict], bool]] = None,
    ) -> int:
        if not isinstance(items, list):
            return 0
        inserted = 0
        for item in items:
            if not isinstance(item, dict):
                continue
            if restrict_to_owner is not None:
                doc_id = str(item.get("id", "") or "")
                current_owner = owner_of(doc_id) if doc_id else None
                if item.get("userId") != restrict_to_owner or current_owner not in (None, restrict_to_owner):
                    logger.warning("Restore: skipping %s owned by another account", doc_id or "<no id>")
                    continue
                if id_matches is not None and not id_matches(item):
                    logger.warning("Restore: skipping %s, id does not match its owner and url", doc_id or "<no id>")
                    continue
            try:
                if upsert(item):
                    inserted += 1
            except ValueError as exc:
                logger.warning("Restore: skipping document: %s", exc)
        return inserted
