"""
Content-addressed media library.

Every image reference is keyed by sha256("<owner>-<normalized url>"), so:
- put() of the same (owner, url) twice lands on the same record
- existence checks never need a scan, only the id
- concurrent puts for the same pair converge through insert_if_absent

URL normalization only rewrites urls of recognized blob-store hosts, where the
query string (download tokens, alt=media) does not identify the content.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, Optional
from urllib.parse import unquote, urlparse

from src.backend.fs.hashing import compute_record_id
from src.backend.store import DocumentStore
from src.shared.errors import ErrorKind
from src.shared.timestamps import utc_timestamp

from .dedup import DedupIndex
from .models import MediaMetadata, MediaRecord, PutResult, SyncCandidate, SyncResult


COLLECTION_NAME = "media"

DEFAULT_BLOB_HOSTS = frozenset({"firebasestorage.googleapis.com"})

# Inline data urls above this length would blow the per-document size limit
MAX_INLINE_URL_LENGTH = 1_000_000

logger = logging.getLogger(__name__)


def normalize_url(url: str, recognized_hosts: Iterable[str] = DEFAULT_BLOB_HOSTS) -> str:
    """
    Canonical form of an image url.

    Blob-store urls: query and fragment dropped, path percent-decoded,
    trailing slash removed. Anything else: surrounding whitespace trimmed.
    """
    trimmed = url.strip()
    parsed = urlparse(trimmed)
    if parsed.scheme not in ("http", "https"):
        return trimmed

    hosts = {h.lower() for h in recognized_hosts}
    if (parsed.hostname or "").lower() not in hosts:
        return trimmed

    path = unquote(parsed.path)
    if len(path) > 1:
        path = path.rstrip("/")
    return f"{parsed.scheme}://{parsed.netloc.lower()}{path}"


class MediaStore:
    """
    Deduplicated per-owner index of image references.

    Usage:
        media = MediaStore(store=DocumentStore(), recognized_hosts={"firebasestorage.googleapis.com"})

        result = media.put(url, MediaMetadata(owner_id="u1", prompt_set_id="s1"))
        if result.error == ErrorKind.TOO_LARGE:
            ...

        # Same pair again: same id, nothing written
        assert media.put(url, MediaMetadata(owner_id="u1")).record.id == result.record.id
    """

    def __init__(
        self,
        *,
        store: DocumentStore,
        recognized_hosts: Iterable[str] = DEFAULT_BLOB_HOSTS,
        max_inline_url_length: int = MAX_INLINE_URL_LENGTH,
    ) -> None:
        self._docs = store.collection(COLLECTION_NAME)
        self._recognized_hosts = frozenset(h.lower() for h in recognized_hosts)
        self._max_inline_url_length = max_inline_url_length

    @property
    def recognized_hosts(self) -> frozenset[str]:
        return self._recognized_hosts

    def set_max_inline_url_length(self, value: int) -> None:
        if value < 1:
            raise ValueError("max_inline_url_length must be >= 1")
        self._max_inline_url_length = value

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def normalize(self, url: str) -> str:
        return normalize_url(url, self._recognized_hosts)

    def record_id(self, owner_id: str, url: str) -> str:
        return compute_record_id(owner_id, self.normalize(url))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put(self, url: str, metadata: MediaMetadata, *, overwrite: bool = False) -> PutResult:
        """
        Register an image for `metadata.owner_id`.

        With overwrite=False an existing record for the same (owner, url) is
        returned unchanged. With overwrite=True it is replaced.
        """
        if len(url) > self._max_inline_url_length:
            logger.warning(
                "Media put rejected for %s: url length %d exceeds %d",
                metadata.owner_id,
                len(url),
                self._max_inline_url_length,
            )
            return PutResult(record=None, created=False, error=ErrorKind.TOO_LARGE)

        record = MediaRecord(
            id=self.record_id(metadata.owner_id, url),
            owner_id=metadata.owner_id,
            url=url.strip(),
            created_at=metadata.created_at or utc_timestamp(),
            source_prompt_set_id=metadata.prompt_set_id,
            source_version_id=metadata.version_id,
        )

        if overwrite:
            created = not self._docs.contains(record.id)
            stored = self._docs.set(record.id, record.to_persist_dict())
            return PutResult(record=MediaRecord.from_persist_dict(stored), created=created)

        stored, created = self._docs.insert_if_absent(record.id, record.to_persist_dict())
        return PutResult(record=MediaRecord.from_persist_dict(stored), created=created)

    def delete(self, record_id: str, acting_user_id: str, *, is_admin: bool = False) -> bool:
        record = self.get(record_id)
        if record is None:
            return False
        if not is_admin and record.owner_id != acting_user_id:
            logger.info("Media delete refused: %s does not own %s", acting_user_id, record_id)
            return False
        return self._docs.delete(record_id)

    def delete_many(self, record_ids: Iterable[str], acting_user_id: str, *, is_admin: bool = False) -> int:
        return sum(1 for rid in record_ids if self.delete(rid, acting_user_id, is_admin=is_admin))

    def upsert_raw(self, raw: dict) -> bool:
        """
        Store a backup document as-is, keyed by its original id.

        Returns:
            True if the id was new.
        """
        record_id = str(raw.get("id", "") or "")
        if not record_id:
            raise ValueError("media record without id")
        is_new = not self._docs.contains(record_id)
        self._docs.set(record_id, raw)
        return is_new

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, record_id: str) -> Optional[MediaRecord]:
        raw = self._docs.get(record_id)
        return MediaRecord.from_persist_dict(raw) if raw is not None else None

    def owner_of(self, record_id: str) -> Optional[str]:
        raw = self._docs.get(record_id)
        return str(raw.get("userId", "")) if raw is not None else None

    def exists(self, owner_id: str, url: str) -> bool:
        return self._docs.contains(self.record_id(owner_id, url))

    def exists_by_id(self, record_id: str) -> bool:
        return self._docs.contains(record_id)

    def list_for_owner(self, owner_id: str, *, include_all: bool = False) -> list[MediaRecord]:
        """
        Records of one owner, newest first. include_all lists every owner's
        records; callers must check the actor is an admin.
        """
        docs = self._docs.all() if include_all else self._docs.where(userId=owner_id)
        docs.sort(key=lambda d: str(d.get("createdAt", "")), reverse=True)
        return [MediaRecord.from_persist_dict(d) for d in docs]

    def list_raw(self, owner_id: Optional[str] = None) -> list[dict]:
        docs = self._docs.all() if owner_id is None else self._docs.where(userId=owner_id)
        return sorted(docs, key=lambda d: str(d.get("createdAt", "")))

    # ------------------------------------------------------------------
    # Batch sync
    # ------------------------------------------------------------------

    def sync_from_source(self, candidates: Iterable[SyncCandidate]) -> SyncResult:
        """
        Idempotent batch ingest.

        1. For every owner among the candidates, collapse records that share a
           normalized url onto the deterministic id (re-keying the oldest one
           if the canonical record is missing). `cleaned` counts the records
           removed by this step.
        2. Insert each candidate whose (owner, normalized url) is not present.
           `added` counts new records.

        Failures on a single group or candidate are logged and skipped.
        """
        candidates = list(candidates)
        owners = {c.owner_id for c in candidates}

        index = DedupIndex(normalize=self.normalize, record_id=self.record_id)
        for owner_id in sorted(owners):
            index.load(self.list_for_owner(owner_id))
        logger.debug("Media sync: index loaded %s", index.stats())

        cleaned = 0
        for group in index.groups_needing_cleanup():
            try:
                before = len(group.records)
                survivor = group.canonical
                if survivor is None:
                    oldest = group.strays[0]
                    survivor = replace(oldest, id=group.canonical_id)
                    stored, _ = self._docs.insert_if_absent(survivor.id, survivor.to_persist_dict())
                    survivor = MediaRecord.from_persist_dict(stored)
                for stray in group.strays:
                    self._docs.delete(stray.id)
                index.resolve(group, survivor)
                cleaned += before - 1
            except Exception as exc:  # noqa: BLE001 - one bad group must not stop the sync
                logger.warning(
                    "Media sync: failed to collapse duplicates of %s for %s: %s",
                    group.normalized_url,
                    group.owner_id,
                    exc,
                )

        added = 0
        for candidate in candidates:
            if not candidate.url or not candidate.url.strip():
                continue
            if index.is_known(candidate.owner_id, candidate.url):
                continue
            try:
                result = self.put(
                    candidate.url,
                    MediaMetadata(
                        owner_id=candidate.owner_id,
                        prompt_set_id=candidate.prompt_set_id,
                        version_id=candidate.version_id,
                        created_at=candidate.created_at,
                    ),
                )
            except Exception as exc:  # noqa: BLE001
                logger.warning("Media sync: failed to add %s for %s: %s", candidate.url[:120], candidate.owner_id, exc)
                continue

            if result.record is None:
                logger.warning(
                    "Media sync: skipped image of version %s (%s)",
                    candidate.version_id,
                    result.error.value if result.error else "unknown",
                )
                continue
            index.register(result.record)
            if result.created:
                added += 1

        if added or cleaned:
            logger.info("Media sync: added=%d cleaned=%d owners=%d", added, cleaned, len(owners))
        return SyncResult(added=added, cleaned=cleaned)
