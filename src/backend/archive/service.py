"""
Bulk media export and re-runnable import.

Export writes one zip with metadata.json plus media/<id>.<ext> per image;
images whose blob cannot be fetched are left out.

Import restores every manifest entry to a blob path derived only from the
importing account and the entry id:

    users/<currentUser>/media/restored_<entryId>

so the media record id of each entry can be predicted before anything is
written, and importing the same archive again lands on the same records.
When a predicted record already exists the conflict policy decides; a
*All answer applies to every later conflict of the same call.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Sequence, Union

from src.backend.fs.archive_zip import ArchiveContainer, pack_archive
from src.backend.fs.blob_store import BlobStore
from src.backend.fs.naming import (
    archive_media_name,
    choose_extension,
    entry_id_from_filename,
    get_mime_for_extension,
    restored_blob_path,
)
from src.backend.media import MediaMetadata, MediaRecord, MediaStore
from src.shared.errors import MalformedArchiveError

from .conflicts import ConflictPolicy
from .models import ArchiveManifest, ImportSummary, ManifestEntry, Resolution


DEFAULT_MAX_CONCURRENT_FETCHES = 4

logger = logging.getLogger(__name__)

ArchiveSource = Union[bytes, Path, str, ArchiveContainer]


class ArchiveService:
    def __init__(
        self,
        *,
        media: MediaStore,
        blobs: BlobStore,
        max_concurrent_fetches: int = DEFAULT_MAX_CONCURRENT_FETCHES,
        conflict_timeout_s: Optional[float] = None,
    ) -> None:
        self._media = media
        self._blobs = blobs
        self._max_concurrent_fetches = max(1, int(max_concurrent_fetches))
        self._conflict_timeout_s = conflict_timeout_s

    def set_limits(self, *, max_concurrent_fetches: int, conflict_timeout_s: Optional[float]) -> None:
        if max_concurrent_fetches < 1:
            raise ValueError("max_concurrent_fetches must be >= 1")
        self._max_concurrent_fetches = max_concurrent_fetches
        self._conflict_timeout_s = conflict_timeout_s

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    async def export(self, records: Sequence[MediaRecord]) -> bytes:
        """
        Pack `records` into a zip container.

        Fetches run concurrently; a record whose blob cannot be fetched is
        logged and left out of both the zip and the manifest.
        """
        gate = asyncio.Semaphore(self._max_concurrent_fetches)
        fetched = await asyncio.gather(*(self._fetch(gate, r) for r in records))

        manifest = ArchiveManifest()
        media: list[tuple[str, bytes]] = []
        for record, data in zip(records, fetched):
            if data is None:
                continue
            ext = choose_extension(data, record.url)
            filename = f"{record.id}.{ext}"
            media.append((archive_media_name(record.id, ext), data))
            manifest.entries.append(
                ManifestEntry(
                    id=record.id,
                    filename=filename,
                    original_url=record.url,
                    owner_id=record.owner_id,
                    created_at=record.created_at,
                    prompt_set_id=record.source_prompt_set_id,
                    version_id=record.source_version_id,
                )
            )

        skipped = len(records) - len(manifest.entries)
        if skipped:
            logger.warning("Export: %d of %d images could not be fetched and were left out", skipped, len(records))
        logger.info("Export: packed %d images", len(manifest.entries))
        return pack_archive(manifest.to_json(), media)

    async def _fetch(self, gate: asyncio.Semaphore, record: MediaRecord) -> Optional[bytes]:
        async with gate:
            try:
                return await asyncio.to_thread(self._blobs.get, record.url)
            except Exception as exc:  # noqa: BLE001 - a missing blob must not fail the export
                logger.warning("Export: skipping %s: %s", record.id, exc)
                return None

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def predicted_record_id(self, current_user_id: str, entry: ManifestEntry) -> str:
        """Media record id an entry restores to for `current_user_id`."""
        url = self._blobs.url_for(restored_blob_path(current_user_id, self._entry_id(entry)))
        return self._media.record_id(current_user_id, url)

    async def import_archive(
        self,
        source: ArchiveSource,
        current_user_id: str,
        conflict_policy: ConflictPolicy,
    ) -> ImportSummary:
        """
        Restore every manifest entry into `current_user_id`'s library.

        Raises:
            MalformedArchiveError: If the container or its manifest is unreadable.
                Nothing has been written in that case.
        """
        if isinstance(source, ArchiveContainer):
            return await self._import_from(source, current_user_id, conflict_policy)
        with ArchiveContainer.open(source) as container:
            return await self._import_from(container, current_user_id, conflict_policy)

    async def _import_from(
        self,
        container: ArchiveContainer,
        current_user_id: str,
        conflict_policy: ConflictPolicy,
    ) -> ImportSummary:
        manifest = ArchiveManifest.from_json(container.read_metadata())

        restored = 0
        skipped = 0
        sticky: Optional[Resolution] = None

        for entry in manifest.entries:
            if not entry.filename:
                logger.warning("Import: manifest entry %r has no filename", entry.id)
                continue

            path = restored_blob_path(current_user_id, self._entry_id(entry))
            predicted_id = self._media.record_id(current_user_id, self._blobs.url_for(path))

            resolution = Resolution.OVERWRITE
            if self._media.exists_by_id(predicted_id):
                if sticky is not None:
                    resolution = sticky
                else:
                    try:
                        preview = container.read_media(entry.filename)
                    except MalformedArchiveError as exc:
                        logger.warning("Import: failed to restore %s: %s", entry.filename, exc)
                        continue
                    resolution = await self._ask(conflict_policy, entry.filename, preview)
                    if resolution.is_sticky:
                        sticky = resolution

            if resolution.skips:
                skipped += 1
                continue

            try:
                if await self._restore_entry(container, entry, path, current_user_id):
                    restored += 1
            except Exception as exc:  # noqa: BLE001 - one bad entry must not stop the import
                logger.warning("Import: failed to restore %s: %s", entry.filename, exc)

        summary = ImportSummary(restored=restored, skipped=skipped, total=len(manifest.entries))
        logger.info(
            "Import for %s: restored=%d skipped=%d total=%d",
            current_user_id,
            summary.restored,
            summary.skipped,
            summary.total,
        )
        return summary

    async def _restore_entry(
        self,
        container: ArchiveContainer,
        entry: ManifestEntry,
        path: str,
        current_user_id: str,
    ) -> bool:
        data = container.read_media(entry.filename)
        if data is None:
            logger.warning("Import: media/%s missing from archive", entry.filename)
            return False

        ext = choose_extension(data, entry.filename)
        url = await asyncio.to_thread(self._blobs.put, path, data, get_mime_for_extension(ext))
        result = self._media.put(
            url,
            MediaMetadata(
                owner_id=current_user_id,
                prompt_set_id=entry.prompt_set_id,
                version_id=entry.version_id,
                created_at=entry.created_at or None,
            ),
            overwrite=True,
        )
        if not result.ok:
            logger.warning(
                "Import: %s stored but not registered (%s)",
                entry.filename,
                result.error.value if result.error else "unknown",
            )
            return False
        return True

    async def _ask(self, policy: ConflictPolicy, filename: str, preview: Optional[bytes]) -> Resolution:
        """Wait for a decision; a cancelled or timed-out wait is a skip."""
        try:
            if self._conflict_timeout_s is None:
                answer = await policy(filename, preview)
            else:
                answer = await asyncio.wait_for(policy(filename, preview), timeout=self._conflict_timeout_s)
        except asyncio.TimeoutError:
            logger.info("Import: no decision for %s within %.0fs; skipping", filename, self._conflict_timeout_s)
            return Resolution.SKIP
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            logger.info("Import: decision for %s was dismissed; skipping", filename)
            return Resolution.SKIP

        try:
            return Resolution(answer)
        except ValueError:
            logger.warning("Import: unknown resolution %r for %s; skipping", answer, filename)
            return Resolution.SKIP

    @staticmethod
    def _entry_id(entry: ManifestEntry) -> str:
        return entry.id or entry_id_from_filename(entry.filename)
