"""
Tests for media export and re-runnable import.

Covers:
- export skipping images whose blob cannot be fetched
- import into stable restored_<id> paths, so replays land on the same records
- conflict handling: skip, sticky skipAll / overwriteAll, dismissed and
  timed-out decisions counting as skip
- malformed archives rejected before anything is written
- a damaged media member failing only its own entry
- background import jobs with interactive decisions
"""

import asyncio
import io
import json
import tempfile
import unittest
import zipfile
from pathlib import Path

from src.backend.archive import (
    ArchiveManifest,
    ArchiveService,
    ConflictChannel,
    ImportConflictError,
    ImportJobRegistry,
    Resolution,
    fixed_policy,
)
from src.backend.fs.archive_zip import ArchiveContainer, pack_archive
from src.backend.fs.blob_store import LocalBlobStore
from src.backend.fs.naming import restored_blob_path
from src.backend.media import MediaMetadata, MediaStore
from src.backend.store import DocumentStore
from src.shared.errors import MalformedArchiveError
from src.shared.job_status import JobStatus


PNG = b"\x89PNG\r\n\x1a\n" + b"pixels"
JPG = b"\xff\xd8\xff\xe0" + b"pixels"


def _manifest(*entries):
    return json.dumps({"version": "1.0", "images": list(entries)})


def _entry(entry_id, filename=None, **extra):
    data = {
        "id": entry_id,
        "filename": filename or f"{entry_id}.png",
        "originalUrl": f"https://old.example/{entry_id}.png",
        "promptSetId": None,
        "versionId": None,
        "createdAt": "2024-01-01T00:00:00Z",
        "userId": "someone",
    }
    data.update(extra)
    return data


class _CountingPolicy:
    def __init__(self, answer):
        self.answer = answer
        self.calls = []

    async def __call__(self, filename, preview):
        self.calls.append((filename, preview))
        return self.answer


class ArchiveTestCase(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.store = DocumentStore()
        self.blobs = LocalBlobStore(Path(self.temp_dir.name), host="blobs.test")
        self.media = MediaStore(store=self.store, recognized_hosts={"blobs.test"})
        self.service = ArchiveService(media=self.media, blobs=self.blobs)

    def tearDown(self):
        self.temp_dir.cleanup()

    def archive_of(self, *ids):
        entries = [_entry(i) for i in ids]
        return pack_archive(_manifest(*entries), [(f"media/{i}.png", PNG) for i in ids])

    def predicted_url(self, owner, entry_id):
        return self.blobs.url_for(restored_blob_path(owner, entry_id))

    def occupy(self, owner, *ids):
        for entry_id in ids:
            self.media.put(self.predicted_url(owner, entry_id), MediaMetadata(owner_id=owner))


class TestExport(ArchiveTestCase):
    def test_export_skips_unfetchable_images(self):
        ok_url = self.blobs.put("users/u1/a.png", PNG, "image/png")
        jpg_url = self.blobs.put("users/u1/b", JPG, "image/jpeg")
        ok = self.media.put(ok_url, MediaMetadata(owner_id="u1", prompt_set_id="s1", version_id="v1")).record
        jpg = self.media.put(jpg_url, MediaMetadata(owner_id="u1")).record
        gone = self.media.put("https://cdn.example/gone.png", MediaMetadata(owner_id="u1")).record

        data = asyncio.run(self.service.export([ok, gone, jpg]))

        with ArchiveContainer.open(data) as container:
            manifest = json.loads(container.read_metadata())
            self.assertEqual(manifest["version"], "1.0")
            self.assertEqual([e["id"] for e in manifest["images"]], [ok.id, jpg.id])
            self.assertEqual(manifest["images"][0]["filename"], f"{ok.id}.png")
            self.assertEqual(manifest["images"][0]["originalUrl"], ok_url)
            self.assertEqual(manifest["images"][0]["promptSetId"], "s1")
            self.assertEqual(manifest["images"][1]["filename"], f"{jpg.id}.jpg")
            self.assertEqual(container.read_media(f"{ok.id}.png"), PNG)
            self.assertEqual(container.read_media(f"{jpg.id}.jpg"), JPG)
            self.assertNotIn(gone.id, " ".join(container.media_names()))

    def test_export_then_import_into_another_account(self):
        url = self.blobs.put("users/u1/a.png", PNG, "image/png")
        record = self.media.put(url, MediaMetadata(owner_id="u1", created_at="2023-06-01T00:00:00Z")).record

        async def run():
            data = await self.service.export([record])
            return await self.service.import_archive(data, "u2", fixed_policy(Resolution.SKIP))

        summary = asyncio.run(run())

        self.assertEqual(summary.to_dict(), {"restored": 1, "skipped": 0, "total": 1})
        restored = self.media.list_for_owner("u2")
        self.assertEqual(len(restored), 1)
        self.assertEqual(self.blobs.get(restored[0].url), PNG)
        self.assertEqual(restored[0].created_at, "2023-06-01T00:00:00Z")
        self.assertEqual(self.blobs.read(restored_blob_path("u2", record.id)).content_type, "image/png")


class TestImport(ArchiveTestCase):
    def test_existing_record_and_skip(self):
        data = pack_archive(_manifest(_entry("x", "x.png")), [("media/x.png", PNG)])
        self.occupy("u1", "x")
        policy = _CountingPolicy(Resolution.SKIP)

        summary = asyncio.run(self.service.import_archive(data, "u1", policy))

        self.assertEqual(summary.to_dict(), {"restored": 0, "skipped": 1, "total": 1})
        self.assertEqual(policy.calls, [("x.png", PNG)])

    def test_replay_with_overwrite_all_is_safe(self):
        data = self.archive_of("a", "b", "c")
        policy = fixed_policy(Resolution.OVERWRITE_ALL)

        async def run():
            first = await self.service.import_archive(data, "u1", policy)
            ids_after_first = sorted(r.id for r in self.media.list_for_owner("u1"))
            second = await self.service.import_archive(data, "u1", policy)
            return first, ids_after_first, second

        first, ids_after_first, second = asyncio.run(run())

        self.assertEqual(first.to_dict(), {"restored": 3, "skipped": 0, "total": 3})
        self.assertEqual(second.to_dict(), {"restored": 3, "skipped": 0, "total": 3})
        self.assertEqual(sorted(r.id for r in self.media.list_for_owner("u1")), ids_after_first)
        self.assertEqual(len(ids_after_first), 3)

    def test_predicted_ids_match_restored_records(self):
        data = self.archive_of("a")
        asyncio.run(self.service.import_archive(data, "u1", fixed_policy(Resolution.SKIP)))

        record = self.media.list_for_owner("u1")[0]
        with ArchiveContainer.open(data) as container:
            entry = ArchiveManifest.from_json(container.read_metadata()).entries[0]
        self.assertEqual(self.service.predicted_record_id("u1", entry), record.id)

    def test_skip_all_is_sticky(self):
        data = self.archive_of("a", "b", "c")
        self.occupy("u1", "a", "b", "c")
        policy = _CountingPolicy(Resolution.SKIP_ALL)

        summary = asyncio.run(self.service.import_archive(data, "u1", policy))

        self.assertEqual(summary.to_dict(), {"restored": 0, "skipped": 3, "total": 3})
        self.assertEqual(len(policy.calls), 1)

    def test_overwrite_all_is_sticky(self):
        data = self.archive_of("a", "b", "c")
        self.occupy("u1", "a", "c")
        policy = _CountingPolicy(Resolution.OVERWRITE_ALL)

        summary = asyncio.run(self.service.import_archive(data, "u1", policy))

        self.assertEqual(summary.to_dict(), {"restored": 3, "skipped": 0, "total": 3})
        self.assertEqual([c[0] for c in policy.calls], ["a.png"])

    def test_single_skip_asks_again(self):
        data = self.archive_of("a", "b")
        self.occupy("u1", "a", "b")
        policy = _CountingPolicy(Resolution.SKIP)

        summary = asyncio.run(self.service.import_archive(data, "u1", policy))

        self.assertEqual(summary.skipped, 2)
        self.assertEqual(len(policy.calls), 2)

    def test_only_conflicts_are_asked(self):
        data = self.archive_of("a", "b")
        self.occupy("u1", "b")
        policy = _CountingPolicy(Resolution.SKIP)

        summary = asyncio.run(self.service.import_archive(data, "u1", policy))

        self.assertEqual(summary.to_dict(), {"restored": 1, "skipped": 1, "total": 2})
        self.assertEqual([c[0] for c in policy.calls], ["b.png"])

    def test_unknown_answer_counts_as_skip(self):
        data = self.archive_of("a")
        self.occupy("u1", "a")
        policy = _CountingPolicy("maybe")

        summary = asyncio.run(self.service.import_archive(data, "u1", policy))
        self.assertEqual(summary.skipped, 1)

    def test_entry_without_media_is_not_restored(self):
        data = pack_archive(_manifest(_entry("a"), _entry("b")), [("media/a.png", PNG)])

        summary = asyncio.run(self.service.import_archive(data, "u1", fixed_policy(Resolution.SKIP)))

        self.assertEqual(summary.to_dict(), {"restored": 1, "skipped": 0, "total": 2})

    def test_entry_id_falls_back_to_filename(self):
        data = pack_archive(_manifest(_entry("", "legacy.png")), [("media/legacy.png", PNG)])

        asyncio.run(self.service.import_archive(data, "u1", fixed_policy(Resolution.SKIP)))

        self.assertTrue(self.blobs.exists(restored_blob_path("u1", "legacy")))


class TestConflictWaits(ArchiveTestCase):
    def test_dismissed_decision_counts_as_skip(self):
        data = self.archive_of("a", "b")
        self.occupy("u1", "a")

        async def run():
            channel = ConflictChannel()
            task = asyncio.create_task(self.service.import_archive(data, "u1", channel))
            event = await channel.next_event()
            self.assertEqual(event.filename, "a.png")
            self.assertEqual(event.preview, PNG)
            self.assertTrue(channel.dismiss())
            return await task

        summary = asyncio.run(run())

        self.assertEqual(summary.to_dict(), {"restored": 1, "skipped": 1, "total": 2})

    def test_timed_out_decision_counts_as_skip(self):
        service = ArchiveService(media=self.media, blobs=self.blobs, conflict_timeout_s=0.05)
        data = self.archive_of("a")
        self.occupy("u1", "a")

        async def never_answers(filename, preview):
            await asyncio.Event().wait()

        summary = asyncio.run(service.import_archive(data, "u1", never_answers))

        self.assertEqual(summary.skipped, 1)

    def test_responding_through_the_channel(self):
        data = self.archive_of("a", "b", "c")
        self.occupy("u1", "a", "b", "c")

        async def run():
            channel = ConflictChannel()
            task = asyncio.create_task(self.service.import_archive(data, "u1", channel))
            await channel.next_event()
            self.assertTrue(channel.respond(Resolution.SKIP))
            event = await channel.next_event()
            self.assertEqual(event.sequence, 2)
            channel.respond("overwriteAll")
            summary = await task
            self.assertIsNone(channel.pending)
            self.assertFalse(channel.respond(Resolution.SKIP))
            return summary

        summary = asyncio.run(run())

        self.assertEqual(summary.to_dict(), {"restored": 2, "skipped": 1, "total": 3})

    def test_cancelling_the_import_propagates(self):
        data = self.archive_of("a")
        self.occupy("u1", "a")

        async def run():
            channel = ConflictChannel()
            task = asyncio.create_task(self.service.import_archive(data, "u1", channel))
            await channel.next_event()
            task.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await task

        asyncio.run(run())

    def test_bad_resolution_value_is_rejected(self):
        channel = ConflictChannel()
        with self.assertRaises(ValueError):
            channel.respond("sometimes")


class TestMalformedArchives(ArchiveTestCase):
    def test_not_a_zip(self):
        with self.assertRaises(MalformedArchiveError):
            asyncio.run(self.service.import_archive(b"garbage", "u1", fixed_policy(Resolution.SKIP)))

    def test_manifest_not_json(self):
        data = pack_archive("{broken", [("media/a.png", PNG)])
        with self.assertRaises(MalformedArchiveError):
            asyncio.run(self.service.import_archive(data, "u1", fixed_policy(Resolution.SKIP)))
        self.assertEqual(self.media.list_for_owner("u1"), [])

    def test_manifest_without_images(self):
        data = pack_archive(json.dumps({"version": "1.0"}), [("media/a.png", PNG)])
        with self.assertRaises(MalformedArchiveError):
            asyncio.run(self.service.import_archive(data, "u1", fixed_policy(Resolution.SKIP)))
        self.assertFalse(self.blobs.exists(restored_blob_path("u1", "a")))


def _stored_archive(contents):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_STORED) as zf:
        for entry_id, content in contents.items():
            zf.writestr(f"media/{entry_id}.png", content)
        zf.writestr("metadata.json", _manifest(*(_entry(i) for i in contents)))
    return buffer.getvalue()


class TestDamagedEntries(ArchiveTestCase):
    def setUp(self):
        super().setUp()
        self.intact = _stored_archive({"x": PNG + b"damaged-x", "y": PNG + b"fine-y"})
        # Payload no longer matches the stored CRC-32.
        self.damaged = self.intact.replace(b"damaged-x", b"damaged-z")

    def test_damaged_member_does_not_stop_the_import(self):
        with self.assertLogs("src.backend.archive.service", level="WARNING"):
            summary = asyncio.run(self.service.import_archive(self.damaged, "u1", fixed_policy(Resolution.SKIP)))

        self.assertEqual(summary.to_dict(), {"restored": 1, "skipped": 0, "total": 2})
        self.assertFalse(self.blobs.exists(restored_blob_path("u1", "x")))
        self.assertEqual(self.blobs.read(restored_blob_path("u1", "y")).data, PNG + b"fine-y")

    def test_damaged_member_in_conflict_is_not_asked_about(self):
        asyncio.run(self.service.import_archive(self.intact, "u1", fixed_policy(Resolution.SKIP)))
        policy = _CountingPolicy(Resolution.OVERWRITE_ALL)

        with self.assertLogs("src.backend.archive.service", level="WARNING"):
            summary = asyncio.run(self.service.import_archive(self.damaged, "u1", policy))

        self.assertEqual(summary.to_dict(), {"restored": 1, "skipped": 0, "total": 2})
        self.assertEqual([filename for filename, _ in policy.calls], ["y.png"])

    def test_container_reports_damaged_member(self):
        with ArchiveContainer.open(self.damaged) as container:
            self.assertEqual(container.read_media("y.png"), PNG + b"fine-y")
            with self.assertRaises(MalformedArchiveError):
                container.read_media("x.png")


class TestImportJobs(ArchiveTestCase):
    def setUp(self):
        super().setUp()
        self.jobs_dir = Path(self.temp_dir.name) / "jobs"
        self.registry = ImportJobRegistry(service=self.service, jobs_dir=self.jobs_dir)

    async def _wait_for_status(self, job_id, status):
        async def poll():
            while self.registry.get(job_id).status != status:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(poll(), timeout=5)

    def test_job_waits_for_decision_then_finishes(self):
        data = self.archive_of("a", "b")
        self.occupy("u1", "a")

        async def run():
            job = await self.registry.start(owner_id="u1", source=data, archive_name="export.zip")
            self.assertEqual(job.total, 2)
            await self._wait_for_status(job.job_id, JobStatus.AWAITING_DECISION)
            self.assertEqual(self.registry.pending_conflict(job.job_id).filename, "a.png")
            self.assertTrue(self.registry.respond(job.job_id, Resolution.OVERWRITE))
            return await self.registry.wait(job.job_id)

        job = asyncio.run(run())

        self.assertEqual(job.status, JobStatus.DONE)
        self.assertEqual(job.summary.to_dict(), {"restored": 2, "skipped": 0, "total": 2})
        persisted = json.loads((self.jobs_dir / f"{job.job_id}.json").read_text(encoding="utf-8"))
        self.assertEqual(persisted["status"], "Done")
        self.assertIsNone(self.registry.active_for("u1"))

    def test_one_active_job_per_owner(self):
        data = self.archive_of("a")
        self.occupy("u1", "a")

        async def run():
            job = await self.registry.start(owner_id="u1", source=data)
            await self._wait_for_status(job.job_id, JobStatus.AWAITING_DECISION)
            with self.assertRaises(ImportConflictError):
                await self.registry.start(owner_id="u1", source=data)
            other = await self.registry.start(owner_id="u2", source=data)
            self.registry.dismiss(job.job_id)
            await self.registry.wait(job.job_id)
            await self.registry.wait(other.job_id)
            return job

        job = asyncio.run(run())

        self.assertEqual(job.summary.skipped, 1)

    def test_cancel_job(self):
        data = self.archive_of("a")
        self.occupy("u1", "a")

        async def run():
            job = await self.registry.start(owner_id="u1", source=data)
            await self._wait_for_status(job.job_id, JobStatus.AWAITING_DECISION)
            await self.registry.cancel(job.job_id)
            return await self.registry.wait(job.job_id)

        job = asyncio.run(run())

        self.assertEqual(job.status, JobStatus.CANCELLED)
        self.assertIsNone(job.summary)
        self.assertIsNone(self.registry.active_for("u1"))

    def test_malformed_archive_is_rejected_at_start(self):
        async def run():
            with self.assertRaises(MalformedArchiveError):
                await self.registry.start(owner_id="u1", source=b"not a zip")
            self.assertIsNone(self.registry.active_for("u1"))

        asyncio.run(run())


if __name__ == "__main__":
    unittest.main()
