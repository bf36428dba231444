"""
Tests for JSON backups.

Covers:
- backup payload per kind (promptSet / media / all)
- list/get/delete scoped to the owner unless admin
- restore merging by id and counting only inserted documents
- restore refusing malformed payloads and other owners' documents
"""

import json
import re
import unittest

from src.backend.archive import BackupKind, BackupService
from src.backend.archive.backup import generate_backup_name
from src.backend.media import MediaMetadata, MediaStore
from src.backend.prompts import PromptSet, PromptSetRepository
from src.backend.store import DocumentStore
from src.shared.errors import ErrorKind, MalformedBackupError


def _prompt_set(set_id, title="Sunset"):
    return PromptSet(
        id=set_id,
        owner_id="",
        title=title,
        created_at="2024-01-01T00:00:00Z",
        updated_at="2024-01-01T00:00:00Z",
    )


class BackupTestCase(unittest.TestCase):
    def setUp(self):
        self.store = DocumentStore()
        self.prompt_sets = PromptSetRepository(store=self.store)
        self.media = MediaStore(store=self.store)
        self.backups = BackupService(store=self.store, prompt_sets=self.prompt_sets, media=self.media)

        self.prompt_sets.create("alice", _prompt_set("s1"))
        self.prompt_sets.create("bob", _prompt_set("s2", "Forest"))
        self.media.put("https://cdn/a.png", MediaMetadata(owner_id="alice"))
        self.media.put("https://cdn/b.png", MediaMetadata(owner_id="bob"))


class TestCreateBackup(BackupTestCase):
    def test_file_name_format(self):
        name = generate_backup_name(BackupKind.MEDIA)
        self.assertRegex(name, r"^backup-media-\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{3}Z\.json$")

    def test_payload_per_kind(self):
        sets_only = json.loads(self.backups.create_backup("alice", BackupKind.PROMPT_SET).payload)
        media_only = json.loads(self.backups.create_backup("alice", BackupKind.MEDIA).payload)
        everything = json.loads(self.backups.create_backup("alice", BackupKind.ALL).payload)

        self.assertEqual(set(sets_only), {"promptSets"})
        self.assertEqual(set(media_only), {"media"})
        self.assertEqual(set(everything), {"promptSets", "media"})
        self.assertEqual([d["id"] for d in everything["promptSets"]], ["s1"])
        self.assertEqual([d["userId"] for d in everything["media"]], ["alice"])

    def test_include_all_snapshots_every_owner(self):
        backup = self.backups.create_backup("admin", BackupKind.ALL, include_all=True)
        payload = json.loads(backup.payload)

        self.assertEqual(sorted(d["id"] for d in payload["promptSets"]), ["s1", "s2"])
        self.assertEqual(len(payload["media"]), 2)
        self.assertEqual(backup.owner_id, "admin")


class TestBackupAccess(BackupTestCase):
    def setUp(self):
        super().setUp()
        self.alice_backup = self.backups.create_backup("alice", BackupKind.ALL)
        self.bob_backup = self.backups.create_backup("bob", BackupKind.MEDIA)

    def test_list_is_scoped(self):
        self.assertEqual([b.id for b in self.backups.list_backups("alice")], [self.alice_backup.id])
        self.assertEqual(len(self.backups.list_backups("alice", is_admin=True)), 2)

    def test_get_is_scoped(self):
        self.assertIsNone(self.backups.get_backup(self.bob_backup.id, "alice"))
        self.assertIsNotNone(self.backups.get_backup(self.bob_backup.id, "alice", is_admin=True))
        self.assertIsNone(self.backups.get_backup("missing", "alice", is_admin=True))

        fetched = self.backups.get_backup(self.alice_backup.id, "alice")
        self.assertEqual(fetched.kind, BackupKind.ALL)
        self.assertTrue(re.match(r"^backup-all-", fetched.file_name))

    def test_delete_is_scoped(self):
        self.assertFalse(self.backups.delete_backup(self.bob_backup.id, "alice"))
        self.assertTrue(self.backups.delete_backup(self.bob_backup.id, "bob"))
        self.assertFalse(self.backups.delete_backup(self.bob_backup.id, "bob"))
        self.assertTrue(self.backups.delete_backup(self.alice_backup.id, "root", is_admin=True))
        self.assertEqual(self.backups.list_backups("root", is_admin=True), [])


class TestRestore(BackupTestCase):
    def test_restore_counts_only_inserted_documents(self):
        backup = self.backups.create_backup("alice", BackupKind.ALL)
        payload = json.loads(backup.payload)
        payload["promptSets"].append({"id": "s9", "userId": "alice", "title": "New"})
        payload["promptSets"][0]["title"] = "Renamed"

        summary = self.backups.restore(json.dumps(payload))

        self.assertEqual(summary.restored_prompt_sets, 1)
        self.assertEqual(summary.restored_media, 0)
        self.assertEqual(self.prompt_sets.get_by_id("s1").title, "Renamed")
        self.assertEqual(self.prompt_sets.get_by_id("s9").title, "New")

    def test_restore_after_deletion_reinserts(self):
        backup = self.backups.create_backup("alice", BackupKind.MEDIA)
        record = self.media.list_for_owner("alice")[0]
        self.media.delete(record.id, "alice")

        summary = self.backups.restore(backup.payload)

        self.assertEqual(summary.restored_media, 1)
        self.assertEqual(self.media.get(record.id).url, record.url)

    def test_malformed_payload(self):
        for payload in ("{nope", "[1, 2]", "null"):
            with self.subTest(payload=payload):
                with self.assertRaises(MalformedBackupError) as ctx:
                    self.backups.restore(payload)
                self.assertEqual(ctx.exception.kind, ErrorKind.MALFORMED)

    def test_documents_without_id_are_skipped(self):
        payload = json.dumps({"promptSets": [{"title": "no id"}, "junk"], "media": "not a list"})

        with self.assertLogs("src.backend.archive.backup", level="WARNING"):
            summary = self.backups.restore(payload)

        self.assertEqual(tuple(summary), (0, 0))

    def test_restrict_to_owner(self):
        payload = json.dumps(
            {
                "promptSets": [
                    {"id": "s7", "userId": "alice", "title": "Mine"},
                    {"id": "s8", "userId": "bob", "title": "Theirs"},
                ],
                "media": [{"id": "m1", "userId": "bob", "url": "https://cdn/x.png"}],
            }
        )

        summary = self.backups.restore(payload, restrict_to_owner="alice")

        self.assertEqual(tuple(summary), (1, 0))
        self.assertIsNotNone(self.prompt_sets.get_by_id("s7"))
        self.assertIsNone(self.prompt_sets.get_by_id("s8"))
        self.assertIsNone(self.media.get("m1"))

    def test_restrict_to_owner_never_replaces_other_accounts_documents(self):
        bob_record = self.media.list_for_owner("bob")[0]
        payload = json.dumps(
            {
                "promptSets": [{"id": "s2", "userId": "alice", "title": "mine now"}],
                "media": [{"id": bob_record.id, "userId": "alice", "url": "https://evil/x.png"}],
            }
        )

        with self.assertLogs("src.backend.archive.backup", level="WARNING"):
            summary = self.backups.restore(payload, restrict_to_owner="alice")

        self.assertEqual(tuple(summary), (0, 0))
        self.assertEqual(self.prompt_sets.get_by_id("s2").owner_id, "bob")
        self.assertEqual(self.prompt_sets.get_by_id("s2").title, "Forest")
        self.assertEqual(self.media.get(bob_record.id).owner_id, "bob")
        self.assertEqual(self.media.get(bob_record.id).url, bob_record.url)

    def test_restrict_to_owner_requires_derived_media_id(self):
        squatted = self.media.record_id("bob", "https://cdn/c.png")
        good_id = self.media.record_id("alice", "https://cdn/c.png")
        payload = json.dumps(
            {
                "media": [
                    {"id": squatted, "userId": "alice", "url": "https://cdn/c.png"},
                    {"id": good_id, "userId": "alice", "url": "https://cdn/c.png"},
                ]
            }
        )

        summary = self.backups.restore(payload, restrict_to_owner="alice")

        self.assertEqual(summary.restored_media, 1)
        self.assertIsNone(self.media.get(squatted))
        self.assertEqual(self.media.get(good_id).owner_id, "alice")


if __name__ == "__main__":
    unittest.main()
