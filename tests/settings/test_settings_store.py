import json
import tempfile
import unittest
from pathlib import Path

from src.backend.net.retry import RetryConfig
from src.backend.settings.models import AppSettings
from src.backend.settings.store import SettingsStore


class TestSettingsStore(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.path = Path(self.temp_dir.name) / "data" / "config.json"
        self.store = SettingsStore(path=self.path)

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_defaults_without_file(self):
        settings = self.store.load()
        self.assertEqual(settings.data_root, "data")
        self.assertEqual(settings.max_concurrent_copies, 4)
        self.assertIsNone(settings.conflict_timeout_s)
        self.assertEqual(settings.get_retry(), RetryConfig())

    def test_unreadable_file_falls_back_to_defaults(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{not json", encoding="utf-8")

        with self.assertLogs("src.backend.settings.store", level="WARNING"):
            settings = self.store.load()
        self.assertEqual(settings, AppSettings())

    def test_limits_and_retry_round_trip(self):
        self.store.set_limits(max_concurrent_copies=8, max_inline_url_length=4096, conflict_timeout_s=120.0)
        self.store.set_retry(RetryConfig(max_retries=5, enabled=False))

        raw = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(raw["version"], 1)
        loaded = self.store.load()
        self.assertEqual(loaded.max_concurrent_copies, 8)
        self.assertEqual(loaded.conflict_timeout_s, 120.0)
        self.assertEqual(loaded.get_retry().max_retries, 5)
        self.assertFalse(loaded.get_retry().enabled)
        self.assertFalse(self.path.with_suffix(".json.tmp").exists())

    def test_update_requires_settings_back(self):
        def mutate(settings):
            settings.blob_bucket = "other.appspot.com"
            return settings

        self.store.update(mutator=mutate)
        self.assertEqual(self.store.load().blob_bucket, "other.appspot.com")

        with self.assertRaises(TypeError):
            self.store.update(mutator=lambda settings: None)

    def test_bad_values_are_clamped(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text(
            json.dumps({"max_concurrent_copies": 0, "max_inline_url_length": "x", "recognized_blob_hosts": []}),
            encoding="utf-8",
        )

        settings = self.store.load()

        self.assertEqual(settings.max_concurrent_copies, 1)
        self.assertEqual(settings.max_inline_url_length, 1_000_000)
        self.assertIn(settings.blob_host, settings.blob_hosts())
        self.assertTrue(settings.recognized_blob_hosts)


if __name__ == "__main__":
    unittest.main()
