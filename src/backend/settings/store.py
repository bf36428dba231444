"""
data/config.json: storage layout, limits and fetch retry.

Reads are tolerant (a missing or unreadable file yields defaults); writes
go to a sibling .tmp file first and replace the config in one step.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Callable, Optional

from ..net.retry import RetryConfig
from .models import AppSettings


logger = logging.getLogger(__name__)

Mutator = Callable[[AppSettings], AppSettings]


class SettingsStore:
    def __init__(self, *, path: Path) -> None:
        self._path = path
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> AppSettings:
        with self._lock:
            try:
                text = self._path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return AppSettings()
            except OSError as exc:
                logger.warning("Cannot read settings %s: %s", self._path, exc)
                return AppSettings()

        try:
            raw = json.loads(text)
        except ValueError as exc:
            logger.warning("Ignoring unreadable settings file %s: %s", self._path, exc)
            return AppSettings()
        if not isinstance(raw, dict):
            logger.warning("Ignoring settings file %s: expected an object", self._path)
            return AppSettings()
        return AppSettings.from_persist_dict(raw)

    def save(self, settings: AppSettings) -> None:
        text = json.dumps(settings.to_persist_dict(), ensure_ascii=False, indent=2) + "\n"
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            staging = self._path.with_name(self._path.name + ".tmp")
            staging.write_text(text, encoding="utf-8")
            staging.replace(self._path)

    def update(self, *, mutator: Mutator) -> AppSettings:
        """Load, apply `mutator`, save; all under the store lock."""
        with self._lock:
            updated = mutator(self.load())
            if not isinstance(updated, AppSettings):
                raise TypeError("mutator must return AppSettings")
            self.save(updated)
            return updated

    def set_limits(
        self,
        *,
        max_concurrent_copies: int,
        max_inline_url_length: int,
        conflict_timeout_s: Optional[float],
    ) -> AppSettings:
        def apply(settings: AppSettings) -> AppSettings:
            settings.max_concurrent_copies = max_concurrent_copies
            settings.max_inline_url_length = max_inline_url_length
            settings.conflict_timeout_s = conflict_timeout_s
            return settings

        return self.update(mutator=apply)

    def set_retry(self, retry: RetryConfig) -> AppSettings:
        def apply(settings: AppSettings) -> AppSettings:
            settings.retry = retry
            return settings

        return self.update(mutator=apply)
