"""
Document store backed by one JSON file per collection.

Each collection maps document id -> JSON object. Writes are serialized by a
per-collection lock and persisted with write-temp-then-replace, so a
single-document write is atomic. There is no multi-document transaction.

Documents are deep-copied on the way in and on the way out; callers never
share mutable structure with the stored state.

Usage:
    store = DocumentStore(root=Path("data/db"))
    media = store.collection("media")

    doc, created = media.insert_if_absent("abc", {"id": "abc", "url": "..."})
    if not created:
        # someone else got there first; `doc` is the stored version
        ...
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

Document = dict[str, Any]


class Collection:
    """A named set of JSON documents keyed by id."""

    def __init__(self, name: str, *, path: Optional[Path] = None) -> None:
        self._name = name
        self._path = path
        self._lock = threading.RLock()
        self._docs: dict[str, Document] = self._load()

    @property
    def name(self) -> str:
        return self._name

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, doc_id: str) -> Optional[Document]:
        with self._lock:
            doc = self._docs.get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def contains(self, doc_id: str) -> bool:
        with self._lock:
            return doc_id in self._docs

    def all(self) -> list[Document]:
        with self._lock:
            return [copy.deepcopy(d) for d in self._docs.values()]

    def where(self, **equals: Any) -> list[Document]:
        """Return documents whose fields equal every given value."""
        with self._lock:
            return [
                copy.deepcopy(d)
                for d in self._docs.values()
                if all(d.get(k) == v for k, v in equals.items())
            ]

    def count(self) -> int:
        with self._lock:
            return len(self._docs)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(self, doc_id: str, doc: Document) -> Document:
        """Create or replace a document."""
        stored = copy.deepcopy(doc)
        with self._lock:
            self._docs[doc_id] = stored
            self._save()
        return copy.deepcopy(stored)

    def insert_if_absent(self, doc_id: str, doc: Document) -> tuple[Document, bool]:
        """
        Insert `doc` unless a document with `doc_id` already exists.

        Returns:
            (stored document, created flag). When the id was taken, the
            existing document is returned unchanged and nothing is written.
        """
        with self._lock:
            existing = self._docs.get(doc_id)
            if existing is not None:
                return copy.deepcopy(existing), False
            stored = copy.deepcopy(doc)
            self._docs[doc_id] = stored
            self._save()
            return copy.deepcopy(stored), True

    def update(self, doc_id: str, fields: Document) -> Optional[Document]:
        """Merge `fields` into an existing document. Returns None if absent."""
        with self._lock:
            existing = self._docs.get(doc_id)
            if existing is None:
                return None
            existing.update(copy.deepcopy(fields))
            self._save()
            return copy.deepcopy(existing)

    def compare_and_update(
        self,
        doc_id: str,
        *,
        expected: Document,
        fields: Document,
    ) -> Optional[Document]:
        """
        Merge `fields` only if every key in `expected` currently matches.

        Returns:
            The updated document, or None if the document is missing or a
            precondition did not hold.
        """
        with self._lock:
            existing = self._docs.get(doc_id)
            if existing is None:
                return None
            if any(existing.get(k) != v for k, v in expected.items()):
                return None
            existing.update(copy.deepcopy(fields))
            self._save()
            return copy.deepcopy(existing)

    def delete(self, doc_id: str) -> bool:
        with self._lock:
            if doc_id not in self._docs:
                return False
            del self._docs[doc_id]
            self._save()
            return True

    def delete_where(self, predicate: Callable[[Document], bool]) -> int:
        with self._lock:
            doomed = [doc_id for doc_id, doc in self._docs.items() if predicate(doc)]
            for doc_id in doomed:
                del self._docs[doc_id]
            if doomed:
                self._save()
            return len(doomed)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> dict[str, Document]:
        if self._path is None or not self._path.exists():
            return {}

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            backup = self._path.with_suffix(self._path.suffix + ".corrupt")
            logger.error(
                "Collection %s: unreadable file %s (%s); moved aside to %s",
                self._name,
                self._path,
                exc,
                backup,
            )
            self._path.replace(backup)
            return {}

        if not isinstance(raw, dict):
            return {}
        return {str(k): v for k, v in raw.items() if isinstance(v, dict)}

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self._docs, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        tmp_path.replace(self._path)


class DocumentStore:
    """
    Registry of collections.

    With `root=None` everything lives in memory, which is what the tests use.
    """

    def __init__(self, *, root: Optional[Path] = None) -> None:
        self._root = Path(root) if root is not None else None
        self._lock = threading.Lock()
        self._collections: dict[str, Collection] = {}

    @property
    def root(self) -> Optional[Path]:
        return self._root

    def collection(self, name: str) -> Collection:
        with self._lock:
            existing = self._collections.get(name)
            if existing is not None:
                return existing
            path = self._root / f"{name}.json" if self._root is not None else None
            created = Collection(name, path=path)
            self._collections[name] = created
            return created
