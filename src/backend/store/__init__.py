"""
JSON-file document store.

Provides:
- DocumentStore / Collection with atomic single-document writes (documents.py)
- insert-if-absent and compare-and-set primitives used for idempotent writes
"""

from .documents import Collection, DocumentStore

__all__ = [
    "Collection",
    "DocumentStore",
]
