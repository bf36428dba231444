"""
File system utilities for blob storage and archives.

Provides:
- Blob storage contract and local implementation (blob_store.py)
- Blob path and archive entry naming (naming.py)
- Content-addressed ids and content hashing (hashing.py)
- Zip container for media export/import (archive_zip.py)
"""

from .blob_store import BlobNotFoundError, BlobObject, BlobStore, LocalBlobStore
from .naming import choose_extension, get_mime_for_extension, restored_blob_path, shared_copy_blob_path
from .hashing import compute_bytes_hash, compute_record_id
from .archive_zip import ArchiveContainer, pack_archive

__all__ = [
    "BlobNotFoundError",
    "BlobObject",
    "BlobStore",
    "LocalBlobStore",
    "choose_extension",
    "get_mime_for_extension",
    "restored_blob_path",
    "shared_copy_blob_path",
    "compute_bytes_hash",
    "compute_record_id",
    "ArchiveContainer",
    "pack_archive",
]
