"""
Content-addressed media library.

Provides:
- MediaStore with deterministic ids and idempotent put (store.py)
- Duplicate grouping used by sync cleanup (dedup.py)
- Sync candidates from prompt-set versions (sync.py)
"""

from .models import MediaMetadata, MediaRecord, PutResult, SyncCandidate, SyncResult
from .store import MAX_INLINE_URL_LENGTH, MediaStore, normalize_url
from .sync import collect_version_images

__all__ = [
    "MediaMetadata",
    "MediaRecord",
    "PutResult",
    "SyncCandidate",
    "SyncResult",
    "MAX_INLINE_URL_LENGTH",
    "MediaStore",
    "normalize_url",
    "collect_version_images",
]
