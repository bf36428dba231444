"""
Blob path and archive entry naming conventions.

Blob paths (relative to the bucket):
    users/<owner>/media/restored_<entryId>              restored archive entry
    users/<owner>/shared/<setId>/<versionId>.<ext>      copy made on share accept

Archive entries:
    media/<recordId>.<ext>
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import urlparse

from .hashing import compute_hash6, compute_text_hash


ARCHIVE_MEDIA_PREFIX = "media/"
DEFAULT_IMAGE_EXTENSION = "png"

# Leading bytes of the image formats the app produces
_MAGIC_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "png"),
    (b"\xff\xd8\xff", "jpg"),
    (b"GIF87a", "gif"),
    (b"GIF89a", "gif"),
)

_EXT_TO_MIME = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mov": "video/quicktime",
}

_SAFE_SEGMENT = re.compile(r"[^A-Za-z0-9._-]+")


def safe_segment(value: str) -> str:
    """
    Make an id safe to use as a single path segment.

    Ids that need cleaning get a ~<hash6> suffix of the original value, so
    distinct ids such as "a/b" and "a_b" never share a segment. "~" is not
    in the kept character set, so a suffixed segment never equals a clean one.
    """
    cleaned = _SAFE_SEGMENT.sub("_", value.strip()).strip("._")
    if cleaned == value and cleaned:
        return cleaned
    return f"{cleaned or '_'}~{compute_hash6(compute_text_hash(value))}"


def restored_blob_path(owner_id: str, entry_id: str) -> str:
    """
    Stable blob path for a restored archive entry.

    Depends only on the importing account and the entry id, so re-importing
    the same archive under the same account always targets the same path.
    """
    return f"users/{safe_segment(owner_id)}/media/restored_{safe_segment(entry_id)}"


def shared_copy_blob_path(owner_id: str, prompt_set_id: str, version_id: str, extension: str) -> str:
    """Blob path for a version image copied into a recipient's storage."""
    ext = extension.lstrip(".") or DEFAULT_IMAGE_EXTENSION
    return (
        f"users/{safe_segment(owner_id)}/shared/"
        f"{safe_segment(prompt_set_id)}/{safe_segment(version_id)}.{ext}"
    )


def archive_media_name(record_id: str, extension: str) -> str:
    """Name of a media entry inside an archive: media/<id>.<ext>."""
    return f"{ARCHIVE_MEDIA_PREFIX}{record_id}.{extension.lstrip('.')}"


def entry_id_from_filename(filename: str) -> str:
    """Fallback entry id: the archive filename without its extension."""
    name = PurePosixPath(filename).name
    return name.split(".", 1)[0] if "." in name else name


def sniff_image_extension(data: bytes) -> Optional[str]:
    """Detect the image format from its leading bytes."""
    for signature, ext in _MAGIC_SIGNATURES:
        if data.startswith(signature):
            return ext
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    return None


def get_mime_for_extension(extension: str) -> str:
    """
    Get the MIME type for a file extension.

    Returns:
        MIME type, 'application/octet-stream' if unknown.
    """
    return _EXT_TO_MIME.get(extension.lower().lstrip("."), "application/octet-stream")


def get_extension_from_url(url: str) -> Optional[str]:
    """
    Extract a file extension from a URL path.

    Returns:
        File extension without dot, or None if not determinable.
    """
    path = urlparse(url).path
    name = path.rsplit("/", 1)[-1]
    if "." in name:
        ext = name.rsplit(".", 1)[-1].lower()
        if 1 <= len(ext) <= 10 and ext.isalnum():
            return ext
    return None


def choose_extension(data: bytes, url: str = "") -> str:
    """Pick an extension for blob content: sniffed bytes, then url, then png."""
    return sniff_image_extension(data) or get_extension_from_url(url) or DEFAULT_IMAGE_EXTENSION
