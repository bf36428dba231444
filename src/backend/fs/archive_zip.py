"""
Zip container used for media export/import.

Layout:
    metadata.json          UTF-8 manifest
    media/<id>.<ext>       one entry per exported image

This module only deals with the zip itself; manifest parsing lives in
src.backend.archive.models.
"""

from __future__ import annotations

import io
import zipfile
import zlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Union

from src.shared.errors import MalformedArchiveError

from .naming import ARCHIVE_MEDIA_PREFIX


METADATA_NAME = "metadata.json"


def generate_archive_name(owner_id: str) -> str:
    """
    Generate a timestamped archive filename.

    Format: media-export-{owner}-{YYYYMMDD_HHMMSS}.zip
    """
    now = datetime.now(timezone.utc)
    timestamp = now.strftime("%Y%m%d_%H%M%S")
    return f"media-export-{owner_id}-{timestamp}.zip"


def pack_archive(metadata_json: str, media: Iterable[tuple[str, bytes]]) -> bytes:
    """
    Build a zip container in memory.

    Args:
        metadata_json: Serialized manifest, written as metadata.json.
        media: (entry name, content) pairs; names should already carry the
               media/ prefix.

    Returns:
        The zip file content.
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, content in media:
            zf.writestr(name, content)
        zf.writestr(METADATA_NAME, metadata_json.encode("utf-8"))
    return buffer.getvalue()


class ArchiveContainer:
    """
    Read-only view over an export zip.

    Usage:
        container = ArchiveContainer.open(zip_bytes)
        manifest_text = container.read_metadata()
        png = container.read_media("abc.png")
    """

    def __init__(self, zf: zipfile.ZipFile) -> None:
        self._zf = zf
        self._names = set(zf.namelist())

    @classmethod
    def open(cls, source: Union[bytes, Path, str]) -> "ArchiveContainer":
        """
        Open a container from raw bytes or a file path.

        Raises:
            MalformedArchiveError: If the source is not a readable zip.
        """
        try:
            if isinstance(source, (bytes, bytearray)):
                zf = zipfile.ZipFile(io.BytesIO(bytes(source)))
            else:
                zf = zipfile.ZipFile(Path(source))
        except (zipfile.BadZipFile, OSError) as exc:
            raise MalformedArchiveError(f"Invalid archive: {exc}") from exc
        return cls(zf)

    def close(self) -> None:
        self._zf.close()

    def __enter__(self) -> "ArchiveContainer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def read_metadata(self) -> str:
        """
        Raises:
            MalformedArchiveError: If metadata.json is missing, damaged or not UTF-8.
        """
        if METADATA_NAME not in self._names:
            raise MalformedArchiveError("Invalid archive: metadata.json missing")
        try:
            return self._zf.read(METADATA_NAME).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedArchiveError(f"Invalid archive: metadata.json is not UTF-8 ({exc})") from exc
        except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
            raise MalformedArchiveError(f"Invalid archive: metadata.json is damaged ({exc})") from exc

    def read_media(self, filename: str) -> Optional[bytes]:
        """
        Content of media/<filename>, or None if the entry is absent.

        Raises:
            MalformedArchiveError: If the member is damaged (bad CRC or
                compressed data).
        """
        name = f"{ARCHIVE_MEDIA_PREFIX}{filename}"
        if name not in self._names:
            return None
        try:
            return self._zf.read(name)
        except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
            raise MalformedArchiveError(f"Damaged archive entry {name}: {exc}") from exc

    def media_names(self) -> list[str]:
        return sorted(
            n[len(ARCHIVE_MEDIA_PREFIX):]
            for n in self._names
            if n.startswith(ARCHIVE_MEDIA_PREFIX) and not n.endswith("/")
        )
