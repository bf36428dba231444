"""
Blob storage for image content.

BlobStore is the contract the media, share and archive services depend on.
LocalBlobStore keeps blobs on disk and hands out URLs in the same shape as a
hosted bucket:

    https://<host>/v0/b/<bucket>/o/<percent-encoded path>?alt=media&token=<t>

Directory structure:
    <root>/<bucket>/<path>              blob bytes
    <root>/<bucket>/<path>.meta.json    {"content_type": ..., "token": ...}
"""

from __future__ import annotations

import base64
import binascii
import json
import os
import tempfile
from pathlib import Path
from typing import Callable, NamedTuple, Optional, Protocol
from urllib.parse import quote, unquote, unquote_to_bytes, urlparse

from .hashing import compute_bytes_hash, compute_hash6


DEFAULT_BLOB_HOST = "firebasestorage.googleapis.com"
DEFAULT_BUCKET = "prompt-vault.local"

_META_SUFFIX = ".meta.json"

# (url) -> bytes, for urls this store does not own
RemoteFetchFunc = Callable[[str], bytes]


class BlobNotFoundError(LookupError):
    """No blob exists for the requested url or path."""


class BlobObject(NamedTuple):
    data: bytes
    content_type: str


class BlobStore(Protocol):
    def put(self, path: str, data: bytes, content_type: str) -> str:
        """Store (or replace) the blob at `path` and return a usable url."""
        ...

    def get(self, url: str) -> bytes:
        """Read the blob behind `url`."""
        ...

    def url_for(self, path: str) -> str:
        """The url `put(path, ...)` would return, without the token."""
        ...


def decode_data_url(url: str) -> bytes:
    """
    Decode an inline `data:` url.

    Raises:
        ValueError: If the url is not a well-formed data url.
    """
    header, sep, payload = url.partition(",")
    if not sep or not header.startswith("data:"):
        raise ValueError("not a data url")
    if header.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=True)
        except binascii.Error as exc:
            raise ValueError(f"invalid base64 payload: {exc}") from exc
    return unquote_to_bytes(payload)


class LocalBlobStore:
    """
    Filesystem-backed BlobStore.

    Re-putting the same path replaces the content in place; the returned
    url keeps the same path and only the token changes with the content.
    """

    def __init__(
        self,
        root: Path,
        *,
        host: str = DEFAULT_BLOB_HOST,
        bucket: str = DEFAULT_BUCKET,
        remote_fetch: Optional[RemoteFetchFunc] = None,
    ) -> None:
        self._root = Path(root).resolve()
        self._host = host
        self._bucket = bucket
        self._remote_fetch = remote_fetch

    @property
    def host(self) -> str:
        return self._host

    @property
    def bucket(self) -> str:
        return self._bucket

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    def url_for(self, path: str) -> str:
        return f"https://{self._host}/v0/b/{self._bucket}/o/{quote(path, safe='')}?alt=media"

    def path_for_url(self, url: str) -> Optional[str]:
        """Blob path behind one of this store's urls, or None for foreign urls."""
        parsed = urlparse(url.strip())
        if parsed.netloc != self._host:
            return None
        prefix = f"/v0/b/{self._bucket}/o/"
        if not parsed.path.startswith(prefix):
            return None
        path = unquote(parsed.path[len(prefix):])
        return path or None

    # ------------------------------------------------------------------
    # BlobStore contract
    # ------------------------------------------------------------------

    def put(self, path: str, data: bytes, content_type: str) -> str:
        target = self._resolve(path)
        token = compute_hash6(compute_bytes_hash(data))
        _atomic_write_bytes(target, data)
        meta = {"content_type": content_type or "application/octet-stream", "token": token}
        _atomic_write_bytes(
            target.with_name(target.name + _META_SUFFIX),
            json.dumps(meta).encode("utf-8"),
        )
        return f"{self.url_for(path)}&token={token}"

    def get(self, url: str) -> bytes:
        if url.startswith("data:"):
            try:
                return decode_data_url(url)
            except ValueError as exc:
                raise BlobNotFoundError(f"unreadable data url: {exc}") from exc

        path = self.path_for_url(url)
        if path is not None:
            return self.read(path).data

        if self._remote_fetch is None:
            raise BlobNotFoundError(f"not a blob of this store: {url}")
        return self._remote_fetch(url)

    # ------------------------------------------------------------------
    # Local access
    # ------------------------------------------------------------------

    def read(self, path: str) -> BlobObject:
        target = self._resolve(path)
        if not target.is_file():
            raise BlobNotFoundError(path)

        content_type = "application/octet-stream"
        meta_path = target.with_name(target.name + _META_SUFFIX)
        if meta_path.exists():
            try:
                meta = json.loads(meta_path.read_text(encoding="utf-8"))
                content_type = str(meta.get("content_type") or content_type)
            except (OSError, ValueError):
                pass

        return BlobObject(data=target.read_bytes(), content_type=content_type)

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def _resolve(self, path: str) -> Path:
        cleaned = path.strip().lstrip("/")
        if not cleaned or cleaned.endswith(_META_SUFFIX):
            raise ValueError(f"invalid blob path: {path!r}")
        target = (self._root / self._bucket / cleaned).resolve()
        bucket_root = (self._root / self._bucket).resolve()
        if bucket_root not in target.parents:
            raise ValueError(f"blob path escapes the bucket: {path!r}")
        return target


def _atomic_write_bytes(final_path: Path, content: bytes) -> None:
    final_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path_str = tempfile.mkstemp(
        dir=str(final_path.parent),
        prefix=f".{final_path.name}.",
        suffix=".tmp",
    )
    tmp_path = Path(tmp_path_str)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, final_path)
    finally:
        try:
            tmp_path.unlink()
        except FileNotFoundError:
            pass
