from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from ..fs.blob_store import DEFAULT_BLOB_HOST, DEFAULT_BUCKET
from ..media.store import DEFAULT_BLOB_HOSTS, MAX_INLINE_URL_LENGTH
from ..net.retry import RetryConfig


DEFAULT_DATA_ROOT = "data"
DEFAULT_MAX_CONCURRENT_COPIES = 4


def _as_int(value: Any, default: int, *, minimum: int) -> int:
    try:
        return max(minimum, int(value))
    except (TypeError, ValueError):
        return default


@dataclass
class AppSettings:
    data_root: str = DEFAULT_DATA_ROOT
    blob_host: str = DEFAULT_BLOB_HOST
    blob_bucket: str = DEFAULT_BUCKET
    recognized_blob_hosts: list[str] = field(default_factory=lambda: sorted(DEFAULT_BLOB_HOSTS))
    max_inline_url_length: int = MAX_INLINE_URL_LENGTH
    max_concurrent_copies: int = DEFAULT_MAX_CONCURRENT_COPIES
    conflict_timeout_s: Optional[float] = None
    retry: Optional[RetryConfig] = None

    def get_retry(self) -> RetryConfig:
        """Get retry config, using defaults if not set."""
        return self.retry or RetryConfig()

    def blob_hosts(self) -> set[str]:
        """Recognized hosts, always including the local blob host."""
        return {h.lower() for h in self.recognized_blob_hosts} | {self.blob_host.lower()}

    def to_persist_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "version": 1,
            "data_root": self.data_root,
            "blob_host": self.blob_host,
            "blob_bucket": self.blob_bucket,
            "recognized_blob_hosts": list(self.recognized_blob_hosts),
            "max_inline_url_length": self.max_inline_url_length,
            "max_concurrent_copies": self.max_concurrent_copies,
            "conflict_timeout_s": self.conflict_timeout_s,
        }
        if self.retry is not None:
            data["retry"] = self.retry.to_persist_dict()
        return data

    @classmethod
    def from_persist_dict(cls, data: dict[str, Any]) -> "AppSettings":
        data_root = str(data.get("data_root", DEFAULT_DATA_ROOT) or DEFAULT_DATA_ROOT)
        blob_host = str(data.get("blob_host", DEFAULT_BLOB_HOST) or DEFAULT_BLOB_HOST)
        blob_bucket = str(data.get("blob_bucket", DEFAULT_BUCKET) or DEFAULT_BUCKET)

        raw_hosts = data.get("recognized_blob_hosts")
        hosts = [str(h) for h in raw_hosts if str(h).strip()] if isinstance(raw_hosts, list) else []
        if not hosts:
            hosts = sorted(DEFAULT_BLOB_HOSTS)

        raw_timeout = data.get("conflict_timeout_s")
        conflict_timeout_s: Optional[float] = None
        if raw_timeout is not None:
            try:
                conflict_timeout_s = max(1.0, float(raw_timeout))
            except (TypeError, ValueError):
                conflict_timeout_s = None

        raw_retry = data.get("retry")
        retry = None
        if isinstance(raw_retry, dict):
            retry = RetryConfig.from_persist_dict(raw_retry)

        return cls(
            data_root=data_root,
            blob_host=blob_host,
            blob_bucket=blob_bucket,
            recognized_blob_hosts=hosts,
            max_inline_url_length=_as_int(
                data.get("max_inline_url_length"), MAX_INLINE_URL_LENGTH, minimum=1
            ),
            max_concurrent_copies=_as_int(
                data.get("max_concurrent_copies"), DEFAULT_MAX_CONCURRENT_COPIES, minimum=1
            ),
            conflict_timeout_s=conflict_timeout_s,
            retry=retry,
        )
