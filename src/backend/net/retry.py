"""
Backoff for remote image fetches.

Exports and share copies read images that may live on a remote host. A
fetch that fails with 429/5xx or at the connection level is tried again
after base * 2^n seconds (capped, plus jitter); anything else fails at once.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional, Set, TypeVar
from urllib.error import URLError

DEFAULT_MAX_RETRIES = 2
DEFAULT_BASE_DELAY_S = 1.5
DEFAULT_MAX_DELAY_S = 30.0
DEFAULT_JITTER_FACTOR = 0.25

DEFAULT_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

T = TypeVar("T")
logger = logging.getLogger(__name__)


class RetryableError(Exception):
    """
    Raised by fetchers to mark a failure as transient (or, with
    should_retry=False, as final regardless of its status).
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        should_retry: bool = True,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.should_retry = should_retry


def _clamped(raw: Any, cast: Callable[[Any], Any], default: Any, lo: float, hi: Optional[float] = None) -> Any:
    if raw is None:
        return default
    try:
        value = cast(raw)
    except (TypeError, ValueError):
        return default
    value = max(lo, value)
    return min(hi, value) if hi is not None else value


def _status_codes(raw: Any) -> Set[int]:
    codes: Set[int] = set()
    if isinstance(raw, (list, tuple)):
        for code in raw:
            try:
                codes.add(int(code))
            except (TypeError, ValueError):
                continue
    return codes or set(DEFAULT_RETRYABLE_STATUS_CODES)


@dataclass
class RetryConfig:
    """
    Stored under "retry" in data/config.json and editable at runtime.

    max_retries counts extra attempts (0 = try once). enabled=False also
    means a single attempt, without losing the configured numbers.
    """
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_s: float = DEFAULT_BASE_DELAY_S
    max_delay_s: float = DEFAULT_MAX_DELAY_S
    jitter_factor: float = DEFAULT_JITTER_FACTOR
    retryable_status_codes: Set[int] = field(default_factory=lambda: set(DEFAULT_RETRYABLE_STATUS_CODES))
    enabled: bool = True

    def to_persist_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "max_retries": self.max_retries,
            "base_delay_s": self.base_delay_s,
            "max_delay_s": self.max_delay_s,
            "jitter_factor": self.jitter_factor,
            "retryable_status_codes": sorted(self.retryable_status_codes),
        }

    @classmethod
    def from_persist_dict(cls, data: dict) -> "RetryConfig":
        return cls(
            max_retries=_clamped(data.get("max_retries"), int, DEFAULT_MAX_RETRIES, 0),
            base_delay_s=_clamped(data.get("base_delay_s"), float, DEFAULT_BASE_DELAY_S, 0.1),
            max_delay_s=_clamped(data.get("max_delay_s"), float, DEFAULT_MAX_DELAY_S, 1.0),
            jitter_factor=_clamped(data.get("jitter_factor"), float, DEFAULT_JITTER_FACTOR, 0.0, 1.0),
            retryable_status_codes=_status_codes(data.get("retryable_status_codes")),
            enabled=bool(data.get("enabled", True)),
        )

    @property
    def attempts(self) -> int:
        return self.max_retries + 1 if self.enabled else 1

    def compute_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt `attempt` (0-indexed)."""
        delay = min(self.base_delay_s * (2 ** attempt), self.max_delay_s)
        return delay + delay * random.uniform(0, self.jitter_factor)

    def delays(self) -> Iterator[float]:
        for attempt in range(self.attempts - 1):
            yield self.compute_delay(attempt)

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in self.retryable_status_codes


def _extract_status_code(exc: Exception) -> Optional[int]:
    # RetryableError.status_code, urllib HTTPError.code
    for attr in ("status_code", "code"):
        raw = getattr(exc, attr, None)
        if raw is None:
            continue
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None
    return None


def _is_transient(exc: Exception, cfg: RetryConfig) -> bool:
    if isinstance(exc, RetryableError):
        return exc.should_retry
    status = _extract_status_code(exc)
    if status is not None:
        return cfg.is_retryable_status(status)
    return isinstance(exc, (URLError, ConnectionError, TimeoutError))


def with_retry(
    func: Callable[[], T],
    *,
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call `func` until it succeeds, fails permanently, or attempts run out.

    Blocking; callers on the event loop wrap it in asyncio.to_thread.
    on_retry(attempt, exc, delay) replaces the default warning log.

    Raises:
        The last exception from func().
    """
    cfg = config or RetryConfig()
    schedule = cfg.delays()
    attempt = 0
    while True:
        try:
            return func()
        except Exception as exc:
            delay = next(schedule, None)
            if delay is None or not _is_transient(exc, cfg):
                raise
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            else:
                logger.warning("Fetch retry %d/%d in %.2fs: %s", attempt + 1, cfg.max_retries, delay, exc)
            sleep(delay)
            attempt += 1
