from __future__ import annotations

from typing import Optional
from urllib.request import Request, urlopen

from .retry import RetryConfig, with_retry


DEFAULT_USER_AGENT = "prompt-vault-local/0.1 (+media fetch)"
DEFAULT_TIMEOUT_S = 30.0


def fetch_url_bytes(
    url: str,
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    retry: Optional[RetryConfig] = None,
) -> bytes:
    """
    Download a remote image (blocking).

    Transient HTTP statuses and connection errors are retried with backoff;
    anything else propagates to the caller.
    """
    headers = {
        "User-Agent": DEFAULT_USER_AGENT,
        "Accept": "image/*,*/*;q=0.8",
    }

    def _once() -> bytes:
        req = Request(url, headers=headers)
        with urlopen(req, timeout=timeout_s) as resp:
            return resp.read()

    return with_retry(_once, config=retry)
