"""
Error kinds shared by the media, share and archive services.

Single-entity operations report failures as values (None / False /
PutResult.error) tagged with an ErrorKind. Only call-level fatal problems
(an unreadable manifest or backup payload) are raised as exceptions.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    INVALID_STATE = "invalid_state"
    TOO_LARGE = "too_large"
    MALFORMED = "malformed"
    PARTIAL_FAILURE = "partial_failure"


class PromptVaultError(Exception):
    """Base class for errors raised by the service layer."""

    kind: ErrorKind = ErrorKind.MALFORMED

    def __init__(self, message: str, *, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class MalformedArchiveError(PromptVaultError):
    """The archive container or its metadata.json could not be read."""

    kind = ErrorKind.MALFORMED


class MalformedBackupError(PromptVaultError):
    """A JSON backup payload could not be parsed."""

    kind = ErrorKind.MALFORMED
