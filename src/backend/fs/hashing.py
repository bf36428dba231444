"""
Hashing utilities for content-addressed records.

Uses SHA-256 throughout. Media record ids are the hex digest of
"<owner_id>-<normalized url>", so the same logical input always maps to the
same id. Blob content hashes are used to tag copies for traceability.
"""

from __future__ import annotations

import hashlib


# Hash algorithm to use
HASH_ALGORITHM = "sha256"

# Size of hash prefix used in blob names
HASH6_LENGTH = 6


def compute_text_hash(text: str) -> str:
    """
    Compute the SHA-256 hash of a UTF-8 string.

    Args:
        text: The string to hash.

    Returns:
        Lowercase hexadecimal hash string.
    """
    return hashlib.new(HASH_ALGORITHM, text.encode("utf-8")).hexdigest()


def compute_bytes_hash(data: bytes) -> str:
    """
    Compute the SHA-256 hash of bytes.

    Args:
        data: The bytes to hash.

    Returns:
        Lowercase hexadecimal hash string.
    """
    return hashlib.new(HASH_ALGORITHM, data).hexdigest()


def compute_record_id(owner_id: str, normalized_url: str) -> str:
    """
    Deterministic media record id for an (owner, normalized url) pair.

    The url must already be normalized; see MediaStore.normalize().
    """
    return compute_text_hash(f"{owner_id}-{normalized_url}")


def compute_hash6(full_hash: str) -> str:
    """
    Extract the first 6 characters of a hash.

    Raises:
        ValueError: If the hash is shorter than 6 characters.
    """
    if len(full_hash) < HASH6_LENGTH:
        raise ValueError(
            f"Hash must be at least {HASH6_LENGTH} characters, got {len(full_hash)}"
        )
    return full_hash[:HASH6_LENGTH].lower()
