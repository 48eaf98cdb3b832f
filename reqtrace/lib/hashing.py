"""Content fingerprints for extracted test bodies."""

import hashlib

HASH_LENGTH = 64


def compute_hash(body: str) -> str:
    """SHA-256 hex digest of the UTF-8 encoded body."""
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def short_hash(digest: str | None) -> str:
    """First 8 characters of a digest, for display."""
    if not digest:
        return "-"
    return digest[:8]
