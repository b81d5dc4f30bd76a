"""Content fingerprints for drift and change detection."""

import hashlib


def content_hash(content: str) -> str:
    """Calculate the fingerprint of a document.

    Args:
        content: Document text

    Returns:
        Hex encoded SHA256 digest of the UTF-8 encoded text

    """
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def has_drifted(content: str, known_hash: str) -> bool:
    """Return True if content no longer matches the last known fingerprint."""
    return content_hash(content) != known_hash
