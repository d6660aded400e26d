"""Content digests used for exact duplicate detection."""

from __future__ import annotations

import hashlib

from caselens.utils.text import normalize


def content_hash(text: str) -> str:
    """Compute the SHA256 hex digest of the normalized text."""
    sha = hashlib.sha256()
    sha.update(normalize(text).encode("utf-8"))
    return sha.hexdigest()
