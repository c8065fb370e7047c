"""Provenance hashing utilities."""

from __future__ import annotations

import hashlib
import uuid


def sha256_text(text: str) -> str:
    """Return SHA-256 hex digest for text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def suggestion_hash(suggestion_text: str) -> str:
    """Stable hash of a proposal, used for duplicate lookups."""
    normalized = " ".join(suggestion_text.split())
    return sha256_text(normalized)


def new_id() -> str:
    """Return a fresh UUID-style identifier."""
    return uuid.uuid4().hex
