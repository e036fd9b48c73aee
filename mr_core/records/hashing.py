# mr_core/records/hashing.py
"""
Content digest helpers for record versions.

The digest is SHA-256 over the UTF-8 encoding of the content, rendered as
lowercase hex. Size is the UTF-8 byte length, not the character count.
"""
from __future__ import annotations

import hashlib


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def content_size(content: str) -> int:
    return len(content.encode("utf-8"))


def verify_integrity(version) -> bool:
    """
    Recompute the digest of version.content and compare it with the stored
    content_hash. A mismatch is reported, never repaired.
    """
    return content_hash(version.content or "") == version.content_hash
