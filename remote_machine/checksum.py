"""Payload digests shared by the caller and the remote verification script."""

from __future__ import annotations

import hashlib


def digest(data: bytes) -> str:
    """Return the lowercase hex SHA-256 digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


__all__ = ["digest"]
