"""ID helpers."""

from __future__ import annotations

import uuid


def new_id(prefix: str | None = None) -> str:
    """Generate a random UUID4 string with optional prefix."""
    base = uuid.uuid4().hex
    return f"{prefix}_{base}" if prefix else base


def chunk_id(source: str, sequence_index: int) -> str:
    """Deterministic chunk id, e.g. ``primary_3``."""
    return f"{source}_{sequence_index}"


def split_chunk_id(identifier: str) -> tuple[str, int]:
    """Inverse of :func:`chunk_id`; raises ``ValueError`` on malformed ids."""
    source, sep, index = identifier.rpartition("_")
    if not sep or not source or not index.isdigit():
        raise ValueError(f"Malformed chunk id: {identifier!r}")
    return source, int(index)
