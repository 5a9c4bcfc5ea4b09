"""Text processing helpers."""

from __future__ import annotations

import re

WHITESPACE_RE = re.compile(r"\s+")
NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")


def normalize(text: str) -> str:
    """Collapse whitespace and strip."""
    return WHITESPACE_RE.sub(" ", text).strip()


def normalize_for_match(text: str) -> str:
    """Lowercase, replace punctuation with spaces, collapse whitespace."""
    return normalize(NON_ALNUM_RE.sub(" ", text.lower()))


__all__ = ["normalize", "normalize_for_match"]
