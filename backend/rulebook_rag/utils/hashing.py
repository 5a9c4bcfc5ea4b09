"""Hashing utilities."""

from __future__ import annotations

_DJB2_SEED = 5381
_MASK_32 = 0xFFFFFFFF


def content_hash(text: str) -> str:
    """Return a djb2-xor 32-bit hash of ``text`` as a decimal string.

    Used only for change detection of source documents, never for security.
    """
    value = _DJB2_SEED
    for char in text:
        value = (((value << 5) + value) ^ ord(char)) & _MASK_32
    return str(value)


__all__ = ["content_hash"]
