"""Bounded in-memory log of recent retrievals."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable

import orjson

from rulebook_rag.models.dto import RetrievalRecord

logger = logging.getLogger(__name__)

HistoryListener = Callable[[RetrievalRecord], None]


class RetrievalHistory:
    """Ring buffer of :class:`RetrievalRecord`, oldest first, with subscribers."""

    def __init__(self, max_entries: int = 50) -> None:
        self._entries: deque[RetrievalRecord] = deque(maxlen=max_entries)
        self._listeners: list[HistoryListener] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, entry: RetrievalRecord) -> None:
        with self._lock:
            self._entries.append(entry)
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(entry)
            except Exception:
                logger.exception("History listener %r failed", listener)

    def entries(self, limit: int | None = None) -> list[RetrievalRecord]:
        with self._lock:
            items = list(self._entries)
        if limit is None:
            return items
        return items[-limit:] if limit > 0 else []

    def last(self) -> RetrievalRecord | None:
        with self._lock:
            return self._entries[-1] if self._entries else None

    def subscribe(self, listener: HistoryListener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def export(self) -> bytes:
        """Serialise the whole buffer as a JSON array."""
        return orjson.dumps([entry.model_dump(mode="json") for entry in self.entries()])


__all__ = ["RetrievalHistory", "HistoryListener"]
