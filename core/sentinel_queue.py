"""Sentinel queue — short observations waiting for the next AI request.

Many producers (the process scanner, the console host) push; the AI
bridge drains everything in one go when it builds an outbound request.
A drained observation is gone even if that request later fails.

Pure stdlib — no external dependencies.
"""

from __future__ import annotations

import collections
import logging
import threading

log = logging.getLogger("sentient.sentinel_queue")


class SentinelQueue:
    """Unbounded FIFO with an atomic batch drain."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: collections.deque[str] = collections.deque()

    def push(self, observation: str) -> None:
        """Queue *observation* as given.  Blank strings are dropped."""
        if not observation or not observation.strip():
            return
        with self._lock:
            self._items.append(observation)
        log.debug("Sentinel observation queued: %s", observation)

    def drain_all(self) -> list[str]:
        """Remove and return every queued observation in push order."""
        with self._lock:
            items = list(self._items)
            self._items.clear()
        return items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
