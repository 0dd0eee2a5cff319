from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable, List, Optional

from smoothswap.strategy.models import ActivityLogEntry

log = logging.getLogger("smoothswap.activity")


class ActivityLog:
    """Newest-first, bounded window of completed trades. Optional durable sink."""

    def __init__(
        self,
        limit: int = 50,
        sink: Optional[Callable[[ActivityLogEntry], None]] = None,
    ):
        self.limit = int(limit)
        self.sink = sink
        self._entries: deque = deque(maxlen=self.limit)
        self._lock = threading.Lock()

    def append(self, entry: ActivityLogEntry) -> None:
        with self._lock:
            self._entries.appendleft(entry)
        if self.sink is not None:
            try:
                self.sink(entry)
            except Exception as e:
                # the trade already happened; losing the history row must not fault the bot
                log.error("activity sink failed: %s", e)

    def preload(self, entries: List[ActivityLogEntry]) -> None:
        """Seed from storage (entries given newest-first), without re-sinking."""
        with self._lock:
            self._entries.clear()
            for e in entries[: self.limit]:
                self._entries.append(e)

    def entries(self) -> List[ActivityLogEntry]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
