from __future__ import annotations

import threading
from collections import defaultdict
from typing import Callable, Dict


class NonceTracker:
    """
    Per-wallet monotonic nonce cache.

    next_nonce() takes max(chain pending count, cached next) and bumps the
    cache before the caller signs, under a per-wallet lock, so two quick
    successive sends from one wallet never share a nonce even when the first
    is not yet visible in the node's pending count.
    """

    def __init__(self) -> None:
        self._next: Dict[str, int] = {}
        self._locks = defaultdict(threading.Lock)  # address -> Lock
        self._guard = threading.Lock()

    def _lock_for(self, address: str) -> threading.Lock:
        with self._guard:
            return self._locks[address]

    def next_nonce(self, address: str, fetch_pending: Callable[[str], int]) -> int:
        key = address.lower()
        with self._lock_for(key):
            chain_nonce = int(fetch_pending(address))
            nonce = max(chain_nonce, self._next.get(key, 0))
            self._next[key] = nonce + 1
            return nonce

    def peek(self, address: str) -> int:
        return self._next.get(address.lower(), 0)

    def reset(self, address: str | None = None) -> None:
        with self._guard:
            if address is None:
                self._next.clear()
            else:
                self._next.pop(address.lower(), None)
