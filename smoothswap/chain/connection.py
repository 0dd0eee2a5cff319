from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional

from smoothswap.chain.client import EvmChainClient, make_web3
from smoothswap.core.errors import NoConnection

log = logging.getLogger("smoothswap.connection")


def _default_factory(timeout_s: float) -> Callable[[str], EvmChainClient]:
    def build(url: str) -> EvmChainClient:
        return EvmChainClient(make_web3(url, timeout_s), rpc_url=url)

    return build


class ConnectionManager:
    """
    Keeps one live RPC connection and fails over across a fixed endpoint list.

    get_connection():
      - cached connection answers the ping -> reuse it
      - otherwise walk the endpoints round-robin from the last good index,
        accepting the first that answers the ping AND reports CHAIN_ID
      - up to `max_attempts` full passes, exponential backoff between passes
      - raises NoConnection when everything failed (transient for callers)
    """

    def __init__(
        self,
        rpc_urls: List[str],
        chain_id: int,
        *,
        timeout_s: float = 10.0,
        max_attempts: int = 5,
        retry_delay_s: float = 1.0,
        max_backoff_s: float = 8.0,
        client_factory: Optional[Callable[[str], EvmChainClient]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not rpc_urls:
            raise ValueError("rpc_urls must not be empty")
        self.rpc_urls = list(rpc_urls)
        self.chain_id = int(chain_id)
        self.max_attempts = max(1, int(max_attempts))
        self.retry_delay_s = float(retry_delay_s)
        self.max_backoff_s = float(max_backoff_s)
        self.client_factory = client_factory or _default_factory(timeout_s)
        self.sleep = sleep

        self.current_index = 0
        self._client: Optional[EvmChainClient] = None
        self._lock = threading.Lock()

    @property
    def current_url(self) -> Optional[str]:
        return self._client.rpc_url if self._client is not None else None

    def invalidate(self) -> None:
        with self._lock:
            self._client = None

    def _probe(self, url: str) -> Optional[EvmChainClient]:
        try:
            client = self.client_factory(url)
            if not client.ping():
                log.warning("RPC %s not listening", url)
                return None
            cid = client.chain_id()
            if cid != self.chain_id:
                log.warning("RPC %s reports chain id %s (expected %s)", url, cid, self.chain_id)
                return None
            return client
        except Exception as e:
            log.warning("RPC %s failed: %s", url, e)
            return None

    def get_connection(self) -> EvmChainClient:
        with self._lock:
            if self._client is not None:
                if self._client.ping():
                    return self._client
                log.info("cached RPC %s stopped answering; failing over", self._client.rpc_url)
                self._client = None

            n = len(self.rpc_urls)
            for attempt in range(self.max_attempts):
                for i in range(n):
                    idx = (self.current_index + i) % n
                    client = self._probe(self.rpc_urls[idx])
                    if client is None:
                        continue
                    self.current_index = idx
                    self._client = client
                    log.info("connected to RPC %s", self.rpc_urls[idx])
                    return client

                if attempt < self.max_attempts - 1:
                    self.sleep(min(self.retry_delay_s * (2**attempt), self.max_backoff_s))

        raise NoConnection(
            f"No RPC connection: all {n} endpoints failed {self.max_attempts} attempts"
        )
