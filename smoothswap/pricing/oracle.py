from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import requests

from smoothswap.core.errors import InvalidPrice

log = logging.getLogger("smoothswap.oracle")


@dataclass(frozen=True)
class PriceQuote:
    """
    Oracle answer. `price is None` means "no data"; it is never conflated
    with a numeric zero.
    """

    token: str
    price: Optional[float]
    source: Optional[str] = None
    fallback: bool = False  # non-exact pool match kept after every endpoint failed

    @property
    def ok(self) -> bool:
        return self.price is not None and self.price > 0

    def require(self) -> float:
        if not self.ok:
            raise InvalidPrice(f"Invalid token price received for {self.token}")
        return float(self.price)


def _as_price(v: Any) -> Optional[float]:
    try:
        p = float(v)
    except (TypeError, ValueError):
        return None
    if math.isnan(p) or math.isinf(p) or p <= 0:
        return None
    return p


def extract_native_price(data: Any) -> Optional[float]:
    """
    Native endpoints answer either {"coredao": {"usd": x}} (coingecko shape)
    or {"price": x}.
    """
    if not isinstance(data, dict):
        return None
    nested = data.get("coredao")
    if isinstance(nested, dict):
        return _as_price(nested.get("usd"))
    return _as_price(data.get("price"))


def extract_token_price(data: Any) -> Optional[float]:
    """Token endpoint shape: {"data": {"attributes": {"price_usd": x}}}."""
    if not isinstance(data, dict):
        return None
    inner = data.get("data")
    if not isinstance(inner, dict):
        return None
    attrs = inner.get("attributes")
    if not isinstance(attrs, dict):
        return None
    return _as_price(attrs.get("price_usd"))


def _is_exact_pool(pool: dict, token: str) -> bool:
    rel = pool.get("relationships") or {}
    base = ((rel.get("base_token") or {}).get("data") or {}).get("id") or ""
    return base.lower().endswith(token.lower())


class PriceOracle:
    """
    USD prices from external HTTP APIs with endpoint fallback and bounded retry.

    Token prices: pools endpoint first (exact base-token pool with a valid
    token_price_usd wins), then the token endpoint's price_usd. The wrapped
    native token is priced from a separate endpoint list.
    """

    def __init__(
        self,
        *,
        token_endpoints: List[str],
        native_endpoints: List[str],
        wrapped_native: str,
        network: str = "core",
        timeout_s: float = 5.0,
        max_retries: int = 5,
        native_max_retries: int = 3,
        max_backoff_s: float = 10.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.token_endpoints = [e.rstrip("/") for e in token_endpoints]
        self.native_endpoints = list(native_endpoints)
        self.wrapped_native = wrapped_native
        self.network = network
        self.timeout_s = float(timeout_s)
        self.max_retries = max(1, int(max_retries))
        self.native_max_retries = max(1, int(native_max_retries))
        self.max_backoff_s = float(max_backoff_s)
        self.session = session or requests.Session()
        self.sleep = sleep

    # ---------------- HTTP ----------------

    def _get_json(self, url: str) -> Optional[Any]:
        try:
            r = self.session.get(url, timeout=self.timeout_s)
        except requests.RequestException as e:
            log.debug("price fetch failed %s: %s", url, e)
            return None
        if r.status_code != 200:
            log.debug("price fetch %s -> HTTP %s", url, r.status_code)
            return None
        try:
            return r.json()
        except ValueError:
            return None

    # ---------------- PUBLIC ----------------

    def get_price(self, token: str) -> PriceQuote:
        if not token or len(token) != 42 or not token.startswith("0x"):
            log.error("Invalid token address format: %r", token)
            return PriceQuote(token=token, price=None)

        if token.lower() == self.wrapped_native.lower():
            return self.get_native_price()
        return self._token_price(token)

    def get_native_price(self) -> PriceQuote:
        token = self.wrapped_native
        for attempt in range(self.native_max_retries):
            for url in self.native_endpoints:
                price = extract_native_price(self._get_json(url))
                if price is not None:
                    return PriceQuote(token=token, price=price, source=url)
            if attempt < self.native_max_retries - 1:
                self.sleep(1.0 * (attempt + 1))

        log.warning("native price unavailable after %s attempts", self.native_max_retries)
        return PriceQuote(token=token, price=None)

    def _token_price(self, token: str) -> PriceQuote:
        cached: Optional[PriceQuote] = None

        for attempt in range(self.max_retries):
            for base in self.token_endpoints:
                token_url = f"{base}/networks/{self.network}/tokens/{token}"

                pools = self._get_json(f"{token_url}/pools")
                rows = pools.get("data") if isinstance(pools, dict) else None
                for pool in rows or []:
                    if not isinstance(pool, dict):
                        continue
                    price = _as_price((pool.get("attributes") or {}).get("token_price_usd"))
                    if price is None:
                        continue
                    if _is_exact_pool(pool, token):
                        return PriceQuote(token=token, price=price, source=base)
                    if cached is None:
                        cached = PriceQuote(token=token, price=price, source=base, fallback=True)

                price = extract_token_price(self._get_json(token_url))
                if price is not None:
                    return PriceQuote(token=token, price=price, source=base)

            if attempt < self.max_retries - 1:
                self.sleep(min(1.0 * (2**attempt), self.max_backoff_s))

        if cached is not None:
            log.warning("using non-exact pool price for %s after %s attempts", token, self.max_retries)
            return cached
        log.error("Failed to fetch price for %s after %s attempts", token, self.max_retries)
        return PriceQuote(token=token, price=None)
