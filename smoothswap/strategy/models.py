# smoothswap/strategy/models.py
from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from eth_account import Account

from smoothswap.core.constants import (
    INTERVAL_UNIT_SECONDS,
    MODE_INTERVAL,
    MODE_PERCENTAGE,
    TRADE_TYPE_BUY,
    TRADE_TYPE_SELL,
)

_PRIVATE_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


def normalize_private_key(raw: str) -> str:
    """32-byte hex, with or without 0x. Returns the 0x-prefixed lowercase form."""
    s = (raw or "").strip()
    if not _PRIVATE_KEY_RE.match(s):
        raise ValueError("Private key must be a 32-byte hex value")
    if not s.startswith("0x"):
        s = "0x" + s
    return s.lower()


@dataclass(frozen=True)
class Wallet:
    address: str
    private_key: str

    @classmethod
    def from_private_key(cls, raw: str) -> "Wallet":
        pk = normalize_private_key(raw)
        acct = Account.from_key(pk)
        return cls(address=acct.address, private_key=pk)

    def public(self) -> Dict[str, str]:
        return {"address": self.address}


@dataclass
class TradingStrategy:
    type: str = TRADE_TYPE_BUY  # "buy" | "sell"
    min_amount: float = 0.001
    max_amount: float = 0.01
    # tenths of a percent: floor = quote * (1000 - slippage_bps) / 1000
    slippage_bps: int = 5
    trading_mode: str = MODE_PERCENTAGE  # "interval" | "percentage"
    interval: int = 5
    interval_unit: str = "minutes"  # "seconds" | "minutes" | "hours"
    percentage_threshold: float = 1.0
    selected_dex: str = "falcoxswap"
    selected_token: str = ""

    def validate(self) -> "TradingStrategy":
        errors = []
        self.type = (self.type or "").lower().strip()
        self.trading_mode = (self.trading_mode or "").lower().strip()
        self.interval_unit = (self.interval_unit or "").lower().strip()

        if self.type not in (TRADE_TYPE_BUY, TRADE_TYPE_SELL):
            errors.append("type must be 'buy' or 'sell'")
        if self.min_amount <= 0:
            errors.append("min_amount must be > 0")
        if self.min_amount > self.max_amount:
            errors.append("min_amount must be <= max_amount")
        if not (0 <= int(self.slippage_bps) < 1000):
            errors.append("slippage_bps must be in [0, 1000)")
        if self.trading_mode not in (MODE_INTERVAL, MODE_PERCENTAGE):
            errors.append("trading_mode must be 'interval' or 'percentage'")
        if self.trading_mode == MODE_PERCENTAGE and not (
            0 < self.percentage_threshold <= 100
        ):
            errors.append("percentage_threshold must be in (0, 100]")
        if self.trading_mode == MODE_INTERVAL:
            if self.interval_unit not in INTERVAL_UNIT_SECONDS:
                errors.append("interval_unit must be seconds, minutes or hours")
            if int(self.interval) <= 0:
                errors.append("interval must be > 0")

        if errors:
            raise ValueError("Invalid strategy: " + "; ".join(errors))
        return self

    @property
    def interval_seconds(self) -> float:
        return float(self.interval) * INTERVAL_UNIT_SECONDS.get(self.interval_unit, 60)

    def ladder_key(self) -> tuple:
        # Parameters whose change invalidates a computed ladder
        return (self.type, self.trading_mode, float(self.percentage_threshold), self.selected_token.lower())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TradingStrategy":
        known = {k: d[k] for k in cls.__dataclass_fields__ if k in d}
        return cls(**known)


@dataclass
class ActivityLogEntry:
    type: str  # "buy" | "sell"
    amount: str
    timestamp: str
    price: float
    dex: str
    token_symbol: str
    tx_hash: Optional[str] = None
    wallet: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BotRunState:
    running: bool = False
    error_count: int = 0
    reconnect_attempts: int = 0
    initial_price: Optional[float] = None
    last_error_at: Optional[float] = None
    last_error: Optional[str] = None
    execution_count: int = 0
    last_execution_time: Optional[str] = None
    next_execution_time: Optional[str] = None

    def reset(self) -> None:
        self.error_count = 0
        self.reconnect_attempts = 0
        self.initial_price = None
        self.last_error_at = None
        self.last_error = None
        self.execution_count = 0
        self.last_execution_time = None
        self.next_execution_time = None
