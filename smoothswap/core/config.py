# smoothswap/core/config.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from web3 import Web3

log = logging.getLogger("smoothswap.config")


def _parse_list(v: Any) -> List[str]:
    """
    Accepts:
      - list: ["https://a", "https://b"]
      - csv:  "https://a,https://b"
      - json: '["https://a","https://b"]'
    Returns trimmed, non-empty entries (case preserved: URLs and addresses).
    """
    if v is None:
        return []
    if isinstance(v, list):
        return [str(x).strip() for x in v if str(x).strip()]
    s = str(v).strip()
    if not s:
        return []
    if s.startswith("["):
        try:
            arr = json.loads(s)
            return [str(x).strip() for x in arr if str(x).strip()]
        except Exception:
            # fall back to csv parse
            pass
    return [p.strip() for p in s.split(",") if p.strip()]


def _parse_kv_str(v: Any) -> Dict[str, str]:
    """
    Accepts:
      - dict: {"falcoxswap": "0x..."}
      - csv:  "falcoxswap:0x...,otherswap:0x..."
      - json: '{"falcoxswap":"0x..."}'
    Keys are lowercased (dex names), values trimmed.
    """
    if v is None:
        return {}
    if isinstance(v, dict):
        return {
            str(k).strip().lower(): str(val).strip()
            for k, val in v.items()
            if str(k).strip() and str(val).strip()
        }

    s = str(v).strip()
    if not s:
        return {}

    if s.startswith("{"):
        try:
            raw = json.loads(s)
            if isinstance(raw, dict):
                return _parse_kv_str(raw)
        except Exception:
            pass

    out: Dict[str, str] = {}
    for part in s.split(","):
        part = part.strip()
        if not part or ":" not in part:
            continue
        k, val = part.split(":", 1)
        k = k.strip().lower()
        val = val.strip()
        if k and val:
            out[k] = val
    return out


class Settings(BaseSettings):
    """Runtime configuration loaded from .env / environment variables."""

    # enable_decoding=False keeps pydantic-settings from json-decoding List/Dict
    # fields itself; the validators below accept csv and json.
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        enable_decoding=False,
    )

    # --- Chain / RPC ---
    RPC_URLS: List[str] = Field(
        default_factory=lambda: [
            "https://rpc.coredao.org",
            "https://rpc-core.icecreamswap.com",
            "https://rpc.coredao.org/",
            "https://core.drpc.org",
        ]
    )
    CHAIN_ID: int = 1116
    RPC_TIMEOUT_SECONDS: float = 10.0
    RPC_MAX_ATTEMPTS: int = 5
    RPC_RETRY_DELAY_SECONDS: float = 1.0

    # --- DEX ---
    WRAPPED_NATIVE_ADDRESS: str = "0x40375C92d9FAf44d2f9db9Bd9ba41a3317a2404f"
    DEFAULT_TOKEN_ADDRESS: str = "0x892CCdD2624ef09Ca5814661c566316253353820"
    DEX_ROUTERS: Dict[str, str] = Field(
        default_factory=lambda: {
            "falcoxswap": "0x2C34490b5E30f3C6838aE59c8c5fE88F9B9fBc8A"
        }
    )
    DEFAULT_DEX: str = "falcoxswap"

    # --- Swap execution ---
    GAS_PRICE_MULTIPLIER: float = 1.5
    GAS_LIMIT_MULTIPLIER: float = 1.2
    SWAP_DEADLINE_SECONDS: int = 300
    RECEIPT_TIMEOUT_SECONDS: float = 120.0
    RECEIPT_POLL_SECONDS: float = 1.0

    # --- Price APIs ---
    PRICE_API_ENDPOINTS: List[str] = Field(
        default_factory=lambda: [
            "https://api.geckoterminal.com/api/v2",
            "https://alternate-api.falcox.net/api/v2",
            "https://price.falcox.net/api/v2",
            "https://backup-price.falcox.net/api/v2",
        ]
    )
    NATIVE_PRICE_ENDPOINTS: List[str] = Field(
        default_factory=lambda: [
            "https://api.coingecko.com/api/v3/simple/price?ids=coredao&vs_currencies=usd",
            "https://api.falcox.net/v1/price/core",
            "https://price.icecreamswap.com/price/core",
        ]
    )
    PRICE_NETWORK: str = "core"
    PRICE_TIMEOUT_SECONDS: float = 5.0
    PRICE_MAX_RETRIES: int = 5
    NATIVE_PRICE_MAX_RETRIES: int = 3
    PRICE_MAX_BACKOFF_SECONDS: float = 10.0

    # --- Scheduler ---
    MAX_CONSECUTIVE_ERRORS: int = 3
    ERROR_RESET_SECONDS: int = 300
    MAX_RECONNECT_ATTEMPTS: int = 100
    RECONNECT_DELAY_SECONDS: float = 5.0
    PERCENTAGE_POLL_SECONDS: float = 10.0
    ACTIVITY_LOG_LIMIT: int = 50

    # --- Storage / ops ---
    DB_PATH: str = "data/bot.db"
    AUDIT_JSONL_PATH: str = "logs/audit.jsonl"
    WALLET_ENCRYPTION_KEY: str = ""
    LOG_LEVEL: str = "INFO"

    @field_validator("RPC_URLS", "PRICE_API_ENDPOINTS", "NATIVE_PRICE_ENDPOINTS", mode="before")
    @classmethod
    def parse_url_lists(cls, v: Any) -> List[str]:
        return _parse_list(v)

    @field_validator("DEX_ROUTERS", mode="before")
    @classmethod
    def parse_dex_routers(cls, v: Any) -> Dict[str, str]:
        return _parse_kv_str(v)

    def model_post_init(self, __context: Any) -> None:
        self.DEFAULT_DEX = (self.DEFAULT_DEX or "falcoxswap").lower().strip()
        self.LOG_LEVEL = (self.LOG_LEVEL or "INFO").upper().strip()
        self.PRICE_NETWORK = (self.PRICE_NETWORK or "core").lower().strip()

    def router_for(self, dex: str) -> str:
        key = (dex or "").lower().strip()
        if key not in self.DEX_ROUTERS:
            raise ValueError(f"Unknown DEX '{dex}'. Known: {sorted(self.DEX_ROUTERS)}")
        return self.DEX_ROUTERS[key]

    def validate_runtime(self) -> List[str]:
        """
        Fail-fast validation. Returns warnings (non-fatal).
        Raises ValueError for fatal misconfiguration.
        """
        errors: List[str] = []
        warnings: List[str] = []

        if not self.RPC_URLS:
            errors.append("RPC_URLS must contain at least one endpoint.")
        if self.CHAIN_ID <= 0:
            errors.append("CHAIN_ID must be > 0.")

        if not Web3.is_address(self.WRAPPED_NATIVE_ADDRESS):
            errors.append("WRAPPED_NATIVE_ADDRESS is not a valid address.")
        if self.DEFAULT_TOKEN_ADDRESS and not Web3.is_address(self.DEFAULT_TOKEN_ADDRESS):
            errors.append("DEFAULT_TOKEN_ADDRESS is not a valid address.")

        if not self.DEX_ROUTERS:
            errors.append("DEX_ROUTERS must define at least one router.")
        for name, addr in self.DEX_ROUTERS.items():
            if not Web3.is_address(addr):
                errors.append(f"DEX_ROUTERS[{name}] is not a valid address.")
        if self.DEFAULT_DEX not in self.DEX_ROUTERS:
            errors.append(f"DEFAULT_DEX '{self.DEFAULT_DEX}' is not in DEX_ROUTERS.")

        if self.GAS_PRICE_MULTIPLIER <= 0:
            errors.append("GAS_PRICE_MULTIPLIER must be > 0.")
        if self.GAS_LIMIT_MULTIPLIER <= 0:
            errors.append("GAS_LIMIT_MULTIPLIER must be > 0.")
        if self.GAS_PRICE_MULTIPLIER < 1 or self.GAS_LIMIT_MULTIPLIER < 1:
            warnings.append(
                "Gas multipliers below 1.0 make underpriced / out-of-gas transactions likely."
            )

        for key in ("RPC_TIMEOUT_SECONDS", "PRICE_TIMEOUT_SECONDS", "RECEIPT_TIMEOUT_SECONDS"):
            if getattr(self, key) <= 0:
                errors.append(f"{key} must be > 0.")

        if self.RPC_MAX_ATTEMPTS < 1:
            errors.append("RPC_MAX_ATTEMPTS must be >= 1.")
        if self.MAX_CONSECUTIVE_ERRORS < 1:
            errors.append("MAX_CONSECUTIVE_ERRORS must be >= 1.")
        if self.MAX_RECONNECT_ATTEMPTS < 1:
            errors.append("MAX_RECONNECT_ATTEMPTS must be >= 1.")
        if self.PERCENTAGE_POLL_SECONDS <= 0:
            errors.append("PERCENTAGE_POLL_SECONDS must be > 0.")
        if self.ACTIVITY_LOG_LIMIT < 1:
            errors.append("ACTIVITY_LOG_LIMIT must be >= 1.")

        if not self.PRICE_API_ENDPOINTS:
            warnings.append("PRICE_API_ENDPOINTS is empty. Token prices will be unavailable.")
        if not self.NATIVE_PRICE_ENDPOINTS:
            warnings.append("NATIVE_PRICE_ENDPOINTS is empty. Native price will be unavailable.")

        if not self.WALLET_ENCRYPTION_KEY:
            warnings.append(
                "WALLET_ENCRYPTION_KEY is not set. Wallets cannot be stored until one is configured."
            )

        if errors:
            msg = "Config validation failed:\n" + "\n".join([f"- {e}" for e in errors])
            raise ValueError(msg)

        return warnings


# Pydantic v2 + postponed annotations safety
Settings.model_rebuild()
settings = Settings()
