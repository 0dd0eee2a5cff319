from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken
from web3 import Web3

from smoothswap.core.constants import UNKNOWN_TOKEN_SYMBOL
from smoothswap.persistence.db import DB, utc_now_iso
from smoothswap.strategy.models import TradingStrategy, Wallet


@dataclass
class CustomToken:
    address: str
    symbol: str
    name: str
    decimals: int
    dex: str


class ConfigStore:
    """
    User configuration the scheduler reads at start: wallets, strategy,
    custom token registry. Private keys are stored Fernet-encrypted.
    """

    def __init__(self, db: DB, encryption_key: str = "", default_strategy: Optional[TradingStrategy] = None):
        self.db = db
        self._cipher = Fernet(encryption_key.encode("utf-8")) if encryption_key else None
        self.default_strategy = default_strategy or TradingStrategy()

    def _require_cipher(self) -> Fernet:
        if self._cipher is None:
            raise ValueError("WALLET_ENCRYPTION_KEY is not configured; wallets cannot be stored")
        return self._cipher

    # ---------- WALLETS ----------
    def add_wallet(self, private_key: str) -> Wallet:
        wallet = Wallet.from_private_key(private_key)
        cipher = self._require_cipher()
        token = cipher.encrypt(wallet.private_key.encode("utf-8"))

        with self.db.connect() as conn:
            exists = conn.execute(
                "SELECT 1 FROM wallets WHERE address = ?", (wallet.address,)
            ).fetchone()
            if exists:
                raise ValueError(f"Wallet {wallet.address} already exists")
            conn.execute(
                "INSERT INTO wallets(address, private_key_encrypted, created_at) VALUES (?,?,?)",
                (wallet.address, token, utc_now_iso()),
            )
        return wallet

    def remove_wallet(self, address: str) -> bool:
        with self.db.connect() as conn:
            cur = conn.execute(
                "DELETE FROM wallets WHERE lower(address) = lower(?)", (address,)
            )
            return cur.rowcount > 0

    def list_addresses(self) -> List[str]:
        with self.db.connect() as conn:
            rows = conn.execute("SELECT address FROM wallets ORDER BY created_at").fetchall()
        return [r["address"] for r in rows]

    def load_wallets(self) -> List[Wallet]:
        cipher = self._require_cipher()
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT address, private_key_encrypted FROM wallets ORDER BY created_at"
            ).fetchall()

        out: List[Wallet] = []
        for r in rows:
            try:
                pk = cipher.decrypt(r["private_key_encrypted"]).decode("utf-8")
            except InvalidToken as e:
                raise ValueError(
                    f"Cannot decrypt wallet {r['address']}: wrong WALLET_ENCRYPTION_KEY"
                ) from e
            out.append(Wallet(address=r["address"], private_key=pk))
        return out

    # ---------- STRATEGY ----------
    def load_strategy(self) -> TradingStrategy:
        with self.db.connect() as conn:
            row = conn.execute("SELECT strategy_json FROM strategy WHERE id = 1").fetchone()
        if not row:
            return TradingStrategy.from_dict(self.default_strategy.to_dict())
        return TradingStrategy.from_dict(json.loads(row["strategy_json"]))

    def save_strategy(self, strategy: TradingStrategy) -> TradingStrategy:
        strategy.validate()
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO strategy(id, strategy_json, updated_at) VALUES (1,?,?)
                ON CONFLICT(id) DO UPDATE SET
                    strategy_json=excluded.strategy_json,
                    updated_at=excluded.updated_at
                """,
                (json.dumps(strategy.to_dict()), utc_now_iso()),
            )
        return strategy

    # ---------- CUSTOM TOKENS ----------
    def add_token(self, token: CustomToken) -> CustomToken:
        if not Web3.is_address(token.address):
            raise ValueError("Invalid token address")
        if int(token.decimals) < 0 or int(token.decimals) > 36:
            raise ValueError("decimals must be in [0, 36]")
        token.address = Web3.to_checksum_address(token.address)
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO custom_tokens(address, symbol, name, decimals, dex, created_at)
                VALUES (?,?,?,?,?,?)
                """,
                (token.address, token.symbol, token.name, int(token.decimals), token.dex, utc_now_iso()),
            )
        return token

    def remove_token(self, address: str) -> bool:
        with self.db.connect() as conn:
            cur = conn.execute(
                "DELETE FROM custom_tokens WHERE lower(address) = lower(?)", (address,)
            )
            removed = cur.rowcount > 0

        # removing the traded token falls back to the default token
        strategy = self.load_strategy()
        if removed and strategy.selected_token.lower() == address.lower():
            strategy.selected_token = self.default_strategy.selected_token
            self.save_strategy(strategy)
        return removed

    def list_tokens(self) -> Dict[str, CustomToken]:
        with self.db.connect() as conn:
            rows = conn.execute("SELECT * FROM custom_tokens ORDER BY created_at").fetchall()
        return {
            r["address"]: CustomToken(
                address=r["address"],
                symbol=r["symbol"],
                name=r["name"],
                decimals=int(r["decimals"]),
                dex=r["dex"],
            )
            for r in rows
        }

    def symbol_for(self, address: str) -> str:
        for addr, tok in self.list_tokens().items():
            if addr.lower() == (address or "").lower():
                return tok.symbol
        return UNKNOWN_TOKEN_SYMBOL
