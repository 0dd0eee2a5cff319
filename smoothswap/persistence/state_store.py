# smoothswap/persistence/state_store.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from smoothswap.core.constants import TRADE_TYPE_BUY
from smoothswap.ops.context import get_run_id
from smoothswap.persistence.db import DB, utc_now_iso
from smoothswap.strategy.models import ActivityLogEntry


class StateStore:
    def __init__(self, db: DB):
        self.db = db

    # ---------- EXECUTION STATE ----------
    def load_execution_state(self) -> Optional[dict]:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM execution_state WHERE id = 1").fetchone()
        if not row:
            return None
        return {
            "last_execution_time": row["last_execution_time"],
            "next_execution_time": row["next_execution_time"],
            "initial_price": row["initial_price"],
            "price_targets": row["price_targets"],
            "execution_count": int(row["execution_count"] or 0),
        }

    def save_execution_state(
        self,
        *,
        last_execution_time: Optional[str],
        next_execution_time: Optional[str],
        initial_price: Optional[float],
        price_targets: Optional[str],
        execution_count: int,
    ) -> None:
        """
        UPSERT the single execution-state row (written after every state-affecting tick).
        """
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO execution_state(
                    id, last_execution_time, next_execution_time, initial_price,
                    price_targets, execution_count, updated_at
                )
                VALUES (1,?,?,?,?,?,?)
                ON CONFLICT(id) DO UPDATE SET
                    last_execution_time=excluded.last_execution_time,
                    next_execution_time=excluded.next_execution_time,
                    initial_price=excluded.initial_price,
                    price_targets=excluded.price_targets,
                    execution_count=excluded.execution_count,
                    updated_at=excluded.updated_at
                """,
                (
                    last_execution_time,
                    next_execution_time,
                    float(initial_price) if initial_price is not None else None,
                    price_targets,
                    int(execution_count),
                    utc_now_iso(),
                ),
            )

    def clear_execution_state(self) -> None:
        self.save_execution_state(
            last_execution_time=None,
            next_execution_time=None,
            initial_price=None,
            price_targets=None,
            execution_count=0,
        )

    # ---------- ACTIVITY ----------
    def append_activity(self, entry: ActivityLogEntry) -> None:
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO activity_logs(run_id, type, amount, price, dex, token_symbol, wallet, tx_hash, created_at)
                VALUES (?,?,?,?,?,?,?,?,?)
                """,
                (
                    get_run_id(),
                    entry.type,
                    entry.amount,
                    float(entry.price),
                    entry.dex,
                    entry.token_symbol,
                    entry.wallet,
                    entry.tx_hash,
                    entry.timestamp,
                ),
            )

    def recent_activity(self, limit: int = 50) -> List[ActivityLogEntry]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM activity_logs ORDER BY id DESC LIMIT ?", (int(limit),)
            ).fetchall()
        return [
            ActivityLogEntry(
                type=r["type"],
                amount=r["amount"],
                timestamp=r["created_at"],
                price=float(r["price"]),
                dex=r["dex"],
                token_symbol=r["token_symbol"],
                tx_hash=r["tx_hash"],
                wallet=r["wallet"],
            )
            for r in rows
        ]

    # ---------- STATS ----------
    def load_stats(self) -> Dict[str, Any]:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM bot_stats WHERE id = 1").fetchone()
        if not row:
            return {
                "total_tx": 0,
                "total_buys": 0,
                "total_sells": 0,
                "total_volume": 0.0,
                "volume_24h": 0.0,
                "last_volume_24h_reset": None,
            }
        d = dict(row)
        d.pop("id", None)
        d.pop("updated_at", None)
        return d

    def record_trade(
        self, direction: str, volume_usd: float, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Bump counters and USD volume; the 24h window restarts once it is 24h old."""
        now = now or datetime.now(timezone.utc)
        stats = self.load_stats()

        last_reset_s = stats.get("last_volume_24h_reset")
        last_reset = datetime.fromisoformat(last_reset_s) if last_reset_s else now
        if now - last_reset >= timedelta(hours=24):
            volume_24h = float(volume_usd)
            last_reset = now
        else:
            volume_24h = float(stats["volume_24h"]) + float(volume_usd)

        is_buy = direction == TRADE_TYPE_BUY
        out = {
            "total_tx": int(stats["total_tx"]) + 1,
            "total_buys": int(stats["total_buys"]) + (1 if is_buy else 0),
            "total_sells": int(stats["total_sells"]) + (0 if is_buy else 1),
            "total_volume": float(stats["total_volume"]) + float(volume_usd),
            "volume_24h": volume_24h,
            "last_volume_24h_reset": last_reset.isoformat(),
        }

        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO bot_stats(id, total_tx, total_buys, total_sells, total_volume,
                                      volume_24h, last_volume_24h_reset, updated_at)
                VALUES (1,?,?,?,?,?,?,?)
                ON CONFLICT(id) DO UPDATE SET
                    total_tx=excluded.total_tx,
                    total_buys=excluded.total_buys,
                    total_sells=excluded.total_sells,
                    total_volume=excluded.total_volume,
                    volume_24h=excluded.volume_24h,
                    last_volume_24h_reset=excluded.last_volume_24h_reset,
                    updated_at=excluded.updated_at
                """,
                (
                    out["total_tx"],
                    out["total_buys"],
                    out["total_sells"],
                    out["total_volume"],
                    out["volume_24h"],
                    out["last_volume_24h_reset"],
                    utc_now_iso(),
                ),
            )
        return out
