from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator


# =========================
# Time helpers
# =========================
def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# =========================
# Database class
# =========================
class DB:
    """
    Single source of truth for SQLite access.
    Default path: data/bot.db
    """

    def __init__(self, path: str = "data/bot.db"):
        self.path = path

        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)

        self._init()

    # -------------------------
    # Connection manager
    # -------------------------
    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    # -------------------------
    # Init / migrations
    # -------------------------
    def _init(self) -> None:
        conn = sqlite3.connect(self.path, timeout=30)
        try:
            # =========================
            # Runs (one per start/stop)
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS runs (
                    run_id TEXT PRIMARY KEY,
                    started_at TEXT NOT NULL,
                    stopped_at TEXT,
                    trading_mode TEXT NOT NULL,
                    direction TEXT NOT NULL,
                    token TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'RUNNING',
                    stop_reason TEXT
                )
                """
            )

            # =========================
            # Events (audit log)
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp_utc TEXT NOT NULL,
                    run_id TEXT,
                    tick_id TEXT,
                    event_type TEXT NOT NULL,
                    action TEXT,
                    details_json TEXT
                )
                """
            )

            # =========================
            # Wallets (keys Fernet-encrypted)
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS wallets (
                    address TEXT PRIMARY KEY,
                    private_key_encrypted BLOB NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )

            # =========================
            # Strategy (single row)
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS strategy (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    strategy_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS custom_tokens (
                    address TEXT PRIMARY KEY,
                    symbol TEXT NOT NULL,
                    name TEXT NOT NULL,
                    decimals INTEGER NOT NULL,
                    dex TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )

            # =========================
            # Execution state (single row)
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS execution_state (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    last_execution_time TEXT,
                    next_execution_time TEXT,
                    initial_price REAL,
                    price_targets TEXT,
                    execution_count INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL
                )
                """
            )

            # =========================
            # Trade history
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS activity_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id TEXT,
                    type TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    price REAL NOT NULL,
                    dex TEXT NOT NULL,
                    token_symbol TEXT NOT NULL,
                    wallet TEXT,
                    tx_hash TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS bot_stats (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    total_tx INTEGER NOT NULL DEFAULT 0,
                    total_buys INTEGER NOT NULL DEFAULT 0,
                    total_sells INTEGER NOT NULL DEFAULT 0,
                    total_volume REAL NOT NULL DEFAULT 0,
                    volume_24h REAL NOT NULL DEFAULT 0,
                    last_volume_24h_reset TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

            # =========================
            # Indexes
            # =========================
            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_run ON events(run_id)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_time ON events(timestamp_utc)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_activity_time ON activity_logs(created_at)"
            )

            conn.commit()

        finally:
            conn.close()
