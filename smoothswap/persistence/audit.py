# smoothswap/persistence/audit.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from smoothswap.ops.context import get_run_id, get_tick_id
from smoothswap.persistence.db import DB, utc_now_iso

log = logging.getLogger("smoothswap.audit")


class Audit:
    """
    DB audit is the source of truth.
    Additionally mirrors events to a JSONL file for tailing.
    run_id / tick_id default to the current context when not passed.
    """

    def __init__(self, db: DB, jsonl_path: str = "logs/audit.jsonl"):
        self.db = db
        self.jsonl_path = Path(jsonl_path)

        try:
            self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
            self.jsonl_path.touch(exist_ok=True)
        except OSError as e:
            # never crash bot due to audit file issues
            log.warning("audit jsonl unavailable at %s: %s", self.jsonl_path, e)

    def start_run(self, run_id: str, trading_mode: str, direction: str, token: str) -> None:
        with self.db.connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO runs(run_id, started_at, trading_mode, direction, token, status) VALUES (?,?,?,?,?,'RUNNING')",
                (run_id, utc_now_iso(), trading_mode, direction, token),
            )

        self._write_jsonl(
            {
                "timestamp_utc": utc_now_iso(),
                "event_type": "RUN_START",
                "run_id": run_id,
                "details": {"trading_mode": trading_mode, "direction": direction, "token": token},
            }
        )

    def stop_run(self, run_id: str, status: str = "STOPPED", reason: Optional[str] = None) -> None:
        with self.db.connect() as conn:
            conn.execute(
                "UPDATE runs SET stopped_at = ?, status = ?, stop_reason = ? WHERE run_id = ?",
                (utc_now_iso(), status, reason, run_id),
            )

        self._write_jsonl(
            {
                "timestamp_utc": utc_now_iso(),
                "event_type": "RUN_STOP",
                "run_id": run_id,
                "details": {"status": status, "reason": reason},
            }
        )

    def event(
        self,
        event_type: str,
        run_id: Optional[str] = None,
        tick_id: Optional[str] = None,
        action: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        run_id = run_id or get_run_id()
        tick_id = tick_id or get_tick_id()
        payload = json.dumps(details or {}, ensure_ascii=False, default=str)

        # 1) DB (source of truth)
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO events(timestamp_utc, run_id, tick_id, event_type, action, details_json)
                VALUES (?,?,?,?,?,?)
                """,
                (utc_now_iso(), run_id, tick_id, event_type, action, payload),
            )

        # 2) JSONL mirror
        self._write_jsonl(
            {
                "timestamp_utc": utc_now_iso(),
                "event_type": event_type,
                "run_id": run_id,
                "tick_id": tick_id,
                "action": action,
                "details": details or {},
            }
        )

    def tail(self, limit: int = 50) -> List[Dict[str, Any]]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM events ORDER BY id DESC LIMIT ?", (int(limit),)
            ).fetchall()
        out = []
        for r in rows:
            d = dict(r)
            try:
                d["details"] = json.loads(d.pop("details_json") or "{}")
            except ValueError:
                d["details"] = {}
            out.append(d)
        return out

    def _write_jsonl(self, obj: Dict[str, Any]) -> None:
        try:
            self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
            with self.jsonl_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(obj, ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            # never crash trading loop because audit file write failed
            log.warning("audit jsonl write failed: %s", e)
