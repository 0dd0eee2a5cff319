from __future__ import annotations

import asyncio
import logging
import traceback
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from web3 import Web3

from smoothswap.chain.connection import ConnectionManager
from smoothswap.chain.nonce import NonceTracker
from smoothswap.core.config import Settings
from smoothswap.core.errors import BotStateError
from smoothswap.execution.executor import SwapExecutor, format_token_amount
from smoothswap.ops.context import clear_run_id, clear_tick_id, set_run_id, set_tick_id
from smoothswap.persistence.audit import Audit
from smoothswap.persistence.config_store import ConfigStore, CustomToken
from smoothswap.persistence.db import DB
from smoothswap.persistence.state_store import StateStore
from smoothswap.pricing.oracle import PriceOracle
from smoothswap.runner.activity import ActivityLog
from smoothswap.runner.scheduler import BotState, SchedulerConfig, TickResult, TradeScheduler
from smoothswap.strategy.models import TradingStrategy

log = logging.getLogger("smoothswap.service")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class BotService:
    """
    Owns the scheduler and the single background task driving it.

    The loop runs scheduler.tick() in a worker thread and only then sleeps
    scheduler.next_delay_seconds(), so a slow swap delays the next tick
    instead of overlapping it.
    """

    def __init__(
        self,
        *,
        scheduler: TradeScheduler,
        config_store: ConfigStore,
        state_store: StateStore,
        audit: Audit,
        oracle: PriceOracle,
        connections: ConnectionManager,
    ):
        self.scheduler = scheduler
        self.config_store = config_store
        self.state_store = state_store
        self.audit = audit
        self.oracle = oracle
        self.connections = connections

        self.task: Optional[asyncio.Task] = None
        self.run_id: Optional[str] = None
        self.started_at: Optional[str] = None
        self.last_tick_at: Optional[str] = None
        self.tick_count = 0
        self.last_result: Optional[TickResult] = None
        self.last_error: Optional[str] = None

    @classmethod
    def from_settings(cls, s: Settings, db: Optional[DB] = None) -> "BotService":
        db = db or DB(s.DB_PATH)
        audit = Audit(db, s.AUDIT_JSONL_PATH)
        state_store = StateStore(db)
        config_store = ConfigStore(
            db,
            encryption_key=s.WALLET_ENCRYPTION_KEY,
            default_strategy=TradingStrategy(
                selected_dex=s.DEFAULT_DEX, selected_token=s.DEFAULT_TOKEN_ADDRESS
            ),
        )
        connections = ConnectionManager(
            s.RPC_URLS,
            s.CHAIN_ID,
            timeout_s=s.RPC_TIMEOUT_SECONDS,
            max_attempts=s.RPC_MAX_ATTEMPTS,
            retry_delay_s=s.RPC_RETRY_DELAY_SECONDS,
        )
        oracle = PriceOracle(
            token_endpoints=s.PRICE_API_ENDPOINTS,
            native_endpoints=s.NATIVE_PRICE_ENDPOINTS,
            wrapped_native=s.WRAPPED_NATIVE_ADDRESS,
            network=s.PRICE_NETWORK,
            timeout_s=s.PRICE_TIMEOUT_SECONDS,
            max_retries=s.PRICE_MAX_RETRIES,
            native_max_retries=s.NATIVE_PRICE_MAX_RETRIES,
            max_backoff_s=s.PRICE_MAX_BACKOFF_SECONDS,
        )
        executor = SwapExecutor(
            wrapped_native=s.WRAPPED_NATIVE_ADDRESS,
            routers=s.DEX_ROUTERS,
            chain_id=s.CHAIN_ID,
            nonces=NonceTracker(),
            gas_price_multiplier=s.GAS_PRICE_MULTIPLIER,
            gas_limit_multiplier=s.GAS_LIMIT_MULTIPLIER,
            deadline_s=s.SWAP_DEADLINE_SECONDS,
            receipt_timeout_s=s.RECEIPT_TIMEOUT_SECONDS,
            receipt_poll_s=s.RECEIPT_POLL_SECONDS,
            audit=audit,
        )
        activity = ActivityLog(limit=s.ACTIVITY_LOG_LIMIT, sink=state_store.append_activity)
        activity.preload(state_store.recent_activity(s.ACTIVITY_LOG_LIMIT))

        scheduler = TradeScheduler(
            connections=connections,
            oracle=oracle,
            executor=executor,
            config=SchedulerConfig.from_settings(s),
            audit=audit,
            state_store=state_store,
            activity=activity,
            symbol_for=config_store.symbol_for,
        )
        return cls(
            scheduler=scheduler,
            config_store=config_store,
            state_store=state_store,
            audit=audit,
            oracle=oracle,
            connections=connections,
        )

    # ---------------- LOOP ----------------

    async def _loop(self) -> None:
        while self.scheduler.is_active:
            set_tick_id(str(uuid.uuid4()))
            try:
                self.last_tick_at = _utc_now_iso()
                result = await asyncio.to_thread(self.scheduler.tick)
                self.tick_count += 1
                self.last_result = result
                if result.action not in ("NO_TRIGGER", "PRICE_UNAVAILABLE"):
                    log.info("tick %s: %s %s", self.tick_count, result.action, result.details)
            except Exception:
                # FAIL-CLOSED: an unexpected error halts trading until an explicit restart
                err = traceback.format_exc()
                self.last_error = err
                log.error("scheduler loop halted:\n%s", err)
                self.scheduler.fault("Unexpected error in trading loop")
                self.audit.event(event_type="FATAL", action="RUNNER_HALTED", details={"error": err})
                break
            finally:
                clear_tick_id()

            if not self.scheduler.is_active:
                break
            await asyncio.sleep(self.scheduler.next_delay_seconds())

        if self.scheduler.state == BotState.FAULTED and self.run_id:
            self.audit.stop_run(self.run_id, status="FAULTED", reason=self.scheduler.fault_reason)

    @property
    def loop_running(self) -> bool:
        return self.task is not None and not self.task.done()

    async def start(self) -> Dict[str, Any]:
        if self.scheduler.is_active and self.loop_running:
            return {"status": "already_running", **self.status()}

        strategy = self.config_store.load_strategy()
        wallets = self.config_store.load_wallets()
        self.scheduler.start(strategy, wallets)

        self.run_id = str(uuid.uuid4())
        set_run_id(self.run_id)
        self.audit.start_run(
            run_id=self.run_id,
            trading_mode=strategy.trading_mode,
            direction=strategy.type,
            token=strategy.selected_token,
        )
        self.started_at = _utc_now_iso()
        self.tick_count = 0
        self.last_result = None
        self.last_error = None

        self.task = asyncio.create_task(self._loop())
        return {"status": "started", **self.status()}

    async def _cancel_task(self) -> None:
        if self.task and not self.task.done():
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                # expected when we cancel the background loop
                pass
        self.task = None

    async def stop(self, reason: str = "user_stop") -> Dict[str, Any]:
        was = self.scheduler.state
        await self._cancel_task()
        if was == BotState.STOPPED:
            return {"status": "not_running", **self.status()}

        self.scheduler.stop(reason)
        if self.run_id and was != BotState.FAULTED:
            self.audit.stop_run(self.run_id, status="STOPPED", reason=reason)
        clear_run_id()
        return {"status": "stopped", **self.status()}

    async def shutdown(self) -> None:
        if self.scheduler.is_active or self.loop_running:
            await self.stop("shutdown")

    # ---------------- VIEWS ----------------

    def status(self) -> Dict[str, Any]:
        return {
            **self.scheduler.status(),
            "run_id": self.run_id,
            "loop_running": self.loop_running,
            "started_at": self.started_at,
            "last_tick_at": self.last_tick_at,
            "tick_count": self.tick_count,
            "last_action": self.last_result.action if self.last_result else None,
            "loop_error": self.last_error,
            "rpc_url": self.connections.current_url,
        }

    def activity(self, limit: int = 50) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.scheduler.activity.entries()[: max(1, limit)]]

    def stats(self) -> Dict[str, Any]:
        return self.state_store.load_stats()

    def price(self, token: str) -> Dict[str, Any]:
        quote = self.oracle.get_price(token)
        return {
            "token": token,
            "price": quote.price,
            "source": quote.source,
            "fallback": quote.fallback,
        }

    def wallet_balance(self, address: str) -> Dict[str, Any]:
        if not Web3.is_address(address):
            raise ValueError("Invalid wallet address")
        owner = Web3.to_checksum_address(address)
        client = self.connections.get_connection()
        token = self.config_store.load_strategy().selected_token

        out: Dict[str, Any] = {
            "address": owner,
            "native": format_token_amount(client.native_balance(owner), client.native_decimals()),
        }
        if token:
            decimals = client.decimals(token)
            out["token"] = Web3.to_checksum_address(token)
            out["token_symbol"] = self.config_store.symbol_for(token)
            out["token_balance"] = format_token_amount(client.balance_of(token, owner), decimals)
        return out

    # ---------------- CONFIG ----------------

    def get_strategy(self) -> TradingStrategy:
        return self.config_store.load_strategy()

    def update_strategy(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        current = self.config_store.load_strategy().to_dict()
        current.update({k: v for k, v in changes.items() if v is not None})
        strategy = TradingStrategy.from_dict(current).validate()

        ladder_reset = False
        if self.scheduler.is_active:
            ladder_reset = self.scheduler.update_strategy(strategy)
        self.config_store.save_strategy(strategy)
        return {"strategy": strategy.to_dict(), "ladder_reset": ladder_reset}

    def list_wallets(self) -> List[str]:
        return self.config_store.list_addresses()

    def add_wallet(self, private_key: str) -> Dict[str, str]:
        wallet = self.config_store.add_wallet(private_key)
        self.audit.event(event_type="CONFIG", action="WALLET_ADDED", details={"address": wallet.address})
        return wallet.public()

    def remove_wallet(self, address: str) -> bool:
        if self.scheduler.is_active:
            raise BotStateError("Cannot remove wallets while the bot is running")
        removed = self.config_store.remove_wallet(address)
        if removed:
            self.audit.event(event_type="CONFIG", action="WALLET_REMOVED", details={"address": address})
        return removed

    def list_tokens(self) -> List[CustomToken]:
        return list(self.config_store.list_tokens().values())

    def add_token(self, token: CustomToken) -> CustomToken:
        return self.config_store.add_token(token)

    def remove_token(self, address: str) -> bool:
        strategy = self.config_store.load_strategy()
        if self.scheduler.is_active and strategy.selected_token.lower() == address.lower():
            raise BotStateError("Cannot remove the token the bot is trading")
        return self.config_store.remove_token(address)
