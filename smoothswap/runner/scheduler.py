from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from smoothswap.core.constants import MODE_PERCENTAGE, TRADE_TYPE_BUY, UNKNOWN_TOKEN_SYMBOL
from smoothswap.core.errors import (
    BotStateError,
    InvalidPrice,
    NoConnection,
    TargetsExhausted,
    is_network_error,
)
from smoothswap.runner.activity import ActivityLog
from smoothswap.strategy.ladder import PriceLadder
from smoothswap.strategy.models import (
    ActivityLogEntry,
    BotRunState,
    TradingStrategy,
    Wallet,
)

log = logging.getLogger("smoothswap.scheduler")


class BotState(str, Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    RECONNECTING = "RECONNECTING"
    FAULTED = "FAULTED"


@dataclass
class TickResult:
    action: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SchedulerConfig:
    max_consecutive_errors: int = 3
    error_reset_s: float = 300.0
    max_reconnect_attempts: int = 100
    reconnect_delay_s: float = 5.0
    percentage_poll_s: float = 10.0

    @classmethod
    def from_settings(cls, s) -> "SchedulerConfig":
        return cls(
            max_consecutive_errors=s.MAX_CONSECUTIVE_ERRORS,
            error_reset_s=float(s.ERROR_RESET_SECONDS),
            max_reconnect_attempts=s.MAX_RECONNECT_ATTEMPTS,
            reconnect_delay_s=s.RECONNECT_DELAY_SECONDS,
            percentage_poll_s=s.PERCENTAGE_POLL_SECONDS,
        )


def random_amount(rng: random.Random, lo: float, hi: float) -> str:
    return f"{rng.uniform(float(lo), float(hi)):.6f}"


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class TradeScheduler:
    """
    Trading state machine: Stopped -> Running <-> Reconnecting, Faulted.

    One tick = connection -> price -> (ladder go/no-go) -> swap. The caller
    (ops.service.BotService) arms the next timer only after tick() returned,
    using next_delay_seconds(), so ticks never overlap.

    Owns BotRunState and the PriceLadder for the duration of a run. stop()
    bumps the run generation: a tick already in flight still finishes its
    on-chain work but its bookkeeping is dropped.
    """

    def __init__(
        self,
        *,
        connections,
        oracle,
        executor,
        config: Optional[SchedulerConfig] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
        audit=None,
        state_store=None,
        activity: Optional[ActivityLog] = None,
        symbol_for: Optional[Callable[[str], str]] = None,
    ):
        self.connections = connections
        self.oracle = oracle
        self.executor = executor
        self.config = config or SchedulerConfig()
        self.rng = rng or random.Random()
        self.clock = clock
        self.audit = audit
        self.state_store = state_store
        self.activity = activity or ActivityLog()
        self.symbol_for = symbol_for or (lambda _addr: UNKNOWN_TOKEN_SYMBOL)

        self.state = BotState.STOPPED
        self.run = BotRunState()
        self.fault_reason: Optional[str] = None
        self.strategy: Optional[TradingStrategy] = None
        self.wallets: List[Wallet] = []
        self.ladder: Optional[PriceLadder] = None

        self._generation = 0
        self._lock = threading.RLock()

    # ---------------- helpers ----------------

    def _audit(self, event_type: str, action: str, details: Optional[dict] = None) -> None:
        if self.audit is None:
            return
        try:
            self.audit.event(event_type=event_type, action=action, details=details or {})
        except Exception as e:
            log.warning("audit write failed (%s/%s): %s", event_type, action, e)

    def _persist(self) -> None:
        if self.state_store is None:
            return
        try:
            self.state_store.save_execution_state(
                last_execution_time=self.run.last_execution_time,
                next_execution_time=self.run.next_execution_time,
                initial_price=self.run.initial_price,
                price_targets=self.ladder.to_json() if self.ladder else None,
                execution_count=self.run.execution_count,
            )
        except Exception as e:
            # Don't crash the bot because persistence failed; log it
            log.error("saving execution state failed: %s", e)
            self._audit("ERROR", "SAVE_STATE_FAILED", {"error": f"{type(e).__name__}: {e}"})

    @property
    def is_active(self) -> bool:
        return self.state in (BotState.RUNNING, BotState.RECONNECTING)

    @property
    def percentage_mode(self) -> bool:
        return self.strategy is not None and self.strategy.trading_mode == MODE_PERCENTAGE

    def next_delay_seconds(self) -> float:
        if self.state == BotState.RECONNECTING:
            return float(self.config.reconnect_delay_s)
        if self.strategy is None:
            return float(self.config.percentage_poll_s)
        if self.percentage_mode:
            return float(self.config.percentage_poll_s)
        return self.strategy.interval_seconds

    # ---------------- transitions ----------------

    def start(self, strategy: TradingStrategy, wallets: List[Wallet]) -> None:
        with self._lock:
            if self.is_active:
                raise BotStateError("Bot is already running")
            strategy.validate()
            if not strategy.selected_token:
                raise BotStateError("No token selected for trading")
            if not wallets:
                raise BotStateError("No wallets available")

            saved = self.state_store.load_execution_state() if self.state_store is not None else None

            self._generation += 1
            self.strategy = TradingStrategy.from_dict(strategy.to_dict())
            self.wallets = list(wallets)
            self.run.reset()
            self.run.running = True
            if saved:
                # counters survive a crash or fault; the ladder is always rebuilt
                self.run.execution_count = saved["execution_count"]
                self.run.last_execution_time = saved["last_execution_time"]
            self.ladder = None  # computed from the live price on the first tick
            self.fault_reason = None
            self.state = BotState.RUNNING
            self.run.next_execution_time = _iso(self.clock())

        log.info(
            "bot started: %s %s mode=%s wallets=%s",
            self.strategy.type, self.strategy.selected_token, self.strategy.trading_mode, len(self.wallets),
        )
        self._audit("STATE", "START", {"strategy": self.strategy.to_dict(), "wallets": len(self.wallets)})
        self._persist()

    def stop(self, reason: Optional[str] = None) -> None:
        with self._lock:
            self._generation += 1
            prev = self.state
            self.state = BotState.STOPPED
            self.run.reset()
            self.run.running = False
            self.ladder = None
            self.fault_reason = None

        log.info("bot stopped (was %s)%s", prev.value, f": {reason}" if reason else "")
        self._audit("STATE", "STOP", {"previous": prev.value, "reason": reason})
        if self.state_store is not None:
            try:
                self.state_store.clear_execution_state()
            except Exception as e:
                log.error("clearing execution state failed: %s", e)

    def _fault(self, reason: str) -> None:
        self.state = BotState.FAULTED
        self.run.running = False
        self.fault_reason = reason
        log.error("bot faulted: %s", reason)
        self._audit("STATE", "FAULTED", {"reason": reason})

    def fault(self, reason: str) -> None:
        """Fail-closed entry point for the service loop on unhandled errors."""
        with self._lock:
            self._generation += 1
            self._fault(reason)
        self._persist()

    def _enter_reconnecting(self, reason: str) -> None:
        self.state = BotState.RECONNECTING
        self.connections.invalidate()
        log.warning("network connection lost, reconnecting: %s", reason)
        self._audit("STATE", "RECONNECTING", {"reason": reason})

    def update_strategy(self, strategy: TradingStrategy) -> bool:
        """
        Swap in new strategy parameters. Returns True when the ladder was
        discarded (it is recomputed from the then-current price next tick).
        """
        strategy.validate()
        with self._lock:
            if self.is_active and not strategy.selected_token:
                raise BotStateError("No token selected for trading")
            old_key = self.strategy.ladder_key() if self.strategy else None
            self.strategy = TradingStrategy.from_dict(strategy.to_dict())
            reset = old_key is not None and old_key != self.strategy.ladder_key()
            if reset:
                self.ladder = None
                self.run.initial_price = None
        if reset:
            self._audit("STATE", "LADDER_RESET", {"reason": "strategy_changed"})
            self._persist()
        return reset

    # ---------------- tick ----------------

    def _maybe_reset_errors(self, now: float) -> None:
        if (
            self.run.error_count > 0
            and self.run.last_error_at is not None
            and now - self.run.last_error_at >= self.config.error_reset_s
        ):
            log.info("error counter reset after %.0fs without errors", now - self.run.last_error_at)
            self.run.error_count = 0
            self.run.last_error = None

    def _reconnect_step(self, generation: int) -> TickResult:
        # the failover sweep runs unlocked so stop() and status() stay responsive
        try:
            self.connections.get_connection()
        except Exception as e:
            with self._lock:
                if generation != self._generation:
                    return TickResult("DISCARDED", {"error": str(e)})
                self.run.reconnect_attempts += 1
                attempts = self.run.reconnect_attempts
                log.warning("reconnection attempt %s failed: %s", attempts, e)
                if attempts >= self.config.max_reconnect_attempts:
                    self._fault(
                        "Maximum reconnection attempts reached. Check the network and restart the bot."
                    )
                    return TickResult("FAULTED", {"reason": self.fault_reason, "attempts": attempts})
            return TickResult("RECONNECTING", {"attempts": attempts, "error": str(e)})

        with self._lock:
            if generation != self._generation:
                return TickResult("DISCARDED")
            self.state = BotState.RUNNING
            self.run.reconnect_attempts = 0
        self._audit("STATE", "RECONNECTED", {"rpc": getattr(self.connections, "current_url", None)})
        return TickResult("RECONNECTED")

    def _on_error(self, e: Exception) -> TickResult:
        if isinstance(e, InvalidPrice):
            self._audit("WARN", "PRICE_UNAVAILABLE", {"token": self.strategy.selected_token})
            return TickResult("PRICE_UNAVAILABLE", {"error": str(e)})
        if isinstance(e, TargetsExhausted):
            self._fault(str(e))
            self._persist()
            return TickResult("TARGETS_EXHAUSTED", {"reason": self.fault_reason})
        if is_network_error(e):
            self._enter_reconnecting(str(e))
            return TickResult("RECONNECTING", {"error": str(e)})

        self.run.error_count += 1
        self.run.last_error_at = self.clock()
        self.run.last_error = f"{type(e).__name__}: {e}"
        log.error("trading error %s/%s: %s", self.run.error_count, self.config.max_consecutive_errors, self.run.last_error)
        self._audit("ERROR", "TRADE_FAILED", {"error": self.run.last_error, "error_count": self.run.error_count})

        if self.run.error_count >= self.config.max_consecutive_errors:
            self._fault(f"Bot stopped: {self.config.max_consecutive_errors} consecutive errors occurred")
            self._persist()
            return TickResult("FAULTED", {"reason": self.fault_reason, "error": self.run.last_error})

        self._persist()
        return TickResult("TRADE_FAILED", {"error": self.run.last_error, "error_count": self.run.error_count})

    def tick(self) -> TickResult:
        with self._lock:
            if not self.is_active:
                return TickResult("SKIPPED_NOT_RUNNING", {"state": self.state.value})
            generation = self._generation
            now = self.clock()
            self._maybe_reset_errors(now)
            reconnecting = self.state == BotState.RECONNECTING
            strategy = self.strategy

        if reconnecting:
            return self._reconnect_step(generation)

        # connection
        try:
            client = self.connections.get_connection()
        except NoConnection as e:
            with self._lock:
                if generation != self._generation:
                    return TickResult("DISCARDED")
                self._enter_reconnecting(str(e))
            return TickResult("RECONNECTING", {"error": str(e)})

        try:
            # price
            price = self.oracle.get_price(strategy.selected_token).require()

            # ladder go/no-go
            fired = None
            ladder_initialized = False
            if strategy.trading_mode == MODE_PERCENTAGE:
                with self._lock:
                    if generation != self._generation:
                        return TickResult("DISCARDED")
                    if self.ladder is None:
                        self.ladder = PriceLadder.initialize(
                            price, strategy.type, strategy.percentage_threshold
                        )
                        self.run.initial_price = price
                        ladder_initialized = True
                        self._audit("STATE", "LADDER_INITIALIZED", {"initial_price": price})
                    if self.ladder.exhausted:
                        raise TargetsExhausted(
                            "Price targets exhausted. Restart the bot to compute a new ladder."
                        )
                    fired = self.ladder.check_and_advance(price)
                    self.run.next_execution_time = _iso(now + self.next_delay_seconds())
                if fired is None:
                    if ladder_initialized:
                        self._persist()
                    return TickResult(
                        "NO_TRIGGER",
                        {"price": price, "ladder_initialized": ladder_initialized},
                    )
                self._persist()

            # trade
            wallet = self.rng.choice(self.wallets)
            amount = random_amount(self.rng, strategy.min_amount, strategy.max_amount)
            receipt = self.executor.execute_trade(
                client,
                strategy.selected_dex,
                strategy.type,
                amount,
                strategy.slippage_bps,
                wallet,
                strategy.selected_token,
            )
        except Exception as e:
            with self._lock:
                if generation != self._generation:
                    log.info("discarding error from a stopped run: %s", e)
                    return TickResult("DISCARDED", {"error": str(e)})
                return self._on_error(e)

        return self._on_trade_success(generation, strategy, wallet, amount, price, receipt, fired)

    def _on_trade_success(self, generation, strategy, wallet, amount, price, receipt, fired) -> TickResult:
        with self._lock:
            if generation != self._generation:
                log.info("trade %s finished after stop; bookkeeping discarded", receipt.tx_hash)
                return TickResult("DISCARDED", {"tx_hash": receipt.tx_hash})

            now = self.clock()
            self.run.error_count = 0
            self.run.last_error = None
            self.run.last_error_at = None
            self.run.execution_count += 1
            self.run.last_execution_time = _iso(now)
            self.run.next_execution_time = _iso(now + self.next_delay_seconds())

        entry = ActivityLogEntry(
            type=strategy.type,
            amount=amount,
            timestamp=_iso(now),
            price=price,
            dex=strategy.selected_dex,
            token_symbol=self.symbol_for(strategy.selected_token),
            tx_hash=receipt.tx_hash,
            wallet=wallet.address,
        )
        self.activity.append(entry)
        volume = self._volume_usd(strategy.type, amount, price)
        if self.state_store is not None:
            try:
                self.state_store.record_trade(strategy.type, volume)
            except Exception as e:
                log.error("recording trade stats failed: %s", e)
        self._persist()

        details = {
            "tx_hash": receipt.tx_hash,
            "direction": strategy.type,
            "amount": amount,
            "price": price,
            "wallet": wallet.address,
            "volume_usd": volume,
        }
        if fired is not None:
            details["target_id"] = fired.id
            details["target_price"] = fired.price
        log.info("trade executed: %s", details)
        self._audit("TRADE", f"{strategy.type.upper()}_EXECUTED", details)
        return TickResult("TRADED", details)

    def _volume_usd(self, direction: str, amount: str, token_price: float) -> float:
        """Buys spend the native asset, so they are valued at the native price."""
        if direction != TRADE_TYPE_BUY:
            return float(amount) * token_price
        try:
            native = self.oracle.get_native_price()
        except Exception as e:
            log.warning("native price for volume failed: %s", e)
            return 0.0
        return float(amount) * float(native.price) if native.ok else 0.0

    # ---------------- views ----------------

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "state": self.state.value,
                "running": self.run.running,
                "reconnecting": self.state == BotState.RECONNECTING,
                "fault_reason": self.fault_reason,
                "error_count": self.run.error_count,
                "last_error": self.run.last_error,
                "reconnect_attempts": self.run.reconnect_attempts,
                "initial_price": self.run.initial_price,
                "execution_count": self.run.execution_count,
                "last_execution_time": self.run.last_execution_time,
                "next_execution_time": self.run.next_execution_time,
                "next_delay_seconds": self.next_delay_seconds(),
                "strategy": self.strategy.to_dict() if self.strategy else None,
                "wallets": len(self.wallets),
            }

    def targets(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            if self.ladder is None:
                return None
            d = self.ladder.to_dict()
            nxt = self.ladder.next_target()
            d["next_target"] = nxt.price if nxt else None
            d["exhausted"] = self.ladder.exhausted
            return d
