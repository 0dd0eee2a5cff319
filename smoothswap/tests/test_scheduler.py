import random
import threading
import time

import pytest

from smoothswap.core.errors import (
    BotStateError,
    InsufficientLiquidity,
    InvalidPrice,
    NetworkError,
    NoConnection,
    TransactionFailed,
)
from smoothswap.execution.executor import SwapReceipt
from smoothswap.persistence.db import DB
from smoothswap.persistence.state_store import StateStore
from smoothswap.pricing.oracle import PriceQuote
from smoothswap.runner.scheduler import BotState, SchedulerConfig, TradeScheduler, random_amount
from smoothswap.strategy.models import TradingStrategy, Wallet

TOKEN = "0x892ccdd2624ef09ca5814661c566316253353820"
WALLETS = [Wallet.from_private_key("0x" + "11" * 32), Wallet.from_private_key("0x" + "22" * 32)]


class _FakeConnections:
    def __init__(self, failures=0):
        self.failures = failures
        self.calls = 0
        self.invalidated = 0
        self.current_url = "https://rpc.example"

    def get_connection(self):
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise NoConnection("all rpc endpoints down")
        return "client"

    def invalidate(self):
        self.invalidated += 1


class _FakeOracle:
    """Serves prices in order; the last one repeats."""

    def __init__(self, *prices):
        self.prices = list(prices)

    def get_price(self, token):
        p = self.prices.pop(0) if len(self.prices) > 1 else self.prices[0]
        return PriceQuote(token=token, price=p)

    def get_native_price(self):
        return PriceQuote(token="native", price=2.0)


class _FakeExecutor:
    """Each queued item is raised (exception) or means success (None)."""

    def __init__(self, outcomes=None, on_call=None):
        self.outcomes = list(outcomes or [])
        self.on_call = on_call
        self.calls = []

    def execute_trade(self, client, dex, direction, amount, slippage_bps, wallet, token_address):
        self.calls.append({"dex": dex, "direction": direction, "amount": amount, "wallet": wallet.address})
        if self.on_call is not None:
            self.on_call()
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if outcome is not None:
                raise outcome
        return SwapReceipt(
            tx_hash="0x%064x" % len(self.calls),
            direction=direction,
            dex=dex,
            token=token_address,
            wallet=wallet.address,
            amount=amount,
            amount_in=1,
            expected_out=1,
            min_out=1,
        )


class _Clock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def _strategy(**kw):
    base = dict(
        type="sell",
        trading_mode="interval",
        interval=5,
        interval_unit="seconds",
        min_amount=1.0,
        max_amount=2.0,
        selected_token=TOKEN,
    )
    base.update(kw)
    return TradingStrategy(**base)


def _scheduler(*, prices=(1.0,), outcomes=None, failures=0, on_call=None, config=None, **kw):
    s = TradeScheduler(
        connections=_FakeConnections(failures),
        oracle=_FakeOracle(*prices),
        executor=_FakeExecutor(outcomes, on_call),
        config=config or SchedulerConfig(),
        rng=random.Random(42),
        clock=kw.pop("clock", _Clock()),
        **kw,
    )
    return s


# ---------------- start / stop ----------------

def test_start_requires_token_and_wallets():
    s = _scheduler()
    with pytest.raises(BotStateError):
        s.start(_strategy(selected_token=""), WALLETS)
    with pytest.raises(BotStateError):
        s.start(_strategy(), [])
    assert s.state == BotState.STOPPED


def test_start_twice_is_rejected():
    s = _scheduler()
    s.start(_strategy(), WALLETS)
    with pytest.raises(BotStateError):
        s.start(_strategy(), WALLETS)


def test_tick_when_stopped_does_nothing():
    s = _scheduler()
    assert s.tick().action == "SKIPPED_NOT_RUNNING"
    assert s.executor.calls == []


# ---------------- interval mode ----------------

def test_interval_mode_trades_every_tick():
    s = _scheduler(prices=(0.5,))
    s.start(_strategy(), WALLETS)

    r1 = s.tick()
    r2 = s.tick()

    assert [r1.action, r2.action] == ["TRADED", "TRADED"]
    assert s.run.execution_count == 2
    assert len(s.activity) == 2
    newest = s.activity.entries()[0]
    assert newest.tx_hash == "0x%064x" % 2
    assert newest.price == 0.5
    assert newest.token_symbol == "TOKEN"
    assert newest.wallet in {w.address for w in WALLETS}
    for call in s.executor.calls:
        assert 1.0 <= float(call["amount"]) <= 2.0


def test_random_amount_has_six_decimals():
    amount = random_amount(random.Random(1), 0.001, 0.01)
    whole, frac = amount.split(".")
    assert len(frac) == 6
    assert 0.001 <= float(amount) <= 0.01


def test_next_delay_follows_mode():
    s = _scheduler()
    s.start(_strategy(interval=2, interval_unit="minutes"), WALLETS)
    assert s.next_delay_seconds() == 120
    s.stop()
    s.start(_strategy(trading_mode="percentage"), WALLETS)
    assert s.next_delay_seconds() == 10


# ---------------- error budget ----------------

def test_faults_exactly_on_third_consecutive_error():
    err = TransactionFailed("Transaction failed")
    s = _scheduler(outcomes=[err, err, err])
    s.start(_strategy(), WALLETS)

    actions = [s.tick().action for _ in range(3)]

    assert actions == ["TRADE_FAILED", "TRADE_FAILED", "FAULTED"]
    assert s.state == BotState.FAULTED
    assert "3 consecutive errors" in s.fault_reason
    assert s.tick().action == "SKIPPED_NOT_RUNNING"


def test_success_resets_the_error_count():
    err = InsufficientLiquidity("no liquidity")
    s = _scheduler(outcomes=[err, err, None, err, err])
    s.start(_strategy(), WALLETS)

    actions = [s.tick().action for _ in range(5)]

    assert actions == ["TRADE_FAILED", "TRADE_FAILED", "TRADED", "TRADE_FAILED", "TRADE_FAILED"]
    assert s.state == BotState.RUNNING


def test_error_count_resets_after_quiet_window():
    err = TransactionFailed("Transaction failed")
    clock = _Clock()
    s = _scheduler(outcomes=[err, err, err], clock=clock)
    s.start(_strategy(), WALLETS)

    s.tick()
    s.tick()
    clock.now += 301
    r = s.tick()

    assert r.action == "TRADE_FAILED"
    assert s.run.error_count == 1
    assert s.state == BotState.RUNNING


def test_price_unavailable_skips_without_counting():
    s = _scheduler(prices=(None,))
    s.start(_strategy(), WALLETS)

    for _ in range(5):
        assert s.tick().action == "PRICE_UNAVAILABLE"
    assert s.run.error_count == 0
    assert s.state == BotState.RUNNING
    assert s.executor.calls == []


# ---------------- reconnect ----------------

def test_network_error_goes_to_reconnecting_without_counting():
    s = _scheduler(outcomes=[NetworkError("network request failed")])
    s.start(_strategy(), WALLETS)

    r = s.tick()

    assert r.action == "RECONNECTING"
    assert s.state == BotState.RECONNECTING
    assert s.run.error_count == 0
    assert s.connections.invalidated == 1
    assert s.next_delay_seconds() == 5

    assert s.tick().action == "RECONNECTED"
    assert s.state == BotState.RUNNING
    assert s.tick().action == "TRADED"


def test_lost_connection_at_tick_start_reconnects():
    s = _scheduler(failures=1)
    s.start(_strategy(), WALLETS)
    assert s.tick().action == "RECONNECTING"
    assert s.tick().action == "RECONNECTED"


def test_reconnect_attempts_exhausted_faults():
    s = _scheduler(failures=100, config=SchedulerConfig(max_reconnect_attempts=3))
    s.start(_strategy(), WALLETS)

    actions = [s.tick().action for _ in range(4)]

    assert actions == ["RECONNECTING", "RECONNECTING", "RECONNECTING", "FAULTED"]
    assert s.state == BotState.FAULTED
    assert "reconnection" in s.fault_reason


# ---------------- percentage mode ----------------

def test_first_percentage_tick_builds_ladder_without_trading():
    s = _scheduler(prices=(1.0, 1.005, 1.011))
    s.start(_strategy(trading_mode="percentage", percentage_threshold=1.0), WALLETS)

    r1 = s.tick()
    assert r1.action == "NO_TRIGGER"
    assert r1.details["ladder_initialized"] is True
    assert s.run.initial_price == 1.0

    assert s.tick().action == "NO_TRIGGER"

    r3 = s.tick()
    assert r3.action == "TRADED"
    assert r3.details["target_price"] == pytest.approx(1.01)
    assert s.targets()["next_target"] == pytest.approx(1.0201)
    assert len(s.executor.calls) == 1


def test_exhausted_ladder_faults_until_restart():
    s = _scheduler(prices=(1.0,) + (100.0,) * 20)
    s.start(_strategy(trading_mode="percentage", percentage_threshold=1.0), WALLETS)

    s.tick()  # builds the ladder
    for _ in range(15):
        assert s.tick().action == "TRADED"

    r = s.tick()
    assert r.action == "TARGETS_EXHAUSTED"
    assert "exhausted" in s.fault_reason
    assert s.run.error_count == 0
    assert s.state == BotState.FAULTED

    s.start(_strategy(trading_mode="percentage", percentage_threshold=1.0), WALLETS)
    assert s.state == BotState.RUNNING
    assert s.targets() is None


def test_stop_clears_ladder_and_restart_uses_new_price():
    s = _scheduler(prices=(1.0,))
    strategy = _strategy(trading_mode="percentage")
    s.start(strategy, WALLETS)
    s.tick()
    assert s.targets()["initial_price"] == 1.0

    s.stop()
    assert s.state == BotState.STOPPED
    assert s.targets() is None
    assert s.run.execution_count == 0

    s.oracle.prices = [2.0]
    s.start(strategy, WALLETS)
    s.tick()
    assert s.targets()["initial_price"] == 2.0


def test_strategy_change_while_running_resets_ladder():
    s = _scheduler(prices=(1.0,))
    s.start(_strategy(trading_mode="percentage", percentage_threshold=1.0), WALLETS)
    s.tick()

    assert s.update_strategy(_strategy(trading_mode="percentage", percentage_threshold=2.0)) is True
    assert s.targets() is None

    # amount-only changes keep the ladder
    s.tick()
    assert s.update_strategy(
        _strategy(trading_mode="percentage", percentage_threshold=2.0, max_amount=3.0)
    ) is False
    assert s.targets() is not None


# ---------------- cancellation / persistence ----------------

def test_stop_during_inflight_trade_discards_bookkeeping():
    holder = {}
    s = _scheduler(on_call=lambda: holder["s"].stop())
    holder["s"] = s
    s.start(_strategy(), WALLETS)

    r = s.tick()

    assert r.action == "DISCARDED"
    assert s.state == BotState.STOPPED
    assert len(s.activity) == 0
    assert s.run.execution_count == 0


def test_successful_trade_updates_stats_and_execution_state(tmp_path):
    store = StateStore(DB(str(tmp_path / "bot.db")))
    s = _scheduler(prices=(0.5,), state_store=store)
    s.start(_strategy(), WALLETS)

    r = s.tick()

    stats = store.load_stats()
    assert stats["total_tx"] == 1
    assert stats["total_sells"] == 1
    assert stats["total_volume"] == pytest.approx(float(r.details["amount"]) * 0.5)
    assert store.load_execution_state()["execution_count"] == 1


def test_buy_volume_is_valued_at_native_price(tmp_path):
    store = StateStore(DB(str(tmp_path / "bot.db")))
    s = _scheduler(prices=(0.5,), state_store=store)
    s.start(_strategy(type="buy"), WALLETS)

    r = s.tick()

    assert r.details["volume_usd"] == pytest.approx(float(r.details["amount"]) * 2.0)
    assert store.load_stats()["total_buys"] == 1


def test_invalid_price_error_skips_without_counting():
    s = _scheduler(outcomes=[InvalidPrice("Invalid token price received")])
    s.start(_strategy(), WALLETS)

    assert s.tick().action == "PRICE_UNAVAILABLE"
    assert s.run.error_count == 0


def test_stop_while_reconnecting_clears_attempts():
    s = _scheduler(failures=100)
    s.start(_strategy(trading_mode="percentage"), WALLETS)
    s.tick()
    s.tick()
    assert s.state == BotState.RECONNECTING
    assert s.run.reconnect_attempts == 1

    s.stop()
    assert s.state == BotState.STOPPED
    assert s.run.reconnect_attempts == 0
    assert s.targets() is None


class _StallingConnections(_FakeConnections):
    """First call fails; the next one (the reconnect sweep) blocks until released."""

    def __init__(self):
        super().__init__(failures=1)
        self.entered = threading.Event()
        self.release = threading.Event()

    def get_connection(self):
        if self.calls >= 1:
            self.entered.set()
            self.release.wait(5)
        return super().get_connection()


def test_stop_does_not_wait_for_a_reconnect_sweep():
    s = _scheduler()
    s.connections = _StallingConnections()
    s.start(_strategy(), WALLETS)
    assert s.tick().action == "RECONNECTING"

    result = {}
    worker = threading.Thread(target=lambda: result.setdefault("tick", s.tick()))
    worker.start()
    assert s.connections.entered.wait(2)

    began = time.monotonic()
    s.stop()
    status = s.status()
    elapsed = time.monotonic() - began

    s.connections.release.set()
    worker.join(2)

    assert elapsed < 0.5
    assert status["state"] == "STOPPED"
    assert result["tick"].action == "DISCARDED"
    assert s.state == BotState.STOPPED
    assert s.run.reconnect_attempts == 0


def test_restart_after_crash_restores_counters_but_not_ladder(tmp_path):
    store = StateStore(DB(str(tmp_path / "bot.db")))
    first = _scheduler(prices=(1.0,), state_store=store)
    first.start(_strategy(), WALLETS)
    assert first.tick().action == "TRADED"
    last_run = first.run.last_execution_time
    first.fault("Unexpected error in trading loop")

    second = _scheduler(prices=(1.0,), state_store=store)
    second.start(_strategy(trading_mode="percentage"), WALLETS)

    assert second.run.execution_count == 1
    assert second.run.last_execution_time == last_run
    assert second.targets() is None

    # an explicit stop clears the saved state
    second.stop()
    second.start(_strategy(), WALLETS)
    assert second.run.execution_count == 0
