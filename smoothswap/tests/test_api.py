import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

from smoothswap.core.errors import NoConnection
from smoothswap.execution.executor import SwapReceipt
from smoothswap.main import create_app
from smoothswap.ops.service import BotService
from smoothswap.persistence.audit import Audit
from smoothswap.persistence.config_store import ConfigStore
from smoothswap.persistence.db import DB
from smoothswap.persistence.state_store import StateStore
from smoothswap.pricing.oracle import PriceQuote
from smoothswap.runner.scheduler import TradeScheduler
from smoothswap.strategy.models import TradingStrategy, Wallet

TOKEN = "0x892ccdd2624ef09ca5814661c566316253353820"
CUSTOM_TOKEN = "0x1111111111111111111111111111111111111111"
PK = "0x" + "11" * 32


class _FakeConnections:
    current_url = "https://rpc.example"

    def __init__(self):
        self.down = False

    def get_connection(self):
        if self.down:
            raise NoConnection("all rpc endpoints down")
        return "client"

    def invalidate(self):
        pass


class _FakeOracle:
    def get_price(self, token):
        return PriceQuote(token=token, price=0.25, source="fake")

    def get_native_price(self):
        return PriceQuote(token="native", price=1.0, source="fake")


class _FakeExecutor:
    def execute_trade(self, client, dex, direction, amount, slippage_bps, wallet, token_address):
        return SwapReceipt(
            tx_hash="0x" + "ab" * 32,
            direction=direction,
            dex=dex,
            token=token_address,
            wallet=wallet.address,
            amount=amount,
            amount_in=1,
            expected_out=1,
            min_out=1,
        )


@pytest.fixture
def api(tmp_path):
    db = DB(str(tmp_path / "bot.db"))
    audit = Audit(db, str(tmp_path / "audit.jsonl"))
    state_store = StateStore(db)
    config_store = ConfigStore(
        db,
        encryption_key=Fernet.generate_key().decode(),
        default_strategy=TradingStrategy(selected_token=TOKEN),
    )
    connections = _FakeConnections()
    oracle = _FakeOracle()
    scheduler = TradeScheduler(
        connections=connections,
        oracle=oracle,
        executor=_FakeExecutor(),
        audit=audit,
        state_store=state_store,
        symbol_for=config_store.symbol_for,
    )
    service = BotService(
        scheduler=scheduler,
        config_store=config_store,
        state_store=state_store,
        audit=audit,
        oracle=oracle,
        connections=connections,
    )
    with TestClient(create_app(service)) as client:
        yield client, service


def test_health_and_idle_views(api):
    client, _ = api
    assert client.get("/health").json() == {"status": "ok", "state": "STOPPED"}
    assert client.get("/bot/status").json()["state"] == "STOPPED"
    assert client.get("/bot/targets").json() == {"targets": None}
    assert client.get("/activity").json() == {"activity": []}
    assert client.get("/stats").json()["total_tx"] == 0


def test_start_without_wallets_is_conflict(api):
    client, _ = api
    r = client.post("/bot/start")
    assert r.status_code == 409
    assert "wallets" in r.json()["detail"].lower()


def test_wallet_crud(api):
    client, _ = api
    address = Wallet.from_private_key(PK).address

    r = client.post("/wallets", json={"private_key": PK})
    assert r.status_code == 201
    assert r.json() == {"address": address}
    assert client.get("/wallets").json() == {"wallets": [address]}

    assert client.post("/wallets", json={"private_key": PK}).status_code == 422
    assert client.post("/wallets", json={"private_key": "nope"}).status_code == 422

    assert client.delete(f"/wallets/{address}").status_code == 200
    assert client.delete(f"/wallets/{address}").status_code == 404


def test_start_stop_and_wallet_removal_guard(api):
    client, _ = api
    address = client.post("/wallets", json={"private_key": PK}).json()["address"]

    r = client.post("/bot/start")
    assert r.status_code == 200
    assert r.json()["status"] == "started"
    assert r.json()["run_id"]

    # wallets are locked while the bot runs
    assert client.delete(f"/wallets/{address}").status_code == 409

    r = client.post("/bot/stop")
    assert r.json()["status"] == "stopped"
    assert r.json()["state"] == "STOPPED"

    assert client.post("/bot/stop").json()["status"] == "not_running"
    assert client.delete(f"/wallets/{address}").status_code == 200


def test_strategy_update_and_validation(api):
    client, _ = api
    assert client.get("/strategy").json()["selected_token"] == TOKEN

    r = client.put("/strategy", json={"slippage_bps": 50, "type": "sell"})
    assert r.status_code == 200
    assert r.json()["strategy"]["slippage_bps"] == 50
    assert r.json()["ladder_reset"] is False
    assert client.get("/strategy").json()["type"] == "sell"

    assert client.put("/strategy", json={"slippage_bps": 1000}).status_code == 422
    assert client.put("/strategy", json={"min_amount": 5, "max_amount": 1}).status_code == 422


def test_token_registry(api):
    client, _ = api
    r = client.post("/tokens", json={"address": CUSTOM_TOKEN, "symbol": "CUST", "decimals": 6})
    assert r.status_code == 201
    assert r.json()["symbol"] == "CUST"

    tokens = client.get("/tokens").json()["tokens"]
    assert [t["symbol"] for t in tokens] == ["CUST"]

    assert client.post("/tokens", json={"address": "0xnope", "symbol": "X"}).status_code == 422
    assert client.delete(f"/tokens/{CUSTOM_TOKEN}").status_code == 200
    assert client.delete(f"/tokens/{CUSTOM_TOKEN}").status_code == 404


def test_price_lookup(api):
    client, _ = api
    body = client.get(f"/price/{TOKEN}").json()
    assert body["price"] == 0.25
    assert body["fallback"] is False


def test_balance_without_rpc_is_service_unavailable(api):
    client, service = api
    service.connections.down = True
    r = client.get(f"/wallets/{Wallet.from_private_key(PK).address}/balance")
    assert r.status_code == 503


def test_audit_tail_lists_newest_events_first(api):
    client, _ = api
    address = client.post("/wallets", json={"private_key": PK}).json()["address"]
    client.delete(f"/wallets/{address}")

    events = client.get("/audit/tail", params={"limit": 2}).json()["events"]

    assert [e["action"] for e in events] == ["WALLET_REMOVED", "WALLET_ADDED"]
    assert events[0]["event_type"] == "CONFIG"
    assert events[0]["details"] == {"address": address}
    assert client.get("/audit/tail", params={"limit": 0}).status_code == 422
