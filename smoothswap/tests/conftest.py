import pytest


@pytest.fixture(autouse=True)
def _test_env(monkeypatch, tmp_path):
    """
    Keep tests off real RPCs, real price APIs and the working-directory DB.
    """
    monkeypatch.setenv("RPC_URLS", "http://127.0.0.1:1")
    monkeypatch.setenv("PRICE_API_ENDPOINTS", "http://127.0.0.1:1/api/v2")
    monkeypatch.setenv("NATIVE_PRICE_ENDPOINTS", "http://127.0.0.1:1/price")
    monkeypatch.setenv("DB_PATH", str(tmp_path / "bot.db"))
    monkeypatch.setenv("AUDIT_JSONL_PATH", str(tmp_path / "audit.jsonl"))
    monkeypatch.setenv("WALLET_ENCRYPTION_KEY", "")
    yield
