import logging
from typing import Optional

from fastapi import Body, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from smoothswap.core.config import Settings, settings
from smoothswap.core.errors import BotStateError, NoConnection
from smoothswap.core.log_setup import configure_logging
from smoothswap.ops.service import BotService
from smoothswap.persistence.config_store import CustomToken

log = logging.getLogger("smoothswap.api")


class StrategyUpdate(BaseModel):
    type: Optional[str] = None
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    slippage_bps: Optional[int] = None
    trading_mode: Optional[str] = None
    interval: Optional[int] = None
    interval_unit: Optional[str] = None
    percentage_threshold: Optional[float] = None
    selected_dex: Optional[str] = None
    selected_token: Optional[str] = None


class WalletCreate(BaseModel):
    private_key: str


class TokenCreate(BaseModel):
    address: str
    symbol: str
    name: str = ""
    decimals: int = Field(default=18, ge=0, le=36)
    dex: str = "falcoxswap"


def create_app(service: BotService, config: Optional[Settings] = None) -> FastAPI:
    app = FastAPI(title="SmoothSwap Bot")
    app.state.service = service

    @app.on_event("startup")
    async def _startup_validate_config():
        """Fail-fast config validation at startup."""
        if config is None:
            return
        for w in config.validate_runtime():
            log.warning("[CONFIG WARNING] %s", w)

    @app.on_event("shutdown")
    async def _shutdown():
        await service.shutdown()

    @app.exception_handler(BotStateError)
    async def _bot_state_error(_request: Request, exc: BotStateError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(NoConnection)
    async def _no_connection(_request: Request, exc: NoConnection):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def _value_error(_request: Request, exc: ValueError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.get("/health")
    def health():
        return {"status": "ok", "state": service.scheduler.state.value}

    # ---------------- BOT ----------------

    @app.get("/bot/status")
    def bot_status():
        return service.status()

    @app.post("/bot/start")
    async def bot_start():
        return await service.start()

    @app.post("/bot/stop")
    async def bot_stop():
        return await service.stop()

    @app.get("/bot/targets")
    def bot_targets():
        return {"targets": service.scheduler.targets()}

    @app.get("/activity")
    def activity(limit: int = Query(default=50, ge=1, le=500)):
        return {"activity": service.activity(limit)}

    @app.get("/stats")
    def stats():
        return service.stats()

    @app.get("/audit/tail")
    def audit_tail(limit: int = Query(default=50, ge=1, le=500)):
        return {"events": service.audit.tail(limit)}

    # ---------------- STRATEGY ----------------

    @app.get("/strategy")
    def get_strategy():
        return service.get_strategy().to_dict()

    @app.put("/strategy")
    def put_strategy(update: StrategyUpdate = Body(...)):
        return service.update_strategy(update.model_dump(exclude_none=True))

    # ---------------- WALLETS ----------------

    @app.get("/wallets")
    def list_wallets():
        return {"wallets": service.list_wallets()}

    @app.post("/wallets", status_code=201)
    def add_wallet(body: WalletCreate):
        return service.add_wallet(body.private_key)

    @app.delete("/wallets/{address}")
    def remove_wallet(address: str):
        if not service.remove_wallet(address):
            raise HTTPException(status_code=404, detail="wallet not found")
        return {"removed": address}

    @app.get("/wallets/{address}/balance")
    def wallet_balance(address: str):
        return service.wallet_balance(address)

    # ---------------- TOKENS / PRICES ----------------

    @app.get("/tokens")
    def list_tokens():
        return {"tokens": [t.__dict__ for t in service.list_tokens()]}

    @app.post("/tokens", status_code=201)
    def add_token(body: TokenCreate):
        token = service.add_token(CustomToken(**body.model_dump()))
        return token.__dict__

    @app.delete("/tokens/{address}")
    def remove_token(address: str):
        if not service.remove_token(address):
            raise HTTPException(status_code=404, detail="token not found")
        return {"removed": address}

    @app.get("/price/{token}")
    def price(token: str):
        return service.price(token)

    return app


def build_app() -> FastAPI:
    """uvicorn smoothswap.main:build_app --factory"""
    configure_logging(settings.LOG_LEVEL)
    # Fail-closed: refuse to start with a dangerous config
    settings.validate_runtime()
    return create_app(BotService.from_settings(settings), config=settings)
