from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from typing import Any, Callable, Dict, List, Optional

from smoothswap.chain.nonce import NonceTracker
from smoothswap.core.constants import NATIVE_DECIMALS, TRADE_TYPE_BUY, TRADE_TYPE_SELL
from smoothswap.core.errors import (
    ApprovalFailed,
    InsufficientLiquidity,
    InvalidAddress,
    NetworkError,
    TransactionFailed,
    is_network_error,
)
from smoothswap.execution.confirm import receipt_ok, wait_for_receipt
from smoothswap.strategy.models import Wallet

log = logging.getLogger("smoothswap.executor")


# =========================
# Amount helpers
# =========================
def to_base_units(amount: Any, decimals: int) -> int:
    """Human amount ("0.0123") -> integer smallest units, rounded down."""
    d = Decimal(str(amount))
    if d <= 0:
        raise ValueError(f"amount must be > 0, got {amount}")
    scaled = (d * (Decimal(10) ** int(decimals))).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


def format_token_amount(amount: int, decimals: int) -> str:
    """Integer smallest units -> trimmed decimal string (no float rounding)."""
    amount = int(amount)
    sign = "-" if amount < 0 else ""
    amount = abs(amount)
    divisor = 10 ** int(decimals)
    whole, frac = divmod(amount, divisor)
    if decimals == 0 or frac == 0:
        return f"{sign}{whole}"
    frac_s = str(frac).rjust(int(decimals), "0").rstrip("0")
    return f"{sign}{whole}.{frac_s}"


def min_amount_out(expected_out: int, slippage_bps: int) -> int:
    """Slippage floor: expected * (1000 - slippage_bps) / 1000, integer math."""
    bps = int(slippage_bps)
    if not (0 <= bps < 1000):
        raise ValueError("slippage_bps must be in [0, 1000)")
    return int(expected_out) * (1000 - bps) // 1000


def build_path(direction: str, wrapped_native: str, token: str) -> List[str]:
    if direction == TRADE_TYPE_BUY:
        return [wrapped_native, token]
    if direction == TRADE_TYPE_SELL:
        return [token, wrapped_native]
    raise ValueError(f"unsupported direction: {direction}")


# =========================
# Result
# =========================
@dataclass
class SwapReceipt:
    tx_hash: str
    direction: str
    dex: str
    token: str
    wallet: str
    amount: str
    amount_in: int
    expected_out: int
    min_out: int
    gas_used: Optional[int] = None
    block_number: Optional[int] = None
    approval_tx_hash: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


# =========================
# Swap Executor
# =========================
class SwapExecutor:
    """
    quote -> slippage floor -> approve (sell) -> sign -> broadcast -> confirm,
    against one router. Raises the error taxonomy in core.errors; never retries.
    """

    def __init__(
        self,
        *,
        wrapped_native: str,
        routers: Dict[str, str],
        chain_id: int,
        nonces: Optional[NonceTracker] = None,
        gas_price_multiplier: float = 1.5,
        gas_limit_multiplier: float = 1.2,
        deadline_s: int = 300,
        receipt_timeout_s: float = 120.0,
        receipt_poll_s: float = 1.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        audit=None,
    ):
        self.wrapped_native = wrapped_native
        self.routers = {k.lower(): v for k, v in routers.items()}
        self.chain_id = int(chain_id)
        self.nonces = nonces or NonceTracker()
        self.gas_price_multiplier = float(gas_price_multiplier)
        self.gas_limit_multiplier = float(gas_limit_multiplier)
        self.deadline_s = int(deadline_s)
        self.receipt_timeout_s = float(receipt_timeout_s)
        self.receipt_poll_s = float(receipt_poll_s)
        self.clock = clock
        self.sleep = sleep
        self.audit = audit

    # ---------------- INTERNAL HELPERS ----------------

    def _audit(self, event_type: str, action: str, details: dict) -> None:
        if self.audit is None:
            return
        try:
            self.audit.event(event_type=event_type, action=action, details=details)
        except Exception as e:
            log.warning("audit write failed: %s", e)

    def _router_address(self, client, dex: str) -> str:
        router = self.routers.get((dex or "").lower())
        if not router or not client.is_address(router):
            raise InvalidAddress(f"Invalid router address for dex '{dex}'")
        return router

    def _buffered_gas_price(self, client) -> int:
        # integer percent math keeps wei exact
        return client.gas_price() * int(round(self.gas_price_multiplier * 100)) // 100

    def _gas_limit(self, estimated: int) -> int:
        return int(estimated * self.gas_limit_multiplier)

    def _quote(self, client, router: str, amount_in: int, path: List[str]) -> int:
        try:
            amounts = client.get_amounts_out(router, amount_in, path)
        except Exception as e:
            if is_network_error(e):
                raise NetworkError(f"Quote failed (network): {e}") from e
            raise InsufficientLiquidity(
                f"Failed to get amounts out: {e}. The token might not have enough liquidity."
            ) from e
        if not amounts or len(amounts) < 2 or int(amounts[-1]) <= 0:
            raise InsufficientLiquidity("Insufficient liquidity for this trade")
        return int(amounts[-1])

    def _send(self, client, wallet: Wallet, call: Dict, gas_price: int, what: str) -> str:
        """
        Estimate, take a nonce, sign and broadcast. The nonce is taken only once
        the transaction is known to be buildable; a failed broadcast drops the
        wallet's cached nonce so the next call re-reads the chain.
        """
        tx = {
            "from": client.checksum(wallet.address),
            "to": call["to"],
            "data": call["data"],
            "value": int(call.get("value", 0)),
            "gasPrice": int(gas_price),
            "chainId": self.chain_id,
        }
        try:
            estimated = client.estimate_gas(tx)
        except Exception as e:
            if is_network_error(e):
                raise
            raise TransactionFailed(
                f"Gas estimation failed for {what}: {e}. The transaction might fail."
            ) from e
        tx["gas"] = self._gas_limit(estimated)

        tx["nonce"] = self.nonces.next_nonce(wallet.address, client.pending_nonce)
        try:
            return client.send_signed(tx, wallet.private_key)
        except Exception:
            self.nonces.reset(wallet.address)
            raise

    def _confirm(self, client, tx_hash: str) -> Dict:
        receipt = wait_for_receipt(
            client,
            tx_hash,
            timeout_s=self.receipt_timeout_s,
            poll_s=self.receipt_poll_s,
            sleep=self.sleep,
            clock=self.clock,
        )
        if receipt is None:
            raise TransactionFailed(
                f"No receipt for {tx_hash} after {self.receipt_timeout_s:.0f}s", tx_hash
            )
        return receipt

    # ---------------- APPROVAL ----------------

    def ensure_allowance(
        self, client, token: str, router: str, amount_in: int, wallet: Wallet
    ) -> Optional[str]:
        """Approve `amount_in` for the router if needed. Returns the approval tx hash or None."""
        try:
            current = client.allowance(token, wallet.address, router)
        except Exception as e:
            if is_network_error(e):
                raise
            raise ApprovalFailed(f"Approval failed: could not read allowance: {e}") from e

        if current >= amount_in:
            log.debug("allowance %s >= %s, no approval needed", current, amount_in)
            return None

        log.info("approving %s of %s for router %s", amount_in, token, router)
        try:
            gas_price = self._buffered_gas_price(client)
            call = client.approve_call(token, router, amount_in)
            tx_hash = self._send(client, wallet, call, gas_price, "approval")
            receipt = self._confirm(client, tx_hash)
        except Exception as e:
            if is_network_error(e):
                raise
            raise ApprovalFailed(f"Approval failed: {e}") from e

        if not receipt_ok(receipt):
            raise ApprovalFailed(f"Approval transaction failed: {tx_hash}")

        new_allowance = client.allowance(token, wallet.address, router)
        if new_allowance < amount_in:
            raise ApprovalFailed("Approval verification failed")

        self._audit("TRADE", "APPROVED", {"token": token, "router": router, "tx_hash": tx_hash})
        return tx_hash

    # ---------------- EXECUTION ----------------

    def execute_trade(
        self,
        client,
        dex: str,
        direction: str,
        amount: Any,
        slippage_bps: int,
        wallet: Wallet,
        token_address: str,
    ) -> SwapReceipt:
        direction = (direction or "").lower()

        # 1) addresses
        if not client.is_address(token_address):
            raise InvalidAddress("Invalid token address")
        router = self._router_address(client, dex)

        # 2) path
        path = build_path(direction, self.wrapped_native, token_address)

        decimals = NATIVE_DECIMALS if direction == TRADE_TYPE_BUY else client.decimals(token_address)
        amount_in = to_base_units(amount, decimals)

        # 3) liquidity probe
        self._quote(client, router, amount_in, path)

        # 4) approval (sell only)
        approval_tx = None
        if direction == TRADE_TYPE_SELL:
            approval_tx = self.ensure_allowance(client, token_address, router, amount_in, wallet)

        # 5) re-quote + slippage floor
        expected_out = self._quote(client, router, amount_in, path)
        min_out = min_amount_out(expected_out, slippage_bps)

        # 6) build swap
        deadline = int(self.clock()) + self.deadline_s
        if direction == TRADE_TYPE_BUY:
            call = client.swap_native_for_tokens_call(
                router, amount_in, min_out, path, wallet.address, deadline
            )
        else:
            call = client.swap_tokens_for_native_call(
                router, amount_in, min_out, path, wallet.address, deadline
            )
        gas_price = self._buffered_gas_price(client)

        # 7) sign + broadcast + confirm
        log.info(
            "executing %s of %s on %s: amount_in=%s expected_out=%s min_out=%s",
            direction, token_address, dex, amount_in, expected_out, min_out,
        )
        tx_hash = self._send(client, wallet, call, gas_price, "swap")
        receipt = self._confirm(client, tx_hash)

        # 8) status
        if not receipt_ok(receipt):
            raise TransactionFailed("Transaction failed", tx_hash)

        return SwapReceipt(
            tx_hash=tx_hash,
            direction=direction,
            dex=dex,
            token=token_address,
            wallet=wallet.address,
            amount=str(amount),
            amount_in=amount_in,
            expected_out=expected_out,
            min_out=min_out,
            gas_used=receipt.get("gasUsed"),
            block_number=receipt.get("blockNumber"),
            approval_tx_hash=approval_tx,
            details={"gas_price": gas_price, "deadline": deadline, "path": path},
        )
