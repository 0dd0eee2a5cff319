from __future__ import annotations

import logging
from typing import Dict, List, Optional

from web3 import Web3
from web3.exceptions import TransactionNotFound

from smoothswap.core.constants import ERC20_ABI, NATIVE_DECIMALS, ROUTER_ABI

log = logging.getLogger("smoothswap.chain")


def make_web3(rpc_url: str, timeout_s: float = 10.0) -> Web3:
    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout_s}))


class EvmChainClient:
    """
    Thin wrapper over one web3 HTTP connection.

    Everything the swap pipeline needs from the chain goes through here, so the
    executor and scheduler can be exercised against a fake client.
    """

    def __init__(self, w3: Web3, rpc_url: str = ""):
        self.w3 = w3
        self.rpc_url = rpc_url
        self._decimals_cache: Dict[str, int] = {}

    # ---------------- LIVENESS ----------------

    def ping(self) -> bool:
        try:
            return bool(self.w3.is_connected())
        except Exception as e:
            log.debug("ping failed for %s: %s", self.rpc_url, e)
            return False

    def chain_id(self) -> int:
        return int(self.w3.eth.chain_id)

    # ---------------- ADDRESSES ----------------

    @staticmethod
    def is_address(value: str) -> bool:
        return bool(value) and Web3.is_address(value)

    @staticmethod
    def checksum(value: str) -> str:
        return Web3.to_checksum_address(value)

    # ---------------- READS ----------------

    def _token(self, token: str):
        return self.w3.eth.contract(address=self.checksum(token), abi=ERC20_ABI)

    def _router(self, router: str):
        return self.w3.eth.contract(address=self.checksum(router), abi=ROUTER_ABI)

    def get_amounts_out(self, router: str, amount_in: int, path: List[str]) -> List[int]:
        amounts = self._router(router).functions.getAmountsOut(
            int(amount_in), [self.checksum(p) for p in path]
        ).call()
        return [int(a) for a in amounts]

    def allowance(self, token: str, owner: str, spender: str) -> int:
        return int(
            self._token(token)
            .functions.allowance(self.checksum(owner), self.checksum(spender))
            .call()
        )

    def decimals(self, token: str) -> int:
        key = token.lower()
        if key not in self._decimals_cache:
            self._decimals_cache[key] = int(self._token(token).functions.decimals().call())
        return self._decimals_cache[key]

    def balance_of(self, token: str, owner: str) -> int:
        return int(self._token(token).functions.balanceOf(self.checksum(owner)).call())

    def native_balance(self, owner: str) -> int:
        return int(self.w3.eth.get_balance(self.checksum(owner)))

    def native_decimals(self) -> int:
        return NATIVE_DECIMALS

    def gas_price(self) -> int:
        return int(self.w3.eth.gas_price)

    def pending_nonce(self, address: str) -> int:
        return int(self.w3.eth.get_transaction_count(self.checksum(address), "pending"))

    # ---------------- TX BUILDING ----------------

    def approve_call(self, token: str, spender: str, amount: int) -> Dict:
        data = self._token(token).encode_abi("approve", args=[self.checksum(spender), int(amount)])
        return {"to": self.checksum(token), "data": data, "value": 0}

    def swap_native_for_tokens_call(
        self, router: str, amount_in: int, min_out: int, path: List[str], to: str, deadline: int
    ) -> Dict:
        data = self._router(router).encode_abi(
            "swapExactETHForTokens",
            args=[int(min_out), [self.checksum(p) for p in path], self.checksum(to), int(deadline)],
        )
        return {"to": self.checksum(router), "data": data, "value": int(amount_in)}

    def swap_tokens_for_native_call(
        self, router: str, amount_in: int, min_out: int, path: List[str], to: str, deadline: int
    ) -> Dict:
        data = self._router(router).encode_abi(
            "swapExactTokensForETH",
            args=[
                int(amount_in),
                int(min_out),
                [self.checksum(p) for p in path],
                self.checksum(to),
                int(deadline),
            ],
        )
        return {"to": self.checksum(router), "data": data, "value": 0}

    def estimate_gas(self, tx: Dict) -> int:
        return int(self.w3.eth.estimate_gas(tx))

    # ---------------- SEND ----------------

    def send_signed(self, tx: Dict, private_key: str) -> str:
        signed = self.w3.eth.account.sign_transaction(tx, private_key)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(tx_hash)

    def get_receipt(self, tx_hash: str) -> Optional[Dict]:
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return dict(receipt) if receipt is not None else None
