from __future__ import annotations

import requests


class SwapBotError(Exception):
    pass


class NoConnection(SwapBotError):
    """Every RPC endpoint failed every attempt. Transient."""


class NetworkError(SwapBotError):
    pass


class InvalidPrice(SwapBotError):
    """Oracle had no usable (positive) price. Tick is skipped."""


class InvalidAddress(SwapBotError):
    pass


class InsufficientLiquidity(SwapBotError):
    pass


class ApprovalFailed(SwapBotError):
    pass


class TransactionFailed(SwapBotError):
    def __init__(self, message: str, tx_hash: str | None = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class TargetsExhausted(SwapBotError):
    pass


class BotStateError(SwapBotError):
    """Operation not allowed in the current bot state (start twice, remove wallet while running...)."""


NETWORK_MARKERS = ("network", "connection", "failed to fetch")


def is_network_error(exc: BaseException) -> bool:
    """
    Network-classified failures route the scheduler to Reconnecting
    instead of the consecutive-error budget.
    """
    if isinstance(exc, (NoConnection, NetworkError)):
        return True
    if isinstance(exc, (requests.ConnectionError, requests.Timeout, ConnectionError, TimeoutError)):
        return True
    msg = str(exc).lower()
    return any(m in msg for m in NETWORK_MARKERS)
