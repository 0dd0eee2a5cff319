from __future__ import annotations

import time
from typing import Callable, Dict, Optional


def wait_for_receipt(
    client,
    tx_hash: str,
    timeout_s: float = 120.0,
    poll_s: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.time,
) -> Optional[Dict]:
    """
    Poll until the transaction is mined. Returns the receipt, or None on timeout.
    A broadcast transaction cannot be recalled; None only means we stopped waiting.
    """
    deadline = clock() + timeout_s

    while True:
        receipt = client.get_receipt(tx_hash)
        if receipt is not None:
            return receipt
        if clock() >= deadline:
            return None
        sleep(poll_s)


def receipt_ok(receipt: Optional[Dict]) -> bool:
    if not receipt:
        return False
    return int(receipt.get("status", 0) or 0) == 1
