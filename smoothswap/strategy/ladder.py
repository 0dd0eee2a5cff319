# smoothswap/strategy/ladder.py
from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from smoothswap.core.constants import (
    LADDER_RESERVE,
    LADDER_VISIBLE,
    TRADE_TYPE_BUY,
    TRADE_TYPE_SELL,
)


@dataclass
class PriceTarget:
    price: float
    executed: bool
    id: str


def build_targets(
    start_price: float,
    direction: str,
    percentage: float,
    count: int,
    id_prefix: Optional[str] = None,
) -> List[PriceTarget]:
    """
    Compound `percentage` onto `start_price` `count` times.
    buy  -> each rung pct% below the previous (buy the dip)
    sell -> each rung pct% above the previous (sell the rally)
    """
    if start_price <= 0:
        raise ValueError("start_price must be > 0")
    if not (0 < percentage <= 100):
        raise ValueError("percentage must be in (0, 100]")
    if direction not in (TRADE_TYPE_BUY, TRADE_TYPE_SELL):
        raise ValueError(f"unsupported direction: {direction}")

    prefix = id_prefix or f"target-{int(time.time() * 1000)}"
    step = percentage / 100.0
    targets: List[PriceTarget] = []
    price = float(start_price)
    for i in range(count):
        if direction == TRADE_TYPE_BUY:
            price = price * (1 - step)
        else:
            price = price * (1 + step)
        targets.append(PriceTarget(price=price, executed=False, id=f"{prefix}-{i}"))
    return targets


class PriceLadder:
    """
    Percentage-mode trigger schedule.

    15 rungs are computed up front from the start price: the first 5 are the
    visible watch set, the other 10 are reserve. When a visible rung fires it
    leaves the visible set and exactly one reserve rung is appended to its
    tail, so the visible set holds 5 until reserve runs dry. At most one rung
    fires per check.
    """

    def __init__(
        self,
        initial_price: float,
        direction: str,
        percentage: float,
        visible: List[PriceTarget],
        reserve: List[PriceTarget],
        executed: Optional[List[PriceTarget]] = None,
    ):
        self.initial_price = float(initial_price)
        self.direction = direction
        self.percentage = float(percentage)
        self.visible = list(visible)
        self.reserve = list(reserve)
        self.executed = list(executed or [])

    @classmethod
    def initialize(
        cls,
        current_price: float,
        direction: str,
        percentage: float,
        *,
        visible_count: int = LADDER_VISIBLE,
        reserve_count: int = LADDER_RESERVE,
        id_prefix: Optional[str] = None,
    ) -> "PriceLadder":
        targets = build_targets(
            current_price,
            direction,
            percentage,
            visible_count + reserve_count,
            id_prefix=id_prefix,
        )
        return cls(
            initial_price=current_price,
            direction=direction,
            percentage=percentage,
            visible=targets[:visible_count],
            reserve=targets[visible_count:],
        )

    # ---------------- CHECK ----------------

    def _triggered(self, current_price: float, target: PriceTarget) -> bool:
        if self.direction == TRADE_TYPE_BUY:
            return current_price <= target.price
        return current_price >= target.price

    def check_and_advance(self, current_price: float) -> Optional[PriceTarget]:
        """
        Scan the visible set in order; the first unexecuted rung whose condition
        holds is marked executed, moved to history and replaced from reserve.
        Returns the fired rung, or None.
        """
        if current_price <= 0:
            return None

        for i, target in enumerate(self.visible):
            if target.executed:
                continue
            if not self._triggered(current_price, target):
                continue

            target.executed = True
            self.visible.pop(i)
            self.executed.append(target)
            if self.reserve:
                self.visible.append(self.reserve.pop(0))
            return target

        return None

    # ---------------- STATE ----------------

    @property
    def exhausted(self) -> bool:
        return self.next_target() is None and not self.reserve

    def next_target(self) -> Optional[PriceTarget]:
        for t in self.visible:
            if not t.executed:
                return t
        return None

    def all_targets(self) -> List[PriceTarget]:
        return self.executed + self.visible + self.reserve

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initial_price": self.initial_price,
            "direction": self.direction,
            "percentage": self.percentage,
            "visible": [asdict(t) for t in self.visible],
            "reserve": [asdict(t) for t in self.reserve],
            "executed": [asdict(t) for t in self.executed],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PriceLadder":
        def _targets(rows) -> List[PriceTarget]:
            return [
                PriceTarget(
                    price=float(r["price"]),
                    executed=bool(r.get("executed", False)),
                    id=str(r.get("id", "")),
                )
                for r in (rows or [])
            ]

        return cls(
            initial_price=float(d["initial_price"]),
            direction=str(d["direction"]),
            percentage=float(d["percentage"]),
            visible=_targets(d.get("visible")),
            reserve=_targets(d.get("reserve")),
            executed=_targets(d.get("executed")),
        )

    @classmethod
    def from_json(cls, s: str) -> "PriceLadder":
        return cls.from_dict(json.loads(s))
