"""Paper trading venue with persistent local balances."""

from __future__ import annotations

import itertools
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from oracle_trader.exec.venue import VenueAPIError
from oracle_trader.types import BalanceInfo, Side
from oracle_trader.utils.logging import get_logger


@dataclass(slots=True)
class _RestingOrder:
    order_id: str
    instrument_id: str
    side: Side
    price: float
    size: float
    fill_on_rise: bool


class PaperVenue:
    """Simulated venue for one account.

    BUY orders fill immediately at their limit price. SELL orders rest and
    fill once an observed market price touches them: orders placed above the
    market price at placement fill on a rise, the rest fill on a drop.
    """

    def __init__(
        self,
        journal_dir: Path | None = None,
        *,
        initial_balance: float = 1_000.0,
        initial_gas: float = 1.0,
    ) -> None:
        self._state_file = journal_dir / "paper_state.json" if journal_dir is not None else None
        self._balance, self._gas = self._load_state(initial_balance, initial_gas)
        self._open: dict[str, _RestingOrder] = {}
        self._marks: dict[str, float] = {}
        self._ids = itertools.count(1)
        self.fills: list[dict[str, Any]] = []
        self._logger = get_logger("oracle_trader.exec.paper")

    @property
    def balance(self) -> float:
        return self._balance

    async def submit_order(self, instrument_id: str, side: Side, price: float, size: float) -> str:
        if size <= 0 or price <= 0:
            raise VenueAPIError("invalid_order_size_or_price")
        order_id = f"paper-{next(self._ids)}"
        if side == "BUY":
            cost = price * size
            if cost > self._balance:
                raise VenueAPIError("insufficient_balance")
            self._balance -= cost
            self._record_fill(order_id, instrument_id, side, price, size)
            return order_id

        reference = self._marks.get(instrument_id, price)
        self._open[order_id] = _RestingOrder(
            order_id=order_id,
            instrument_id=instrument_id,
            side=side,
            price=price,
            size=size,
            fill_on_rise=price >= reference,
        )
        return order_id

    async def cancel_order(self, order_id: str) -> bool:
        return self._open.pop(order_id, None) is not None

    async def list_open_orders(self) -> set[str]:
        return set(self._open)

    async def get_balance(self, account: str) -> BalanceInfo:
        return BalanceInfo(trade_currency=self._balance, gas_currency=self._gas)

    def mark_price(self, instrument_id: str, price: float) -> list[str]:
        """Record an observed price and fill every resting order it touches."""
        if price <= 0:
            return []
        self._marks[instrument_id] = price
        filled: list[str] = []
        for order in list(self._open.values()):
            if order.instrument_id != instrument_id:
                continue
            touched = price >= order.price if order.fill_on_rise else price <= order.price
            if not touched:
                continue
            del self._open[order.order_id]
            self._balance += order.price * order.size
            self._record_fill(order.order_id, instrument_id, order.side, order.price, order.size)
            filled.append(order.order_id)
        return filled

    def _record_fill(self, order_id: str, instrument_id: str, side: Side, price: float, size: float) -> None:
        fill = {
            "order_id": order_id,
            "instrument_id": instrument_id,
            "side": side,
            "price": float(price),
            "size": float(size),
            "status": "filled",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self.fills.append(fill)
        self._persist()
        self._logger.debug("paper_fill", **fill, balance=round(self._balance, 4))

    def _load_state(self, initial_balance: float, initial_gas: float) -> tuple[float, float]:
        if self._state_file is None or not self._state_file.exists():
            return initial_balance, initial_gas
        raw = json.loads(self._state_file.read_text(encoding="utf-8"))
        return (
            float(raw.get("balance", initial_balance)),
            float(raw.get("gas", initial_gas)),
        )

    def _persist(self) -> None:
        if self._state_file is None:
            return
        payload = {"balance": self._balance, "gas": self._gas}
        self._state_file.parent.mkdir(parents=True, exist_ok=True)
        self._state_file.write_text(json.dumps(payload, ensure_ascii=True, indent=2), encoding="utf-8")
