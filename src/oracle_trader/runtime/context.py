"""Mutable engine state shared by the scheduled loops of one engine instance."""

from __future__ import annotations

from dataclasses import dataclass, field

from oracle_trader.runtime.clock import Clock
from oracle_trader.types import Trade


@dataclass(slots=True)
class EngineContext:
    clock: Clock
    running: bool = False
    active_trades: dict[str, Trade] = field(default_factory=dict)
    last_trade_time: float | None = None
    trade_counter: int = 0

    def next_trade_id(self) -> str:
        self.trade_counter += 1
        return f"trade-{self.trade_counter}"

    def seconds_since_last_trade(self) -> float | None:
        if self.last_trade_time is None:
            return None
        return self.clock.now() - self.last_trade_time
