"""Probability readings received from a remote oracle feed."""

from __future__ import annotations

from typing import Protocol

from oracle_trader.runtime.clock import Clock, SystemClock
from oracle_trader.types import OracleQuote


class QuoteProvider(Protocol):
    def latest_quote(self) -> OracleQuote | None: ...


class RemoteOracle:
    """Keeps the newest pushed quote, stamped with its arrival time."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._quote: OracleQuote | None = None
        self.updates = 0

    def on_oracle_update(self, prob_up: float, prob_down: float) -> None:
        self._quote = OracleQuote(prob_up=prob_up, prob_down=prob_down, timestamp=self._clock.now())
        self.updates += 1

    def latest_quote(self) -> OracleQuote | None:
        return self._quote
