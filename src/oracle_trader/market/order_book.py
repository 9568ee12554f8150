"""Order book tracking with staleness, spread and liquidity analysis."""

from __future__ import annotations

import math
from typing import Sequence

from oracle_trader.config import Settings
from oracle_trader.runtime.clock import Clock, SystemClock
from oracle_trader.types import LiquidityCheck, OrderBookSnapshot, OrderLevel, Side


class OrderBookTracker:
    """Latest depth snapshot per instrument.

    Snapshots are replaced wholesale on every update. Borderline conditions
    are reported as warnings on the liquidity check; callers decide whether
    a warning disqualifies a trade.
    """

    def __init__(
        self,
        *,
        max_stale_s: float = 10.0,
        min_liquidity_multiplier: float = 2.0,
        max_spread_percent: float = 5.0,
        slippage_warning: float = 0.01,
        clock: Clock | None = None,
    ) -> None:
        self._max_stale_s = max_stale_s
        self._min_liquidity_multiplier = min_liquidity_multiplier
        self._max_spread_percent = max_spread_percent
        self._slippage_warning = slippage_warning
        self._clock = clock or SystemClock()
        self._books: dict[str, OrderBookSnapshot] = {}
        self._last_prices: dict[str, float] = {}

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock | None = None) -> "OrderBookTracker":
        return cls(
            max_stale_s=settings.price_stale_s,
            min_liquidity_multiplier=settings.min_liquidity_multiplier,
            max_spread_percent=settings.max_spread_percent,
            slippage_warning=settings.max_slippage,
            clock=clock,
        )

    def update_order_book(
        self,
        instrument_id: str,
        bids: Sequence[OrderLevel],
        asks: Sequence[OrderLevel],
    ) -> OrderBookSnapshot:
        """Replace the stored snapshot and derive mid/spread."""
        best_bid = bids[0].price if bids else 0.0
        best_ask = asks[0].price if asks else 0.0
        mid = (best_bid + best_ask) / 2 if best_bid > 0 and best_ask > 0 else 0.0
        spread = best_ask - best_bid
        spread_percent = spread / mid * 100 if mid > 0 else 0.0
        snapshot = OrderBookSnapshot(
            instrument_id=instrument_id,
            bids=list(bids),
            asks=list(asks),
            last_update=self._clock.now(),
            mid_price=mid,
            spread=spread,
            spread_percent=spread_percent,
        )
        self._books[instrument_id] = snapshot
        return snapshot

    def record_trade_price(self, instrument_id: str, price: float) -> None:
        """Store a top-of-book / last-trade price for the instrument."""
        if price > 0:
            self._last_prices[instrument_id] = price

    def get_order_book(self, instrument_id: str) -> OrderBookSnapshot | None:
        return self._books.get(instrument_id)

    def get_mid_price(self, instrument_id: str) -> float:
        book = self._books.get(instrument_id)
        return book.mid_price if book else 0.0

    def get_market_price(self, instrument_id: str) -> float:
        """Mid price when both sides are quoted, else the last recorded price."""
        mid = self.get_mid_price(instrument_id)
        if mid > 0:
            return mid
        return self._last_prices.get(instrument_id, 0.0)

    def get_spread(self, instrument_id: str) -> tuple[float, float]:
        """Return ``(spread, spread_percent)``; zeros when the book is unknown."""
        book = self._books.get(instrument_id)
        if book is None:
            return 0.0, 0.0
        return book.spread, book.spread_percent

    def last_update_age(self, instrument_id: str) -> float:
        book = self._books.get(instrument_id)
        if book is None:
            return math.inf
        return self._clock.now() - book.last_update

    def is_stale(self, instrument_id: str) -> bool:
        return self.last_update_age(instrument_id) > self._max_stale_s

    def check_liquidity(self, instrument_id: str, side: Side, notional: float) -> LiquidityCheck:
        """Walk the side a ``side`` order would take and judge fillability.

        BUY walks the asks, SELL walks the bids. Liquidity is measured in
        notional (price * size) per level.
        """
        required = notional * self._min_liquidity_multiplier
        book = self._books.get(instrument_id)
        if book is None:
            return LiquidityCheck(
                sufficient=False,
                available_liquidity=0.0,
                required_liquidity=required,
                estimated_slippage=1.0,
                effective_price=0.0,
                warnings=["No order book data available"],
            )

        warnings: list[str] = []
        if self.is_stale(instrument_id):
            warnings.append(
                f"Order book data is stale ({self.last_update_age(instrument_id):.0f}s old)"
            )
        if book.spread_percent > self._max_spread_percent:
            warnings.append(
                f"High spread: {book.spread_percent:.2f}% (max: {self._max_spread_percent}%)"
            )

        levels = book.asks if side == "BUY" else book.bids
        if not levels:
            warnings.append(f"No {'asks' if side == 'BUY' else 'bids'} available")
            return LiquidityCheck(
                sufficient=False,
                available_liquidity=0.0,
                required_liquidity=required,
                estimated_slippage=1.0,
                effective_price=0.0,
                warnings=warnings,
            )

        total_liquidity = 0.0
        weighted_price_sum = 0.0
        remaining = notional
        for level in levels:
            level_value = level.price * level.size
            total_liquidity += level_value
            if remaining > 0:
                fill = min(remaining, level_value)
                weighted_price_sum += level.price * fill
                remaining -= fill

        best_price = levels[0].price
        filled = notional - max(0.0, remaining)
        effective_price = weighted_price_sum / filled if filled > 0 else best_price
        slippage = abs(effective_price - best_price) / best_price if best_price > 0 else 0.0

        fully_fillable = remaining <= 0
        sufficient = total_liquidity >= required and fully_fillable
        if total_liquidity < required:
            warnings.append(
                f"Low liquidity: ${total_liquidity:.2f} available, need ${required:.2f}"
            )
        if not fully_fillable:
            warnings.append(f"Cannot fill order: ${remaining:.2f} would remain unfilled")
        if slippage > self._slippage_warning:
            warnings.append(f"High estimated slippage: {slippage * 100:.2f}%")

        return LiquidityCheck(
            sufficient=sufficient,
            available_liquidity=total_liquidity,
            required_liquidity=required,
            estimated_slippage=slippage,
            effective_price=effective_price,
            warnings=warnings,
        )

    def calculate_optimal_size(
        self,
        instrument_id: str,
        side: Side,
        max_notional: float,
        max_slippage: float = 0.01,
    ) -> float:
        """Largest notional, in whole levels, whose slippage stays under ``max_slippage``."""
        book = self._books.get(instrument_id)
        if book is None:
            return 0.0
        levels = book.asks if side == "BUY" else book.bids
        if not levels:
            return 0.0

        best_price = levels[0].price
        amount = 0.0
        weighted_price_sum = 0.0
        for level in levels:
            level_value = level.price * level.size
            next_amount = amount + level_value
            next_weighted = weighted_price_sum + level.price * level_value
            if next_amount <= 0:
                continue
            slippage = abs(next_weighted / next_amount - best_price) / best_price
            if slippage > max_slippage or next_amount > max_notional:
                break
            amount = next_amount
            weighted_price_sum = next_weighted
        return min(amount, max_notional)
