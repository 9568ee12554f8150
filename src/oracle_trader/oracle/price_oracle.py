"""Multi-source price oracle producing directional probabilities."""

from __future__ import annotations

import asyncio
import math
import statistics
from collections import deque
from typing import Sequence

import numpy as np

from oracle_trader.config import Settings
from oracle_trader.oracle.sources import PriceSource
from oracle_trader.runtime.clock import Clock, SystemClock
from oracle_trader.runtime.scheduler import Scheduler
from oracle_trader.types import OracleQuote, OracleSnapshot, PricePoint
from oracle_trader.utils.logging import get_logger

_FETCH_TASK = "oracle-fetch"
_HEALTHY_MIN_HISTORY = 10
_HEALTHY_MAX_AGE_S = 5.0
_PROB_FLOOR = 0.05
_PROB_CEILING = 0.95


def directional_probability(momentum: float, volatility: float) -> float:
    """Map momentum/volatility to P(up), compressed toward 0.5 as volatility rises."""
    momentum_factor = (momentum + 1) / 2
    volatility_factor = max(0.0, 1 - volatility / 10)
    prob_up = 0.5 + (momentum_factor - 0.5) * volatility_factor

    # halve the excess beyond the 0.2/0.8 bands
    if prob_up > 0.8:
        prob_up = 0.8 + (prob_up - 0.8) * 0.5
    if prob_up < 0.2:
        prob_up = 0.2 - (0.2 - prob_up) * 0.5
    return max(_PROB_FLOOR, min(_PROB_CEILING, prob_up))


def confidence_score(history_length: int, active_sources: int, volatility: float) -> float:
    """Data sufficiency x source sufficiency x volatility dampening."""
    data_factor = min(history_length / 60, 1.0)
    source_factor = min(active_sources / 2, 1.0)
    volatility_factor = max(0.3, 1 - volatility / 20)
    return data_factor * source_factor * volatility_factor


class PriceOracle:
    """Polls price sources, keeps a bounded median-price history, derives signals.

    Derived values are recomputed from the history on every snapshot request.
    """

    def __init__(
        self,
        sources: Sequence[PriceSource],
        *,
        scheduler: Scheduler,
        clock: Clock | None = None,
        momentum_window_s: float = 60.0,
        volatility_window_s: float = 300.0,
        update_interval_s: float = 1.0,
        history_size: int = 1000,
        momentum_scale: float = 100_000.0,
        offset_tolerance_s: float = 30.0,
    ) -> None:
        if not sources:
            raise ValueError("at_least_one_price_source_required")
        self._sources = list(sources)
        self._scheduler = scheduler
        self._clock = clock or SystemClock()
        self._momentum_window_s = momentum_window_s
        self._volatility_window_s = volatility_window_s
        self._update_interval_s = update_interval_s
        self._momentum_scale = momentum_scale
        self._offset_tolerance_s = offset_tolerance_s
        self._history: deque[PricePoint] = deque(maxlen=history_size)
        self._active_sources: set[str] = set()
        self._current_price = 0.0
        self._running = False
        self._logger = get_logger("oracle_trader.oracle.price_oracle")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        sources: Sequence[PriceSource],
        *,
        scheduler: Scheduler,
        clock: Clock | None = None,
    ) -> "PriceOracle":
        return cls(
            sources,
            scheduler=scheduler,
            clock=clock,
            momentum_window_s=settings.momentum_window_s,
            volatility_window_s=settings.volatility_window_s,
            update_interval_s=settings.oracle_update_interval_s,
            history_size=settings.oracle_history_size,
            momentum_scale=settings.momentum_scale,
            offset_tolerance_s=settings.price_offset_tolerance_s,
        )

    @property
    def running(self) -> bool:
        return self._running

    @property
    def current_price(self) -> float:
        return self._current_price

    @property
    def history_length(self) -> int:
        return len(self._history)

    @property
    def active_sources(self) -> list[str]:
        return sorted(self._active_sources)

    async def start(self) -> None:
        """Fetch once, then poll on the scheduler until ``stop``."""
        if self._running:
            return
        self._logger.info(
            "oracle_starting",
            sources=[s.name for s in self._sources],
            momentum_window_s=self._momentum_window_s,
            volatility_window_s=self._volatility_window_s,
            update_interval_s=self._update_interval_s,
        )
        self._running = True
        await self.fetch_prices()
        self._scheduler.every(_FETCH_TASK, self._update_interval_s, self.fetch_prices)
        self._logger.info("oracle_started", history_length=len(self._history))

    def stop(self) -> None:
        self._scheduler.cancel(_FETCH_TASK)
        self._running = False
        self._logger.info("oracle_stopped")

    async def fetch_prices(self) -> float | None:
        """Run one fetch cycle; returns the median price or None when all sources fail.

        With an even number of prices the upper of the two middle values is
        used, so the aggregate is always a price some source actually reported.
        """
        timestamp = self._clock.now()
        results = await asyncio.gather(*(self._fetch_one(source) for source in self._sources))
        prices = [price for price in results if price is not None]
        if not prices:
            self._logger.warning("oracle_fetch_failed_all_sources")
            return None

        median_price = float(statistics.median_high(prices))
        self._current_price = median_price
        self._history.append(PricePoint(price=median_price, timestamp=timestamp, source="median"))
        return median_price

    async def _fetch_one(self, source: PriceSource) -> float | None:
        try:
            price = await source.fetch_price()
        except Exception as exc:  # noqa: BLE001 - one source must not fail the cycle.
            self._active_sources.discard(source.name)
            self._logger.debug("price_source_failed", source=source.name, error=str(exc))
            return None
        if not math.isfinite(price) or price <= 0:
            self._active_sources.discard(source.name)
            self._logger.debug("price_source_invalid", source=source.name, price=price)
            return None
        self._active_sources.add(source.name)
        return price

    def snapshot(self, now: float | None = None) -> OracleSnapshot:
        """Derive the full oracle state from the current history."""
        now = self._clock.now() if now is None else now
        if len(self._history) < 2:
            return OracleSnapshot(
                current_price=self._current_price,
                price_change_1m=0.0,
                price_change_5m=0.0,
                price_change_15m=0.0,
                momentum=0.0,
                volatility=0.0,
                prob_up=0.5,
                prob_down=0.5,
                confidence=0.0,
                active_source_count=len(self._active_sources),
                timestamp=now,
                sources=self.active_sources,
            )

        current = self._current_price
        momentum = self.momentum(now)
        volatility = self.volatility(now)
        prob_up = directional_probability(momentum, volatility)
        return OracleSnapshot(
            current_price=current,
            price_change_1m=self._price_change(current, now - 60),
            price_change_5m=self._price_change(current, now - 300),
            price_change_15m=self._price_change(current, now - 900),
            momentum=momentum,
            volatility=volatility,
            prob_up=prob_up,
            prob_down=1 - prob_up,
            confidence=confidence_score(len(self._history), len(self._active_sources), volatility),
            active_source_count=len(self._active_sources),
            timestamp=now,
            sources=self.active_sources,
        )

    def latest_quote(self) -> OracleQuote | None:
        """Probability reading stamped with the time of the newest price point."""
        if not self._history:
            return None
        snap = self.snapshot()
        return OracleQuote(
            prob_up=snap.prob_up,
            prob_down=snap.prob_down,
            timestamp=self._history[-1].timestamp,
        )

    def price_at(self, target_time: float) -> float | None:
        """Closest history price to ``target_time`` within the offset tolerance."""
        closest: PricePoint | None = None
        min_diff = math.inf
        for point in self._history:
            diff = abs(point.timestamp - target_time)
            if diff < min_diff:
                min_diff = diff
                closest = point
        if closest is not None and min_diff < self._offset_tolerance_s:
            return closest.price
        return None

    def momentum(self, now: float | None = None) -> float:
        """OLS slope over the momentum window as a clamped per-second rate."""
        now = self._clock.now() if now is None else now
        window = self._window(now - self._momentum_window_s)
        if len(window) < 2:
            return 0.0
        xs = np.array([p.timestamp for p in window], dtype=float)
        ys = np.array([p.price for p in window], dtype=float)
        xs -= xs[0]
        if xs[-1] <= 0:
            return 0.0
        slope = float(np.polyfit(xs, ys, 1)[0])
        avg_price = float(ys.mean())
        if avg_price <= 0:
            return 0.0
        return max(-1.0, min(1.0, slope / avg_price * self._momentum_scale))

    def volatility(self, now: float | None = None) -> float:
        """Hourly-equivalent volatility in percent from successive returns."""
        now = self._clock.now() if now is None else now
        window = self._window(now - self._volatility_window_s)
        if len(window) < 2:
            return 0.0
        returns = [
            (curr.price - prev.price) / prev.price
            for prev, curr in zip(window, window[1:])
            if prev.price > 0
        ]
        if not returns:
            return 0.0
        return statistics.pstdev(returns) * math.sqrt(3600) * 100

    def is_healthy(self, now: float | None = None) -> bool:
        now = self._clock.now() if now is None else now
        return (
            self._running
            and bool(self._active_sources)
            and len(self._history) > _HEALTHY_MIN_HISTORY
            and now - self._history[-1].timestamp < _HEALTHY_MAX_AGE_S
        )

    def _window(self, cutoff: float) -> list[PricePoint]:
        return [p for p in self._history if p.timestamp >= cutoff]

    def _price_change(self, current: float, target_time: float) -> float:
        past = self.price_at(target_time)
        if past is None or past <= 0:
            return 0.0
        return (current - past) / past
