from __future__ import annotations

import asyncio

import pytest

from oracle_trader.config import Settings
from oracle_trader.market.order_book import OrderBookTracker
from oracle_trader.oracle.remote import RemoteOracle
from oracle_trader.runtime.clock import VirtualClock
from oracle_trader.runtime.context import EngineContext
from oracle_trader.strategy.opportunity import OpportunityDetector, confidence_score, dynamic_size
from oracle_trader.types import BalanceInfo, InstrumentPair, OrderLevel
from oracle_trader.utils.rate_limiter import RateLimitedCaller


class _Balances:
    def __init__(self, trade_currency: float = 1_000.0, error: Exception | None = None) -> None:
        self.trade_currency = trade_currency
        self.error = error
        self.calls = 0

    async def get_balance(self, account: str) -> BalanceInfo:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return BalanceInfo(trade_currency=self.trade_currency, gas_currency=1.0)


class _Harness:
    def __init__(self, *, balances: _Balances | None = None, dynamic: bool = False) -> None:
        self.clock = VirtualClock()
        self.tracker = OrderBookTracker(max_spread_percent=3.0, clock=self.clock)
        self.quotes = RemoteOracle(self.clock)
        self.context = EngineContext(clock=self.clock)
        self.balances = balances or _Balances()
        self.detector = OpportunityDetector(
            quotes=self.quotes,
            tracker=self.tracker,
            rate_limiter=RateLimitedCaller(max_retries=0, clock=self.clock),
            balances=self.balances,
            context=self.context,
            enable_dynamic_sizing=dynamic,
        )
        self.detector.set_instruments(InstrumentPair(up_id="up", down_id="down"))

    def market(
        self,
        instrument_id: str,
        bid: float,
        ask: float,
        size: float = 100.0,
    ) -> None:
        self.tracker.update_order_book(
            instrument_id,
            [OrderLevel(price=bid, size=size)],
            [OrderLevel(price=ask, size=size)],
        )

    def refresh(self, prob_up: float = 0.75, prob_down: float = 0.25) -> None:
        self.quotes.on_oracle_update(prob_up, prob_down)
        self.market("up", 0.695, 0.705)
        self.market("down", 0.2975, 0.3025)

    def evaluate(self):
        return asyncio.run(self.detector.evaluate())


def test_end_to_end_edge_on_up() -> None:
    h = _Harness()
    h.refresh()

    opportunity = h.evaluate()

    assert opportunity is not None
    assert opportunity.label == "UP"
    assert opportunity.instrument_id == "up"
    assert opportunity.market_price == pytest.approx(0.70)
    assert opportunity.edge == pytest.approx(0.05)
    assert opportunity.recommended_size == 5.0
    assert 0.0 <= opportunity.confidence <= 1.0
    assert opportunity.liquidity_score == 1.0


def test_cooldown_blocks_at_29s_allows_at_31s() -> None:
    h = _Harness()
    h.context.last_trade_time = h.clock.now()

    h.clock.advance(29.0)
    h.refresh()
    assert h.evaluate() is None
    # cooldown rejects before any balance call
    assert h.balances.calls == 0

    h.clock.advance(2.0)
    h.refresh()
    assert h.evaluate() is not None


def test_missing_or_stale_oracle_rejected() -> None:
    h = _Harness()
    h.market("up", 0.695, 0.705)
    assert h.evaluate() is None

    h.refresh()
    h.clock.advance(11.0)
    h.market("up", 0.695, 0.705)
    assert h.evaluate() is None


def test_balance_gate() -> None:
    low = _Harness(balances=_Balances(trade_currency=100.0))
    low.refresh()
    assert low.evaluate() is None

    failing = _Harness(balances=_Balances(error=RuntimeError("rpc down")))
    failing.refresh()
    assert failing.evaluate() is None


def test_stale_book_rejected() -> None:
    h = _Harness()
    h.refresh()
    h.clock.advance(11.0)
    h.quotes.on_oracle_update(0.75, 0.25)
    assert h.evaluate() is None


def test_edge_below_threshold_rejected() -> None:
    h = _Harness()
    h.refresh(prob_up=0.71, prob_down=0.29)
    assert h.evaluate() is None


def test_wide_spread_rejected() -> None:
    h = _Harness()
    h.refresh()
    h.market("up", 0.60, 0.80)
    assert h.evaluate() is None


def test_thin_book_rejected() -> None:
    h = _Harness()
    h.refresh()
    h.market("up", 0.695, 0.705, size=5.0)
    assert h.evaluate() is None


def test_down_scanned_after_up() -> None:
    h = _Harness()
    h.refresh(prob_up=0.50, prob_down=0.50)
    opportunity = h.evaluate()
    assert opportunity is not None
    assert opportunity.label == "DOWN"
    assert opportunity.edge == pytest.approx(0.20)


def test_up_wins_when_both_qualify() -> None:
    h = _Harness()
    h.refresh(prob_up=0.75, prob_down=0.35)
    opportunity = h.evaluate()
    assert opportunity is not None
    assert opportunity.label == "UP"


def test_dynamic_sizing_capped_at_twice_base() -> None:
    h = _Harness(dynamic=True)
    h.refresh()
    opportunity = h.evaluate()
    assert opportunity is not None
    expected = min(5.0 * (0.5 + 1.5 * opportunity.confidence), 70.5 / 3, 100.0, 10.0)
    assert opportunity.recommended_size == pytest.approx(expected)
    assert opportunity.recommended_size <= 10.0


def test_confidence_factors_clamped_independently() -> None:
    best = confidence_score(
        edge=0.5,
        threshold=0.015,
        spread_percent=0.0,
        max_spread_percent=3.0,
        available_liquidity=1_000.0,
        base_size=5.0,
        oracle_age_s=0.0,
        stale_after_s=10.0,
    )
    assert best == pytest.approx(1.0)

    wide = confidence_score(
        edge=0.5,
        threshold=0.015,
        spread_percent=9.0,
        max_spread_percent=3.0,
        available_liquidity=1_000.0,
        base_size=5.0,
        oracle_age_s=0.0,
        stale_after_s=10.0,
    )
    assert wide == pytest.approx(0.8)


def test_dynamic_size_caps() -> None:
    assert dynamic_size(1.0, 5.0, 300.0, 1_000.0) == pytest.approx(10.0)
    assert dynamic_size(0.0, 5.0, 300.0, 1_000.0) == pytest.approx(2.5)
    assert dynamic_size(1.0, 5.0, 6.0, 1_000.0) == pytest.approx(2.0)
    assert dynamic_size(1.0, 5.0, 300.0, 30.0) == pytest.approx(3.0)


def test_from_settings_reads_thresholds() -> None:
    settings = Settings(price_difference_threshold=0.2, journal_dir="data/journal")
    clock = VirtualClock()
    quotes = RemoteOracle(clock)
    tracker = OrderBookTracker(clock=clock)
    detector = OpportunityDetector.from_settings(
        settings,
        quotes=quotes,
        tracker=tracker,
        rate_limiter=RateLimitedCaller(max_retries=0, clock=clock),
        balances=_Balances(),
        context=EngineContext(clock=clock),
    )
    detector.set_instruments(InstrumentPair(up_id="up", down_id="down"))
    quotes.on_oracle_update(0.75, 0.25)
    tracker.update_order_book("up", [OrderLevel(0.695, 100)], [OrderLevel(0.705, 100)])
    assert asyncio.run(detector.evaluate()) is None
