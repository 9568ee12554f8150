"""Edge detection between oracle probabilities and venue prices."""

from __future__ import annotations

from dataclasses import dataclass

from oracle_trader.config import Settings
from oracle_trader.exec.venue import BalanceProvider
from oracle_trader.market.order_book import OrderBookTracker
from oracle_trader.oracle.remote import QuoteProvider
from oracle_trader.runtime.context import EngineContext
from oracle_trader.types import InstrumentPair, OracleQuote, TradeOpportunity
from oracle_trader.utils.logging import get_logger, log_opportunity
from oracle_trader.utils.rate_limiter import RateLimitedCaller

_LIQUIDITY_DEPTH_MULTIPLE = 5


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


@dataclass(frozen=True, slots=True)
class ConfidenceWeights:
    edge: float = 0.4
    spread: float = 0.2
    liquidity: float = 0.2
    freshness: float = 0.2


def confidence_score(
    *,
    edge: float,
    threshold: float,
    spread_percent: float,
    max_spread_percent: float,
    available_liquidity: float,
    base_size: float,
    oracle_age_s: float,
    stale_after_s: float,
    weights: ConfidenceWeights = ConfidenceWeights(),
) -> float:
    """Weighted sum of four factors, each clamped to [0, 1] first."""
    edge_factor = _clamp01((edge - threshold) / threshold) if threshold > 0 else 1.0
    spread_factor = _clamp01(1 - spread_percent / max_spread_percent)
    liquidity_factor = _clamp01(available_liquidity / (base_size * _LIQUIDITY_DEPTH_MULTIPLE))
    freshness_factor = _clamp01(1 - oracle_age_s / stale_after_s)
    return (
        edge_factor * weights.edge
        + spread_factor * weights.spread
        + liquidity_factor * weights.liquidity
        + freshness_factor * weights.freshness
    )


def _candidates(instruments: InstrumentPair, quote: OracleQuote) -> list[tuple[str, str, float]]:
    return [
        ("UP", instruments.up_id, quote.prob_up),
        ("DOWN", instruments.down_id, quote.prob_down),
    ]


def dynamic_size(confidence: float, base_size: float, available_liquidity: float, balance: float) -> float:
    """Scale base size by 0.5x-2x confidence, capped by liquidity/3, 10% of balance, 2x base."""
    return min(
        base_size * (0.5 + 1.5 * confidence),
        available_liquidity / 3,
        balance * 0.1,
        base_size * 2,
    )


class OpportunityDetector:
    """Runs the gate sequence once per tick and returns at most one opportunity.

    Gates: cooldown, oracle freshness, funding balance, then per instrument
    (UP before DOWN) book staleness, edge, spread, liquidity and slippage.
    """

    def __init__(
        self,
        *,
        quotes: QuoteProvider,
        tracker: OrderBookTracker,
        rate_limiter: RateLimitedCaller,
        balances: BalanceProvider,
        context: EngineContext,
        account: str = "",
        price_threshold: float = 0.015,
        cooldown_s: float = 30.0,
        oracle_stale_s: float = 10.0,
        max_spread_percent: float = 3.0,
        max_slippage: float = 0.01,
        trade_amount: float = 5.0,
        minimum_balance: float = 500.0,
        enable_dynamic_sizing: bool = False,
        weights: ConfidenceWeights = ConfidenceWeights(),
    ) -> None:
        self._quotes = quotes
        self._tracker = tracker
        self._rate_limiter = rate_limiter
        self._balances = balances
        self._context = context
        self._account = account
        self._price_threshold = price_threshold
        self._cooldown_s = cooldown_s
        self._oracle_stale_s = oracle_stale_s
        self._max_spread_percent = max_spread_percent
        self._max_slippage = max_slippage
        self._trade_amount = trade_amount
        self._minimum_balance = minimum_balance
        self._enable_dynamic_sizing = enable_dynamic_sizing
        self._weights = weights
        self._instruments: InstrumentPair | None = None
        self._logger = get_logger("oracle_trader.strategy.opportunity")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        quotes: QuoteProvider,
        tracker: OrderBookTracker,
        rate_limiter: RateLimitedCaller,
        balances: BalanceProvider,
        context: EngineContext,
    ) -> "OpportunityDetector":
        return cls(
            quotes=quotes,
            tracker=tracker,
            rate_limiter=rate_limiter,
            balances=balances,
            context=context,
            account=settings.venue_account,
            price_threshold=settings.price_difference_threshold,
            cooldown_s=settings.trade_cooldown_s,
            oracle_stale_s=settings.price_stale_s,
            max_spread_percent=settings.max_spread_percent,
            max_slippage=settings.max_slippage,
            trade_amount=settings.default_trade_amount,
            minimum_balance=settings.minimum_balance,
            enable_dynamic_sizing=settings.enable_dynamic_sizing,
            weights=ConfidenceWeights(
                edge=settings.weight_edge,
                spread=settings.weight_spread,
                liquidity=settings.weight_liquidity,
                freshness=settings.weight_freshness,
            ),
        )

    def set_instruments(self, instruments: InstrumentPair) -> None:
        self._instruments = instruments

    async def evaluate(self) -> TradeOpportunity | None:
        since_last = self._context.seconds_since_last_trade()
        if since_last is not None and since_last < self._cooldown_s:
            return None

        quote = self._quotes.latest_quote()
        if quote is None:
            self._logger.debug("oracle_quote_missing")
            return None
        oracle_age = self._context.clock.now() - quote.timestamp
        if oracle_age > self._oracle_stale_s:
            self._logger.debug("oracle_quote_stale", age_s=round(oracle_age, 1))
            return None

        try:
            balance = await self._rate_limiter.call(
                "balance-check", lambda: self._balances.get_balance(self._account)
            )
        except Exception as exc:  # noqa: BLE001 - a failed balance read means no trade this tick.
            self._logger.warning("balance_check_failed", error=str(exc))
            return None
        if balance.trade_currency < self._minimum_balance:
            self._logger.debug(
                "balance_below_minimum",
                balance=round(balance.trade_currency, 2),
                minimum=self._minimum_balance,
            )
            return None

        if self._instruments is None:
            return None
        for label, instrument_id, probability in _candidates(self._instruments, quote):
            opportunity = self._check_instrument(
                label, instrument_id, probability, oracle_age, balance.trade_currency
            )
            if opportunity is not None:
                log_opportunity(
                    self._logger,
                    label=opportunity.label,
                    instrument_id=opportunity.instrument_id,
                    oracle_probability=opportunity.oracle_probability,
                    market_price=opportunity.market_price,
                    edge=opportunity.edge,
                    confidence=round(opportunity.confidence, 3),
                    spread_percent=round(opportunity.spread_percent, 2),
                    recommended_size=round(opportunity.recommended_size, 4),
                )
                return opportunity
        return None

    def _check_instrument(
        self,
        label: str,
        instrument_id: str,
        probability: float,
        oracle_age: float,
        balance: float,
    ) -> TradeOpportunity | None:
        if not instrument_id:
            return None
        if self._tracker.is_stale(instrument_id):
            self._logger.debug("order_book_stale", label=label)
            return None

        market_price = self._tracker.get_market_price(instrument_id)
        edge = probability - market_price
        if probability <= 0 or market_price <= 0 or edge < self._price_threshold:
            return None

        _, spread_percent = self._tracker.get_spread(instrument_id)
        if spread_percent > self._max_spread_percent:
            self._logger.debug(
                "spread_too_high", label=label, spread_percent=round(spread_percent, 2)
            )
            return None

        liquidity = self._tracker.check_liquidity(instrument_id, "BUY", self._trade_amount)
        if not liquidity.sufficient:
            self._logger.debug("liquidity_insufficient", label=label, warnings=liquidity.warnings)
            return None
        if liquidity.estimated_slippage > self._max_slippage:
            self._logger.debug(
                "slippage_too_high",
                label=label,
                slippage_pct=round(liquidity.estimated_slippage * 100, 2),
            )
            return None

        confidence = confidence_score(
            edge=edge,
            threshold=self._price_threshold,
            spread_percent=spread_percent,
            max_spread_percent=self._max_spread_percent,
            available_liquidity=liquidity.available_liquidity,
            base_size=self._trade_amount,
            oracle_age_s=oracle_age,
            stale_after_s=self._oracle_stale_s,
            weights=self._weights,
        )
        size = self._trade_amount
        if self._enable_dynamic_sizing:
            size = dynamic_size(confidence, self._trade_amount, liquidity.available_liquidity, balance)

        return TradeOpportunity(
            label=label,
            instrument_id=instrument_id,
            oracle_probability=probability,
            market_price=market_price,
            edge=edge,
            confidence=confidence,
            spread_percent=spread_percent,
            liquidity_score=_clamp01(
                liquidity.available_liquidity / (self._trade_amount * _LIQUIDITY_DEPTH_MULTIPLE)
            ),
            recommended_size=size,
        )
