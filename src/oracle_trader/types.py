"""Shared domain types for the oracle edge trader."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

Side = Literal["BUY", "SELL"]


class TradeStatus(str, Enum):
    """Lifecycle states of a managed trade."""

    PENDING = "pending"
    FILLED = "filled"
    PARTIAL = "partial"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class ExitReason(str, Enum):
    """Why a trade was closed."""

    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    MANUAL = "manual"
    TIMEOUT = "timeout"


@dataclass(frozen=True, slots=True)
class PricePoint:
    """One aggregated price observation."""

    price: float
    timestamp: float
    source: str


@dataclass(slots=True)
class OracleSnapshot:
    """Derived oracle state at one instant."""

    current_price: float
    price_change_1m: float
    price_change_5m: float
    price_change_15m: float
    momentum: float
    volatility: float
    prob_up: float
    prob_down: float
    confidence: float
    active_source_count: int
    timestamp: float
    sources: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class OracleQuote:
    """Directional probability reading consumed by the opportunity scan."""

    prob_up: float
    prob_down: float
    timestamp: float


@dataclass(frozen=True, slots=True)
class OrderLevel:
    """One price level of a book side."""

    price: float
    size: float


@dataclass(slots=True)
class OrderBookSnapshot:
    """Latest depth for one instrument, replaced wholesale on update."""

    instrument_id: str
    bids: list[OrderLevel]
    asks: list[OrderLevel]
    last_update: float
    mid_price: float
    spread: float
    spread_percent: float


@dataclass(slots=True)
class LiquidityCheck:
    """Result of walking one side of the book for a notional size."""

    sufficient: bool
    available_liquidity: float
    required_liquidity: float
    estimated_slippage: float
    effective_price: float
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TradeOpportunity:
    """A qualified edge, produced and consumed within one evaluation tick."""

    label: str
    instrument_id: str
    oracle_probability: float
    market_price: float
    edge: float
    confidence: float
    spread_percent: float
    liquidity_score: float
    recommended_size: float


@dataclass(slots=True)
class Trade:
    """A position managed by the execution engine."""

    id: str
    label: str
    instrument_id: str
    entry_order_id: str
    entry_price: float
    target_price: float
    stop_price: float
    shares: float
    notional: float
    created_at: float
    status: TradeStatus = TradeStatus.PENDING
    take_profit_order_id: str | None = None
    stop_loss_order_id: str | None = None
    exit_reason: ExitReason | None = None


@dataclass(frozen=True, slots=True)
class TradeResult:
    """Realized outcome of one closed trade."""

    trade_id: str
    label: str
    entry_price: float
    exit_price: float
    shares: float
    pnl: float
    pnl_percent: float
    exit_reason: ExitReason
    entry_time: float
    exit_time: float

    @property
    def holding_seconds(self) -> float:
        return self.exit_time - self.entry_time


@dataclass(slots=True)
class TradingStats:
    """Aggregate statistics over all recorded trades."""

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    average_pnl: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    profit_factor: float = 0.0
    max_drawdown: float = 0.0
    best_trade: float = 0.0
    worst_trade: float = 0.0
    average_holding_seconds: float = 0.0


@dataclass(frozen=True, slots=True)
class BalanceInfo:
    """Funding balances of the trading account."""

    trade_currency: float
    gas_currency: float

    def check_sufficient(self, min_trade: float, min_gas: float) -> tuple[bool, list[str]]:
        """Return whether both balances meet their minimums, with readable notes."""
        warnings: list[str] = []
        if self.trade_currency < min_trade:
            warnings.append(
                f"trade balance {self.trade_currency:.2f} below minimum {min_trade:.2f}"
            )
        if self.gas_currency < min_gas:
            warnings.append(f"gas balance {self.gas_currency:.4f} below minimum {min_gas:.4f}")
        return not warnings, warnings


@dataclass(frozen=True, slots=True)
class InstrumentPair:
    """The two complementary instruments of the current market."""

    up_id: str
    down_id: str
    question: str = ""
