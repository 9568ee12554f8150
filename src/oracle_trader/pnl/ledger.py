"""Append-only realized P&L ledger."""

from __future__ import annotations

import math
from statistics import fmean

from oracle_trader.types import TradeResult, TradingStats
from oracle_trader.utils.logging import get_logger, log_trading_stats


class PnLLedger:
    """Closed-trade results with running P&L, peak and max drawdown.

    Only the running sum, peak and drawdown are maintained incrementally;
    everything else in ``stats()`` is derived from the full trade sequence.
    """

    def __init__(self) -> None:
        self._trades: list[TradeResult] = []
        self._trade_ids: set[str] = set()
        self._running_pnl = 0.0
        self._peak_pnl = 0.0
        self._max_drawdown = 0.0
        self._logger = get_logger("oracle_trader.pnl.ledger")

    @property
    def total_pnl(self) -> float:
        return self._running_pnl

    @property
    def trade_count(self) -> int:
        return len(self._trades)

    @property
    def max_drawdown(self) -> float:
        return self._max_drawdown

    def record(self, result: TradeResult) -> bool:
        """Append one result; a trade id already recorded is ignored."""
        if result.trade_id in self._trade_ids:
            self._logger.warning("trade_result_duplicate", trade_id=result.trade_id)
            return False
        self._trades.append(result)
        self._trade_ids.add(result.trade_id)
        self._running_pnl += result.pnl
        self._peak_pnl = max(self._peak_pnl, self._running_pnl)
        self._max_drawdown = max(self._max_drawdown, self._peak_pnl - self._running_pnl)
        self._logger.info(
            "trade_recorded",
            trade_id=result.trade_id,
            label=result.label,
            entry_price=round(result.entry_price, 4),
            exit_price=round(result.exit_price, 4),
            pnl=round(result.pnl, 4),
            pnl_percent=round(result.pnl_percent, 2),
            exit_reason=result.exit_reason.value,
            holding_s=round(result.holding_seconds, 1),
            running_pnl=round(self._running_pnl, 4),
        )
        return True

    def stats(self) -> TradingStats:
        if not self._trades:
            return TradingStats()

        pnls = [t.pnl for t in self._trades]
        wins = [p for p in pnls if p > 0]
        losses = [p for p in pnls if p <= 0]
        total_wins = sum(wins)
        total_losses = abs(sum(losses))
        if total_losses > 0:
            profit_factor = total_wins / total_losses
        else:
            profit_factor = math.inf if total_wins > 0 else 0.0

        return TradingStats(
            total_trades=len(pnls),
            winning_trades=len(wins),
            losing_trades=len(losses),
            win_rate=len(wins) / len(pnls) * 100,
            total_pnl=sum(pnls),
            average_pnl=fmean(pnls),
            average_win=fmean(wins) if wins else 0.0,
            average_loss=total_losses / len(losses) if losses else 0.0,
            profit_factor=profit_factor,
            max_drawdown=self._max_drawdown,
            best_trade=max(pnls),
            worst_trade=min(pnls),
            average_holding_seconds=fmean(t.holding_seconds for t in self._trades),
        )

    def recent_trades(self, count: int = 10) -> list[TradeResult]:
        if count <= 0:
            return []
        return self._trades[-count:]

    def log_stats(self) -> TradingStats:
        stats = self.stats()
        log_trading_stats(
            self._logger,
            {
                "total_trades": stats.total_trades,
                "win_rate": round(stats.win_rate, 1),
                "winning_trades": stats.winning_trades,
                "losing_trades": stats.losing_trades,
                "total_pnl": round(stats.total_pnl, 4),
                "average_pnl": round(stats.average_pnl, 4),
                "average_win": round(stats.average_win, 4),
                "average_loss": round(stats.average_loss, 4),
                "profit_factor": (
                    "inf" if math.isinf(stats.profit_factor) else round(stats.profit_factor, 2)
                ),
                "max_drawdown": round(stats.max_drawdown, 4),
                "best_trade": round(stats.best_trade, 4),
                "worst_trade": round(stats.worst_trade, 4),
                "average_holding_s": round(stats.average_holding_seconds, 1),
            },
        )
        return stats
