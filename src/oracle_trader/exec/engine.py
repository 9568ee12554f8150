"""Order execution with OCO take-profit / stop-loss exits."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from oracle_trader.config import Settings
from oracle_trader.exec.venue import BalanceProvider, TradingVenue
from oracle_trader.journal.store import JournalStore, to_payload
from oracle_trader.market.order_book import OrderBookTracker
from oracle_trader.pnl.ledger import PnLLedger
from oracle_trader.runtime.context import EngineContext
from oracle_trader.types import (
    ExitReason,
    Side,
    Trade,
    TradeOpportunity,
    TradeResult,
    TradeStatus,
)
from oracle_trader.utils.logging import get_logger, log_order_execution, log_risk_event
from oracle_trader.utils.rate_limiter import RateLimitedCaller

_MONITORED = (TradeStatus.FILLED, TradeStatus.PARTIAL)


class ExecutionEngine:
    """Places entries and exit pairs, resolves OCO fills, records results.

    Trade lifecycle: pending -> filled -> closed, pending -> cancelled when
    the entry is still resting after the settle delay. A trade stays pending
    until both exit placements have returned; it becomes partial when only one
    leg could be placed or the resting entry could not be cancelled. Fills are
    inferred solely from orders leaving the venue's open-order set.
    """

    def __init__(
        self,
        *,
        venue: TradingVenue,
        rate_limiter: RateLimitedCaller,
        tracker: OrderBookTracker,
        ledger: PnLLedger,
        context: EngineContext,
        journal: JournalStore | None = None,
        entry_buffer_pct: float = 1.0,
        take_profit_amount: float = 0.01,
        stop_loss_amount: float = 0.005,
        min_price: float = 0.01,
        max_price: float = 0.99,
        settle_delay_s: float = 3.0,
        max_trade_age_s: float = 3600.0,
        stats_every: int = 10,
    ) -> None:
        self._venue = venue
        self._rate_limiter = rate_limiter
        self._tracker = tracker
        self._ledger = ledger
        self._context = context
        self._journal = journal
        self._entry_buffer_pct = entry_buffer_pct
        self._take_profit_amount = take_profit_amount
        self._stop_loss_amount = stop_loss_amount
        self._min_price = min_price
        self._max_price = max_price
        self._settle_delay_s = settle_delay_s
        self._max_trade_age_s = max_trade_age_s
        self._stats_every = stats_every
        self._logger = get_logger("oracle_trader.exec.engine")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        venue: TradingVenue,
        rate_limiter: RateLimitedCaller,
        tracker: OrderBookTracker,
        ledger: PnLLedger,
        context: EngineContext,
        journal: JournalStore | None = None,
    ) -> "ExecutionEngine":
        return cls(
            venue=venue,
            rate_limiter=rate_limiter,
            tracker=tracker,
            ledger=ledger,
            context=context,
            journal=journal,
            entry_buffer_pct=settings.entry_buffer_pct,
            take_profit_amount=settings.take_profit_amount,
            stop_loss_amount=settings.stop_loss_amount,
            min_price=settings.min_price,
            max_price=settings.max_price,
            settle_delay_s=settings.settle_delay_s,
            max_trade_age_s=settings.max_trade_age_s,
        )

    @property
    def context(self) -> EngineContext:
        return self._context

    def entry_order_price(self, market_price: float) -> float:
        return self._clamp(market_price * (1 + self._entry_buffer_pct / 100))

    def take_profit_price(self, entry_price: float) -> float:
        return min(entry_price + self._take_profit_amount, self._max_price)

    def stop_loss_price(self, entry_price: float) -> float:
        return max(entry_price - self._stop_loss_amount, self._min_price)

    async def execute(self, opportunity: TradeOpportunity) -> Trade | None:
        """Enter on ``opportunity`` and arm both exits. Returns the trade, if any."""
        ctx = self._context
        ctx.last_trade_time = ctx.clock.now()
        trade_id = ctx.next_trade_id()
        self._journal_event("opportunity", {"trade_id": trade_id, **to_payload(opportunity)})

        entry_price = opportunity.market_price
        notional = opportunity.recommended_size
        shares = notional / entry_price
        order_price = self.entry_order_price(entry_price)
        self._logger.info(
            "trade_executing",
            trade_id=trade_id,
            label=opportunity.label,
            shares=round(shares, 4),
            entry_price=round(entry_price, 4),
            order_price=round(order_price, 4),
            notional=round(notional, 4),
            confidence=round(opportunity.confidence, 3),
        )

        entry_order_id = await self._submit(
            "buy-order", trade_id, opportunity.instrument_id, "BUY", order_price, shares
        )
        if entry_order_id is None:
            return None

        trade = Trade(
            id=trade_id,
            label=opportunity.label,
            instrument_id=opportunity.instrument_id,
            entry_order_id=entry_order_id,
            entry_price=entry_price,
            target_price=self.take_profit_price(entry_price),
            stop_price=self.stop_loss_price(entry_price),
            shares=shares,
            notional=notional,
            created_at=ctx.clock.now(),
        )
        ctx.active_trades[trade.id] = trade

        await ctx.clock.sleep(self._settle_delay_s)
        if not await self._confirm_entry(trade):
            return trade

        trade.take_profit_order_id = await self._submit(
            "take-profit-order", trade.id, trade.instrument_id, "SELL", trade.target_price, shares
        )
        trade.stop_loss_order_id = await self._submit(
            "stop-loss-order", trade.id, trade.instrument_id, "SELL", trade.stop_price, shares
        )
        # armed only once both placements returned; the monitor ignores pending trades
        if trade.take_profit_order_id is None or trade.stop_loss_order_id is None:
            trade.status = TradeStatus.PARTIAL
            log_risk_event(
                self._logger,
                event_type="exit_leg_missing",
                action="left_for_operator",
                trade_id=trade.id,
                instrument_id=trade.instrument_id,
                take_profit_order_id=trade.take_profit_order_id,
                stop_loss_order_id=trade.stop_loss_order_id,
                target_price=trade.target_price,
                stop_price=trade.stop_price,
                shares=round(shares, 4),
            )
        else:
            trade.status = TradeStatus.FILLED

        self._journal_event("trade_open", to_payload(trade))
        self._logger.info(
            "trade_opened",
            trade_id=trade.id,
            status=trade.status.value,
            target_price=round(trade.target_price, 4),
            stop_price=round(trade.stop_price, 4),
            active_trades=len(ctx.active_trades),
            running_pnl=round(self._ledger.total_pnl, 4),
        )
        return trade

    async def monitor_once(self) -> int:
        """One OCO pass over all armed trades. Returns how many were closed."""
        trades = [t for t in self._context.active_trades.values() if t.status in _MONITORED]
        if not trades:
            return 0
        legs = [(t.take_profit_order_id, t.stop_loss_order_id) for t in trades]
        try:
            open_orders = await self._rate_limiter.call("get-orders", self._venue.list_open_orders)
        except Exception as exc:  # noqa: BLE001 - skip this interval, retry on the next.
            self._logger.warning("open_orders_unavailable", error=str(exc))
            return 0

        closed = 0
        for trade, (tp_id, sl_id) in zip(trades, legs):
            if trade.status not in _MONITORED or (
                trade.take_profit_order_id,
                trade.stop_loss_order_id,
            ) != (tp_id, sl_id):
                # changed while the open-order query was in flight; judge it next pass
                continue
            tp_gone = tp_id is not None and tp_id not in open_orders
            sl_gone = sl_id is not None and sl_id not in open_orders

            if tp_gone and sl_gone:
                reason = self.resolve_simultaneous_exit(trade)
                self._logger.warning(
                    "oco_both_legs_gone",
                    trade_id=trade.id,
                    attributed_to=reason.value,
                )
            elif tp_gone:
                reason = ExitReason.TAKE_PROFIT
                if sl_id is not None:
                    await self._cancel(trade, sl_id, "stop-loss")
            elif sl_gone:
                reason = ExitReason.STOP_LOSS
                if tp_id is not None:
                    await self._cancel(trade, tp_id, "take-profit")
            else:
                continue

            if self.close_trade(trade, reason) is not None:
                closed += 1
        return closed

    def resolve_simultaneous_exit(self, trade: Trade) -> ExitReason:
        """Both exits left the book in one poll: judge by the last known market price.

        At or below the stop price counts as a stop-loss; anything else,
        including an unknown price, counts as a take-profit.
        """
        price = self._tracker.get_market_price(trade.instrument_id)
        if 0 < price <= trade.stop_price:
            return ExitReason.STOP_LOSS
        return ExitReason.TAKE_PROFIT

    def close_trade(
        self,
        trade: Trade,
        reason: ExitReason,
        exit_price: float | None = None,
    ) -> TradeResult | None:
        """Record the trade's result once; repeated calls return None."""
        if trade.status == TradeStatus.CLOSED:
            return None

        if exit_price is None:
            exit_price = self._default_exit_price(trade, reason)
        now = self._context.clock.now()
        pnl = (exit_price - trade.entry_price) * trade.shares
        result = TradeResult(
            trade_id=trade.id,
            label=trade.label,
            entry_price=trade.entry_price,
            exit_price=exit_price,
            shares=trade.shares,
            pnl=pnl,
            pnl_percent=(exit_price - trade.entry_price) / trade.entry_price * 100,
            exit_reason=reason,
            entry_time=trade.created_at,
            exit_time=now,
        )
        trade.status = TradeStatus.CLOSED
        trade.exit_reason = reason
        self._context.active_trades.pop(trade.id, None)

        recorded = self._ledger.record(result)
        self._journal_event("trade_close", to_payload(result))
        if recorded and self._stats_every > 0 and self._ledger.trade_count % self._stats_every == 0:
            stats = self._ledger.log_stats()
            self._journal_event("stats", asdict(stats))
        return result

    def cleanup_once(self) -> int:
        """Evict trades older than the max age regardless of state; no P&L recorded."""
        now = self._context.clock.now()
        evicted = 0
        for trade in list(self._context.active_trades.values()):
            age = now - trade.created_at
            if age <= self._max_trade_age_s:
                continue
            del self._context.active_trades[trade.id]
            trade.exit_reason = ExitReason.TIMEOUT
            evicted += 1
            self._logger.info(
                "trade_evicted",
                trade_id=trade.id,
                entry_order_id=trade.entry_order_id,
                status=trade.status.value,
                age_s=round(age),
            )
            self._journal_event("trade_evicted", {**to_payload(trade), "age_s": age})
        if evicted:
            self._logger.info(
                "trade_cleanup",
                evicted=evicted,
                remaining=len(self._context.active_trades),
            )
        return evicted

    async def balance_check_once(
        self,
        balances: BalanceProvider,
        account: str,
        *,
        minimum_balance: float,
        minimum_gas: float,
    ) -> bool:
        """Periodic balance audit; shortfalls are warnings, never fatal."""
        try:
            balance = await self._rate_limiter.call(
                "balance-check", lambda: balances.get_balance(account)
            )
        except Exception as exc:  # noqa: BLE001 - monitoring only.
            self._logger.warning("balance_check_failed", error=str(exc))
            return False

        sufficient, warnings = balance.check_sufficient(minimum_balance, minimum_gas)
        self._logger.info(
            "balance_checked",
            trade_currency=round(balance.trade_currency, 2),
            gas_currency=round(balance.gas_currency, 4),
        )
        if not sufficient:
            log_risk_event(
                self._logger,
                event_type="low_balance",
                action="continue_monitoring",
                warnings=warnings,
            )
        return sufficient

    def status(self) -> dict[str, Any]:
        trades = self._context.active_trades.values()
        return {
            "running": self._context.running,
            "active_trades": len(self._context.active_trades),
            "partial_trades": sum(1 for t in trades if t.status == TradeStatus.PARTIAL),
            "trade_count": self._ledger.trade_count,
            "running_pnl": round(self._ledger.total_pnl, 4),
        }

    async def _confirm_entry(self, trade: Trade) -> bool:
        try:
            open_orders = await self._rate_limiter.call("get-orders", self._venue.list_open_orders)
        except Exception as exc:  # noqa: BLE001 - unknown state, proceed as filled.
            self._logger.warning("entry_status_unknown", trade_id=trade.id, error=str(exc))
            open_orders = set()

        if trade.entry_order_id not in open_orders:
            return True

        if not await self._cancel(trade, trade.entry_order_id, "entry"):
            # entry may have filled meanwhile; keep it visible to the age sweep
            trade.status = TradeStatus.PARTIAL
            log_risk_event(
                self._logger,
                event_type="entry_cancel_failed",
                action="left_for_operator",
                trade_id=trade.id,
                instrument_id=trade.instrument_id,
                entry_order_id=trade.entry_order_id,
                entry_price=trade.entry_price,
                shares=round(trade.shares, 4),
            )
            self._journal_event("trade_open", to_payload(trade))
            return False

        trade.status = TradeStatus.CANCELLED
        self._context.active_trades.pop(trade.id, None)
        self._logger.warning("entry_not_filled", trade_id=trade.id, order_id=trade.entry_order_id)
        return False

    async def _submit(
        self,
        operation: str,
        trade_id: str,
        instrument_id: str,
        side: Side,
        price: float,
        size: float,
    ) -> str | None:
        try:
            order_id = await self._rate_limiter.call(
                operation,
                lambda: self._venue.submit_order(instrument_id, side, price, size),
            )
        except Exception as exc:  # noqa: BLE001 - caller decides how a missing leg is handled.
            log_order_execution(
                self._logger,
                instrument_id=instrument_id,
                side=side,
                size=size,
                price=price,
                status="failed",
                trade_id=trade_id,
                operation=operation,
                error=str(exc),
            )
            self._journal_event(
                "error",
                {
                    "trade_id": trade_id,
                    "operation": operation,
                    "instrument_id": instrument_id,
                    "price": price,
                    "size": size,
                    "error": str(exc),
                },
            )
            return None

        log_order_execution(
            self._logger,
            instrument_id=instrument_id,
            side=side,
            size=size,
            price=price,
            order_id=order_id,
            trade_id=trade_id,
            operation=operation,
        )
        self._journal_event(
            "order",
            {
                "trade_id": trade_id,
                "operation": operation,
                "order_id": order_id,
                "instrument_id": instrument_id,
                "side": side,
                "price": price,
                "size": size,
            },
        )
        return order_id

    async def _cancel(self, trade: Trade, order_id: str, leg: str) -> bool:
        try:
            cancelled = await self._rate_limiter.call(
                "cancel-order", lambda: self._venue.cancel_order(order_id)
            )
        except Exception as exc:  # noqa: BLE001 - a failed sibling cancel is not fatal.
            self._logger.warning(
                "order_cancel_failed",
                trade_id=trade.id,
                leg=leg,
                order_id=order_id,
                error=str(exc),
            )
            return False
        if cancelled:
            self._logger.info("order_cancelled", trade_id=trade.id, leg=leg, order_id=order_id)
        else:
            self._logger.warning("order_cancel_rejected", trade_id=trade.id, leg=leg, order_id=order_id)
        return bool(cancelled)

    def _default_exit_price(self, trade: Trade, reason: ExitReason) -> float:
        if reason == ExitReason.TAKE_PROFIT:
            return trade.target_price
        if reason == ExitReason.STOP_LOSS:
            return trade.stop_price
        market = self._tracker.get_market_price(trade.instrument_id)
        return market if market > 0 else trade.entry_price

    def _clamp(self, price: float) -> float:
        return max(self._min_price, min(self._max_price, price))

    def _journal_event(self, event_type: str, payload: dict[str, Any]) -> None:
        if self._journal is not None:
            self._journal.append(event_type, payload)
