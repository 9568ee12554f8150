"""Process-level wiring of the trading engine."""

from __future__ import annotations

import asyncio
import signal
from typing import Any, Callable

import httpx
import websockets

from oracle_trader.config import OracleSource, Settings
from oracle_trader.exec.engine import ExecutionEngine
from oracle_trader.exec.paper import PaperVenue
from oracle_trader.exec.venue import RestVenueClient
from oracle_trader.journal.store import JournalStore
from oracle_trader.market.discovery import DiscoveryError, InstrumentDiscovery
from oracle_trader.market.feeds import MarketDataFeed, OracleFeed, ReconnectPolicy, StreamConnection
from oracle_trader.market.order_book import OrderBookTracker
from oracle_trader.oracle.price_oracle import PriceOracle
from oracle_trader.oracle.remote import QuoteProvider, RemoteOracle
from oracle_trader.oracle.sources import default_sources
from oracle_trader.pnl.ledger import PnLLedger
from oracle_trader.runtime.clock import Clock, SystemClock
from oracle_trader.runtime.context import EngineContext
from oracle_trader.runtime.scheduler import Scheduler
from oracle_trader.strategy.opportunity import OpportunityDetector
from oracle_trader.types import InstrumentPair, OrderLevel
from oracle_trader.utils.logging import get_logger
from oracle_trader.utils.rate_limiter import RateLimitedCaller


class StartupError(Exception):
    """A precondition for trading is not met."""


class TradingApp:
    """Builds every component from ``Settings`` and owns their lifecycle."""

    def __init__(
        self,
        settings: Settings,
        *,
        clock: Clock | None = None,
        venue: Any = None,
        instruments: InstrumentPair | None = None,
        http_client: httpx.AsyncClient | None = None,
        connect: Callable[[str], Any] = websockets.connect,
    ) -> None:
        self.settings = settings
        self.clock = clock or SystemClock()
        self._connect = connect
        self._instruments = instruments
        self._owns_http = http_client is None
        self._http = http_client
        self._logger = get_logger("oracle_trader.app")

        self.scheduler = Scheduler(self.clock)
        self.context = EngineContext(clock=self.clock)
        self.rate_limiter = RateLimitedCaller.from_settings(settings, self.clock)
        self.tracker = OrderBookTracker.from_settings(settings, self.clock)
        self.ledger = PnLLedger()
        self.journal = JournalStore(settings.journal_dir)
        self.venue = venue if venue is not None else self._build_venue()

        self.remote_oracle: RemoteOracle | None = None
        self.price_oracle: PriceOracle | None = None
        quotes: QuoteProvider
        if settings.oracle_source == OracleSource.LOCAL:
            self.price_oracle = PriceOracle.from_settings(
                settings, default_sources(self._client()), scheduler=self.scheduler, clock=self.clock
            )
            quotes = self.price_oracle
        else:
            self.remote_oracle = RemoteOracle(self.clock)
            quotes = self.remote_oracle

        self.detector = OpportunityDetector.from_settings(
            settings,
            quotes=quotes,
            tracker=self.tracker,
            rate_limiter=self.rate_limiter,
            balances=self.venue,
            context=self.context,
        )
        self.engine = ExecutionEngine.from_settings(
            settings,
            venue=self.venue,
            rate_limiter=self.rate_limiter,
            tracker=self.tracker,
            ledger=self.ledger,
            context=self.context,
            journal=self.journal,
        )
        self._streams: list[StreamConnection] = []
        self._stream_tasks: list[asyncio.Task[None]] = []
        self._stop_requested = asyncio.Event()

    def _build_venue(self) -> Any:
        if self.settings.is_live_mode:
            return RestVenueClient(self.settings)
        return PaperVenue(
            self.settings.journal_dir,
            initial_balance=self.settings.paper_initial_balance,
            initial_gas=self.settings.paper_initial_gas,
        )

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.settings.venue_timeout)
        return self._http

    @property
    def instruments(self) -> InstrumentPair | None:
        return self._instruments

    async def start(self) -> None:
        """Check preconditions, resolve instruments, connect feeds, register loops."""
        settings = self.settings
        self._logger.info("engine_starting", mode=settings.mode.value, oracle=settings.oracle_source.value)

        if settings.is_live_mode:
            missing = settings.validate_for_live()
            if missing:
                raise StartupError(f"missing_live_settings: {', '.join(missing)}")

        try:
            balance = await self.rate_limiter.call(
                "balance-check", lambda: self.venue.get_balance(settings.venue_account)
            )
        except Exception as exc:
            raise StartupError(f"balance_unavailable: {exc}") from exc
        sufficient, warnings = balance.check_sufficient(settings.minimum_balance, settings.minimum_gas)
        if not sufficient:
            raise StartupError("insufficient_balance: " + "; ".join(warnings))

        if self._instruments is None:
            try:
                self._instruments = await InstrumentDiscovery.from_settings(settings, self._client()).discover()
            except DiscoveryError as exc:
                raise StartupError(str(exc)) from exc
        self.detector.set_instruments(self._instruments)

        policy = ReconnectPolicy(delay_s=settings.reconnect_delay_s)
        market_feed = MarketDataFeed(
            settings.market_ws_url,
            self._instruments,
            on_depth_update=self.on_depth_update,
            on_top_of_book=self.on_top_of_book,
            policy=policy,
            clock=self.clock,
            connect=self._connect,
        )
        self._streams.append(market_feed.connection)
        if self.remote_oracle is not None:
            oracle_feed = OracleFeed(
                settings.oracle_ws_url,
                self.remote_oracle.on_oracle_update,
                policy=policy,
                clock=self.clock,
                connect=self._connect,
            )
            self._streams.append(oracle_feed.connection)
        elif self.price_oracle is not None:
            await self.price_oracle.start()

        self.context.running = True
        self.scheduler.every("evaluate", settings.evaluation_interval_s, self.evaluate_tick)
        self.scheduler.every("order-monitor", settings.order_monitor_interval_s, self.engine.monitor_once)
        self.scheduler.every("trade-cleanup", settings.trade_cleanup_interval_s, self._cleanup_tick)
        self.scheduler.every("balance-check", settings.balance_check_interval_s, self._balance_tick)
        self.scheduler.every("status-log", settings.status_log_interval_s, self._status_tick)
        self.scheduler.start()
        self._stream_tasks = [
            asyncio.create_task(conn.run(), name=f"stream-{conn.name}") for conn in self._streams
        ]

        self.journal.append(
            "engine_start",
            {
                "mode": settings.mode.value,
                "oracle_source": settings.oracle_source.value,
                "up_id": self._instruments.up_id,
                "down_id": self._instruments.down_id,
                "question": self._instruments.question,
                "trade_currency": balance.trade_currency,
            },
        )
        self._logger.info(
            "engine_started",
            question=self._instruments.question,
            threshold=settings.price_difference_threshold,
            trade_amount=settings.default_trade_amount,
            cooldown_s=settings.trade_cooldown_s,
        )

    async def stop(self) -> None:
        """Halt loops, close streams, flush final statistics. Safe to call twice."""
        if not self.context.running:
            return
        self._logger.info("engine_stopping")
        self.context.running = False
        await self.scheduler.shutdown()

        for conn in self._streams:
            await conn.close()
        for task in self._stream_tasks:
            task.cancel()
        if self._stream_tasks:
            await asyncio.gather(*self._stream_tasks, return_exceptions=True)
        self._streams.clear()
        self._stream_tasks.clear()

        if self.price_oracle is not None and self.price_oracle.running:
            self.price_oracle.stop()
        if isinstance(self.venue, RestVenueClient):
            await self.venue.aclose()
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None

        stats = self.ledger.log_stats() if self.ledger.trade_count > 0 else None
        self.journal.append(
            "engine_stop",
            {
                "trade_count": self.ledger.trade_count,
                "total_pnl": self.ledger.total_pnl,
                "active_trades": len(self.context.active_trades),
                "win_rate": stats.win_rate if stats else 0.0,
            },
        )
        self._logger.info("engine_stopped")

    async def run_forever(self) -> None:
        """Start, then block until SIGINT/SIGTERM and stop gracefully."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_stop, sig)
        try:
            await self.start()
            await self._stop_requested.wait()
        finally:
            await self.stop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

    def request_stop(self, sig: signal.Signals | None = None) -> None:
        self._logger.info("shutdown_requested", signal=sig.name if sig else None)
        self._stop_requested.set()

    def on_depth_update(self, instrument_id: str, bids: list[OrderLevel], asks: list[OrderLevel]) -> None:
        self.tracker.update_order_book(instrument_id, bids, asks)
        self._mark_paper(instrument_id)

    def on_top_of_book(self, instrument_id: str, price: float) -> None:
        self.tracker.record_trade_price(instrument_id, price)
        self._mark_paper(instrument_id)

    async def evaluate_tick(self) -> None:
        if not self.context.running:
            return
        opportunity = await self.detector.evaluate()
        if opportunity is not None:
            await self.engine.execute(opportunity)

    def status(self) -> dict[str, Any]:
        quote = self._latest_quote()
        up_id = self._instruments.up_id if self._instruments else ""
        down_id = self._instruments.down_id if self._instruments else ""
        return {
            **self.engine.status(),
            "oracle_up": round(quote.prob_up, 4) if quote else None,
            "oracle_down": round(quote.prob_down, 4) if quote else None,
            "market_up": round(self.tracker.get_market_price(up_id), 4),
            "market_down": round(self.tracker.get_market_price(down_id), 4),
        }

    def _latest_quote(self) -> Any:
        source = self.remote_oracle or self.price_oracle
        return source.latest_quote() if source is not None else None

    async def _cleanup_tick(self) -> None:
        self.engine.cleanup_once()

    async def _balance_tick(self) -> None:
        await self.engine.balance_check_once(
            self.venue,
            self.settings.venue_account,
            minimum_balance=self.settings.minimum_balance,
            minimum_gas=self.settings.minimum_gas,
        )

    async def _status_tick(self) -> None:
        self._logger.info("engine_status", **self.status())

    def _mark_paper(self, instrument_id: str) -> None:
        if isinstance(self.venue, PaperVenue):
            self.venue.mark_price(instrument_id, self.tracker.get_market_price(instrument_id))
