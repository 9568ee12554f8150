"""Streaming collaborators: payload validation and reconnecting websocket connections."""

from __future__ import annotations

import inspect
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Literal

import websockets
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from websockets.exceptions import WebSocketException

from oracle_trader.runtime.clock import Clock, SystemClock
from oracle_trader.types import InstrumentPair, OrderLevel
from oracle_trader.utils.logging import get_logger


class PayloadError(Exception):
    """Raised when a feed message does not match any known payload shape."""


class LevelPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    price: float = Field(ge=0.0)
    size: float = Field(default=0.0, ge=0.0)


class OracleUpdate(BaseModel):
    """Directional probabilities pushed by the oracle feed (fractions, not percent)."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["oracle_update"] = "oracle_update"
    prob_up: float = Field(ge=0.0, le=1.0)
    prob_down: float = Field(ge=0.0, le=1.0)


class DepthUpdate(BaseModel):
    """Full depth for one instrument, best level first on each side."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["depth_update"] = "depth_update"
    instrument_id: str = Field(min_length=1)
    bids: list[LevelPayload] = Field(default_factory=list)
    asks: list[LevelPayload] = Field(default_factory=list)

    def bid_levels(self) -> list[OrderLevel]:
        return [OrderLevel(price=lv.price, size=lv.size) for lv in self.bids if lv.price > 0]

    def ask_levels(self) -> list[OrderLevel]:
        return [OrderLevel(price=lv.price, size=lv.size) for lv in self.asks if lv.price > 0]


class TopOfBook(BaseModel):
    """Last traded / quoted price for one instrument."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["top_of_book"] = "top_of_book"
    instrument_id: str = Field(min_length=1)
    price: float = Field(gt=0.0)


MarketEvent = DepthUpdate | TopOfBook


def _decode(raw: str | bytes) -> Any:
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise PayloadError("message_not_json") from exc


def parse_oracle_message(raw: str | bytes) -> OracleUpdate:
    """Parse an ``oracle_update`` broadcast; wire probabilities are in percent."""
    message = _decode(raw)
    if not isinstance(message, dict):
        raise PayloadError("oracle_message_not_object")
    if "prob_up" not in message or "prob_down" not in message:
        raise PayloadError("oracle_message_missing_probabilities")
    try:
        return OracleUpdate(
            prob_up=float(message["prob_up"]) / 100.0,
            prob_down=float(message["prob_down"]) / 100.0,
        )
    except (TypeError, ValueError, ValidationError) as exc:
        raise PayloadError(f"oracle_message_invalid: {exc}") from exc


def parse_market_message(raw: str | bytes) -> list[MarketEvent]:
    """Turn one market-data message into zero or more tagged events.

    Accepts ``{"topic": "clob_market", "payload": {...}}`` envelopes, bare
    book objects carrying ``asset_id``, and lists of either.
    """
    message = _decode(raw)
    items = message if isinstance(message, list) else [message]
    events: list[MarketEvent] = []
    for item in items:
        if not isinstance(item, dict):
            raise PayloadError("market_message_not_object")
        if "topic" in item:
            if item["topic"] != "clob_market":
                continue
            body = item.get("payload") or {}
        else:
            body = item
        if not isinstance(body, dict):
            raise PayloadError("market_payload_not_object")
        events.extend(_market_events(body))
    return events


def _market_events(body: dict[str, Any]) -> list[MarketEvent]:
    instrument_id = str(body.get("asset_id") or "")
    if not instrument_id:
        raise PayloadError("market_payload_missing_asset_id")
    events: list[MarketEvent] = []
    try:
        if body.get("price") not in (None, ""):
            price = float(body["price"])
            if price > 0:
                events.append(TopOfBook(instrument_id=instrument_id, price=price))
        bids = body.get("bids") or []
        asks = body.get("asks") or []
        if bids or asks:
            events.append(DepthUpdate(instrument_id=instrument_id, bids=bids, asks=asks))
    except (TypeError, ValueError, ValidationError) as exc:
        raise PayloadError(f"market_payload_invalid: {exc}") from exc
    return events


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True, slots=True)
class ReconnectPolicy:
    """Fixed delay between reconnect attempts, no growth."""

    delay_s: float = 5.0

    def next_delay(self, attempt: int) -> float:
        return self.delay_s


MessageHandler = Callable[[Any], Awaitable[None] | None]
OpenHandler = Callable[[Any], Awaitable[None]]
StateHandler = Callable[[ConnectionState], None]


class StreamConnection:
    """One websocket kept open for as long as the connection is running.

    disconnected -> connecting -> connected -> disconnected -> (delay) -> connecting ...
    """

    def __init__(
        self,
        name: str,
        url: str,
        on_message: MessageHandler,
        *,
        policy: ReconnectPolicy | None = None,
        clock: Clock | None = None,
        on_open: OpenHandler | None = None,
        on_state_change: StateHandler | None = None,
        connect: Callable[[str], Any] = websockets.connect,
    ) -> None:
        self.name = name
        self._url = url
        self._on_message = on_message
        self._policy = policy or ReconnectPolicy()
        self._clock = clock or SystemClock()
        self._on_open = on_open
        self._on_state_change = on_state_change
        self._connect = connect
        self._state = ConnectionState.DISCONNECTED
        self._running = False
        self._ws: Any = None
        self._logger = get_logger("oracle_trader.market.feeds")

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def running(self) -> bool:
        return self._running

    async def run(self) -> None:
        """Connect and pump messages until ``close``; reconnect after each drop."""
        self._running = True
        attempt = 0
        while self._running:
            self._set_state(ConnectionState.CONNECTING)
            self._logger.info("stream_connecting", stream=self.name, url=self._url)
            try:
                async with self._connect(self._url) as ws:
                    self._ws = ws
                    self._set_state(ConnectionState.CONNECTED)
                    attempt = 0
                    if self._on_open is not None:
                        await self._on_open(ws)
                    async for raw in ws:
                        result = self._on_message(raw)
                        if inspect.isawaitable(result):
                            await result
                self._logger.warning("stream_closed", stream=self.name)
            except (OSError, WebSocketException) as exc:
                self._logger.warning("stream_error", stream=self.name, error=str(exc))
            finally:
                self._ws = None
                self._set_state(ConnectionState.DISCONNECTED)

            if not self._running:
                break
            attempt += 1
            delay = self._policy.next_delay(attempt)
            self._logger.info("stream_reconnecting", stream=self.name, delay_s=delay, attempt=attempt)
            await self._clock.sleep(delay)

    async def close(self) -> None:
        self._running = False
        ws = self._ws
        if ws is not None:
            await ws.close()

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        if self._on_state_change is not None:
            self._on_state_change(state)


class OracleFeed:
    """Oracle probability stream dispatching to ``on_oracle_update(prob_up, prob_down)``."""

    def __init__(
        self,
        url: str,
        on_oracle_update: Callable[[float, float], None],
        *,
        policy: ReconnectPolicy | None = None,
        clock: Clock | None = None,
        connect: Callable[[str], Any] = websockets.connect,
    ) -> None:
        self._on_oracle_update = on_oracle_update
        self._logger = get_logger("oracle_trader.market.feeds")
        self.connection = StreamConnection(
            "oracle",
            url,
            self.handle_message,
            policy=policy,
            clock=clock,
            connect=connect,
        )

    def handle_message(self, raw: str | bytes) -> None:
        try:
            update = parse_oracle_message(raw)
        except PayloadError as exc:
            self._logger.warning("oracle_payload_rejected", error=str(exc))
            return
        self._on_oracle_update(update.prob_up, update.prob_down)


class MarketDataFeed:
    """Depth/top-of-book stream for the current instrument pair."""

    def __init__(
        self,
        url: str,
        instruments: InstrumentPair,
        *,
        on_depth_update: Callable[[str, list[OrderLevel], list[OrderLevel]], None],
        on_top_of_book: Callable[[str, float], None],
        policy: ReconnectPolicy | None = None,
        clock: Clock | None = None,
        connect: Callable[[str], Any] = websockets.connect,
    ) -> None:
        self._instruments = instruments
        self._on_depth_update = on_depth_update
        self._on_top_of_book = on_top_of_book
        self._logger = get_logger("oracle_trader.market.feeds")
        self.connection = StreamConnection(
            "market",
            url,
            self.handle_message,
            policy=policy,
            clock=clock,
            on_open=self._subscribe,
            connect=connect,
        )

    def subscribe_message(self) -> dict[str, Any]:
        return {
            "action": "subscribe",
            "subscriptions": [
                {
                    "topic": "clob_market",
                    "type": "*",
                    "filters": json.dumps([self._instruments.up_id, self._instruments.down_id]),
                }
            ],
        }

    def handle_message(self, raw: str | bytes) -> None:
        try:
            events = parse_market_message(raw)
        except PayloadError as exc:
            self._logger.warning("market_payload_rejected", error=str(exc))
            return
        for event in events:
            if isinstance(event, TopOfBook):
                self._on_top_of_book(event.instrument_id, event.price)
            else:
                self._on_depth_update(event.instrument_id, event.bid_levels(), event.ask_levels())

    async def _subscribe(self, ws: Any) -> None:
        await ws.send(json.dumps(self.subscribe_message()))
        self._logger.debug("market_subscribed", instruments=[self._instruments.up_id, self._instruments.down_id])
