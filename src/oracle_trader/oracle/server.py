"""Websocket server broadcasting oracle probabilities to trading engines."""

from __future__ import annotations

import json
from typing import Any

import websockets

from oracle_trader.config import Settings
from oracle_trader.oracle.price_oracle import PriceOracle
from oracle_trader.runtime.clock import Clock, SystemClock
from oracle_trader.runtime.scheduler import Scheduler
from oracle_trader.utils.logging import get_logger

_BROADCAST_TASK = "oracle-broadcast"
_WARMUP_POLL_S = 0.5


def build_update_message(oracle: PriceOracle) -> dict[str, Any]:
    """Oracle snapshot in the wire format consumed by ``OracleFeed`` (percentages)."""
    snap = oracle.snapshot()
    return {
        "type": "oracle_update",
        "prob_up": snap.prob_up * 100,
        "prob_down": snap.prob_down * 100,
        "price": snap.current_price,
        "momentum": snap.momentum,
        "volatility": snap.volatility,
        "confidence": snap.confidence,
        "change_1m": snap.price_change_1m * 100,
        "change_5m": snap.price_change_5m * 100,
        "change_15m": snap.price_change_15m * 100,
        "sources": snap.sources,
        "timestamp": snap.timestamp,
    }


class OracleFeedServer:
    """Runs a ``PriceOracle`` and pushes its probabilities to connected clients."""

    def __init__(
        self,
        oracle: PriceOracle,
        *,
        scheduler: Scheduler,
        clock: Clock | None = None,
        host: str = "0.0.0.0",
        port: int = 5001,
        broadcast_interval_s: float = 1.0,
        min_history: int = 5,
        warmup_timeout_s: float = 10.0,
    ) -> None:
        self._oracle = oracle
        self._scheduler = scheduler
        self._clock = clock or SystemClock()
        self._host = host
        self._port = port
        self._broadcast_interval_s = broadcast_interval_s
        self._min_history = min_history
        self._warmup_timeout_s = warmup_timeout_s
        self._clients: set[Any] = set()
        self._server: Any = None
        self._logger = get_logger("oracle_trader.oracle.server")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        oracle: PriceOracle,
        *,
        scheduler: Scheduler,
        clock: Clock | None = None,
    ) -> "OracleFeedServer":
        return cls(
            oracle,
            scheduler=scheduler,
            clock=clock,
            host=settings.oracle_host,
            port=settings.oracle_port,
            broadcast_interval_s=settings.oracle_broadcast_interval_s,
        )

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def start(self) -> None:
        self._logger.info("oracle_server_starting", host=self._host, port=self._port)
        await self._oracle.start()
        await self._wait_for_data()
        self._server = await websockets.serve(self._handle_client, self._host, self._port)
        self._scheduler.every(_BROADCAST_TASK, self._broadcast_interval_s, self.broadcast)
        self._logger.info(
            "oracle_server_started",
            url=f"ws://{self._host}:{self._port}",
            sources=self._oracle.active_sources,
        )

    async def stop(self) -> None:
        self._logger.info("oracle_server_stopping", clients=len(self._clients))
        self._scheduler.cancel(_BROADCAST_TASK)
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        self._clients.clear()
        self._oracle.stop()
        self._logger.info("oracle_server_stopped")

    def handle_message(self, raw: str | bytes) -> dict[str, Any] | None:
        """Reply for one client request; unknown or malformed requests get none."""
        try:
            message = json.loads(raw)
        except ValueError:
            return None
        if not isinstance(message, dict):
            return None
        kind = message.get("type")
        if kind == "ping":
            return {"type": "pong", "timestamp": self._clock.now()}
        if kind == "get_status":
            return {
                "type": "status",
                "healthy": self._oracle.is_healthy(),
                "clients": len(self._clients),
                "history_length": self._oracle.history_length,
            }
        return None

    async def broadcast(self) -> None:
        if not self._clients:
            return
        websockets.broadcast(self._clients, json.dumps(build_update_message(self._oracle)))

    def status(self) -> dict[str, Any]:
        snap = self._oracle.snapshot()
        return {
            "running": self._server is not None,
            "healthy": self._oracle.is_healthy(),
            "clients": len(self._clients),
            "current_price": snap.current_price,
            "prob_up": snap.prob_up,
            "prob_down": snap.prob_down,
        }

    async def _wait_for_data(self) -> None:
        started = self._clock.now()
        while self._clock.now() - started < self._warmup_timeout_s:
            if self._oracle.history_length >= self._min_history:
                self._logger.info("oracle_warm", history_length=self._oracle.history_length)
                return
            await self._clock.sleep(_WARMUP_POLL_S)
        self._logger.warning("oracle_warmup_timeout", history_length=self._oracle.history_length)

    async def _handle_client(self, connection: Any) -> None:
        self._clients.add(connection)
        self._logger.info("oracle_client_connected", clients=len(self._clients))
        try:
            await connection.send(json.dumps(build_update_message(self._oracle)))
            async for raw in connection:
                reply = self.handle_message(raw)
                if reply is not None:
                    await connection.send(json.dumps(reply))
        except websockets.ConnectionClosed:
            pass
        finally:
            self._clients.discard(connection)
            self._logger.info("oracle_client_disconnected", clients=len(self._clients))
