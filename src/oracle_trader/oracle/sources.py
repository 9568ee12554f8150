"""Spot price sources polled by the price oracle."""

from __future__ import annotations

import math
from typing import Any, Callable, Protocol

import httpx

_USER_AGENT = "oracle-trader/0.1"


class PriceSourceError(Exception):
    """Raised when a source cannot produce a positive price."""


class PriceSource(Protocol):
    """One independent spot price feed."""

    name: str

    async def fetch_price(self) -> float: ...


class HttpPriceSource:
    """JSON-over-HTTP ticker endpoint with a response parser."""

    def __init__(
        self,
        name: str,
        url: str,
        parser: Callable[[Any], float],
        client: httpx.AsyncClient,
    ) -> None:
        self.name = name
        self._url = url
        self._parser = parser
        self._client = client

    async def fetch_price(self) -> float:
        try:
            response = await self._client.get(self._url, headers={"User-Agent": _USER_AGENT})
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise PriceSourceError(f"{self.name}: {exc}") from exc

        try:
            price = float(self._parser(payload))
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise PriceSourceError(f"{self.name}: unexpected_payload") from exc
        if not math.isfinite(price) or price <= 0:
            raise PriceSourceError(f"{self.name}: invalid_price")
        return price


def _parse_binance(payload: Any) -> float:
    return float(payload["price"])


def _parse_coinbase(payload: Any) -> float:
    return float(payload["data"]["amount"])


def _parse_kraken(payload: Any) -> float:
    return float(payload["result"]["XXBTZUSD"]["c"][0])


def default_sources(client: httpx.AsyncClient) -> list[HttpPriceSource]:
    """BTC/USD spot tickers from three independent exchanges."""
    return [
        HttpPriceSource(
            "binance",
            "https://api.binance.com/api/v3/ticker/price?symbol=BTCUSDT",
            _parse_binance,
            client,
        ),
        HttpPriceSource(
            "coinbase",
            "https://api.coinbase.com/v2/prices/BTC-USD/spot",
            _parse_coinbase,
            client,
        ),
        HttpPriceSource(
            "kraken",
            "https://api.kraken.com/0/public/Ticker?pair=XBTUSD",
            _parse_kraken,
            client,
        ),
    ]
