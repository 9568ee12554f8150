from __future__ import annotations

import asyncio

import httpx
import pytest

from oracle_trader.oracle.sources import PriceSourceError, default_sources

_PAYLOADS = {
    "api.binance.com": {"symbol": "BTCUSDT", "price": "64000.10"},
    "api.coinbase.com": {"data": {"amount": "64010.00", "currency": "USD"}},
    "api.kraken.com": {"result": {"XXBTZUSD": {"c": ["63990.5", "0.01"]}}},
}


def _sources(handler):
    return default_sources(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def test_default_sources_parse_exchange_payloads() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_PAYLOADS[request.url.host])

    async def _fetch() -> dict[str, float]:
        return {s.name: await s.fetch_price() for s in _sources(handler)}

    prices = asyncio.run(_fetch())

    assert prices == {
        "binance": pytest.approx(64000.10),
        "coinbase": pytest.approx(64010.0),
        "kraken": pytest.approx(63990.5),
    }


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, text="<html>"),
        httpx.Response(200, json={"unexpected": True}),
        httpx.Response(200, json={"price": "0"}),
        httpx.Response(200, json={"price": "NaN"}),
        httpx.Response(200, json={"price": "inf"}),
    ],
)
def test_bad_responses_raise_source_error(response: httpx.Response) -> None:
    source = _sources(lambda request: response)[0]
    with pytest.raises(PriceSourceError, match="binance"):
        asyncio.run(source.fetch_price())
