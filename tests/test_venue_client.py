from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from oracle_trader.config import Settings
from oracle_trader.exec.venue import RestVenueClient, VenueAPIError


def _client(handler, **overrides: object) -> RestVenueClient:
    settings = Settings(venue_api_url="https://gateway.test", venue_api_key="k", venue_api_secret="s", **overrides)
    http = httpx.AsyncClient(base_url=settings.venue_api_url, transport=httpx.MockTransport(handler))
    return RestVenueClient(settings, client=http)


def test_submit_sends_signed_order() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"orderID": "abc"})

    order_id = asyncio.run(_client(handler).submit_order("up", "BUY", 0.70712, 7.142857))

    assert order_id == "abc"
    sent = requests[0]
    assert sent.method == "POST"
    assert sent.url.path == "/orders"
    assert sent.headers["X-API-Key"] == "k"
    body = json.loads(sent.content)
    assert body == {"instrument_id": "up", "side": "BUY", "price": 0.7071, "size": 7.1429, "order_type": "GTC"}


def test_open_orders_and_cancel() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "DELETE":
            return httpx.Response(200, json={"cancelled": False})
        assert request.url.params["status"] == "open"
        return httpx.Response(
            200,
            json={"orders": [{"id": "o1"}, {"order_id": "o2"}, {"status": "open"}, {"id": None}]},
        )

    client = _client(handler)
    assert asyncio.run(client.list_open_orders()) == {"o1", "o2"}
    assert asyncio.run(client.cancel_order("o1")) is False


def test_balance_payload() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/balance/acct"
        return httpx.Response(200, json={"trade_currency": "812.5", "gas_currency": 0.3})

    balance = asyncio.run(_client(handler).get_balance("acct"))
    assert balance.trade_currency == pytest.approx(812.5)
    assert balance.gas_currency == pytest.approx(0.3)


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(429, text="Too Many Requests"),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={"error": "price out of range"}),
    ],
)
def test_gateway_failures_raise_venue_error(response: httpx.Response) -> None:
    client = _client(lambda request: response)
    with pytest.raises(VenueAPIError):
        asyncio.run(client.submit_order("up", "SELL", 0.71, 1.0))


def test_missing_key_rejected_before_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    settings = Settings(venue_api_url="https://gateway.test")
    client = RestVenueClient(settings, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(VenueAPIError, match="missing_venue_api_key"):
        asyncio.run(client.list_open_orders())
