from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import httpx
import pytest

from oracle_trader.market.discovery import (
    DiscoveryError,
    InstrumentDiscovery,
    hour_label,
    hourly_slug,
    pair_from_market,
)

_WHEN = datetime(2024, 7, 4, 16, 0, tzinfo=timezone.utc)


def _market(question: str = "Bitcoin Up or Down - July 4, 12PM ET") -> dict[str, object]:
    return {
        "question": question,
        "outcomes": json.dumps(["Up", "Down"]),
        "clobTokenIds": json.dumps(["111", "222"]),
    }


def _discovery(handler) -> InstrumentDiscovery:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return InstrumentDiscovery(client, url="https://markets.test/markets")


def test_hour_labels() -> None:
    assert [hour_label(h) for h in (0, 9, 12, 15)] == ["12am", "9am", "12pm", "3pm"]


def test_hourly_slug_uses_eastern_time() -> None:
    assert hourly_slug("bitcoin-up-or-down", _WHEN) == "bitcoin-up-or-down-july-4-12pm-et"
    local = datetime(2024, 1, 15, 14, 30, tzinfo=ZoneInfo("America/New_York"))
    assert hourly_slug("btc", local) == "btc-january-15-2pm-et"


def test_pair_follows_outcome_labels() -> None:
    market = {"outcomes": ["Down", "Up"], "clobTokenIds": ["d", "u"]}
    pair = pair_from_market(market)
    assert (pair.up_id, pair.down_id) == ("u", "d")

    with pytest.raises(DiscoveryError):
        pair_from_market({"clobTokenIds": "[\"only\"]"})


def test_discover_by_slug() -> None:
    seen: list[dict[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(dict(request.url.params))
        return httpx.Response(200, json=[_market()])

    pair = asyncio.run(_discovery(handler).discover(_WHEN))

    assert pair.up_id == "111"
    assert pair.down_id == "222"
    assert seen == [{"slug": "bitcoin-up-or-down-july-4-12pm-et"}]


def test_discover_falls_back_to_keyword_scan() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if "slug" in request.url.params:
            return httpx.Response(200, json=[])
        assert request.url.params["active"] == "true"
        return httpx.Response(
            200,
            json=[
                _market("Will it rain tomorrow?"),
                {**_market("BTC up or down this hour"), "clobTokenIds": ["a", "b"]},
            ],
        )

    pair = asyncio.run(_discovery(handler).discover(_WHEN))

    assert (pair.up_id, pair.down_id) == ("a", "b")


def test_discover_raises_when_nothing_matches() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[])

    with pytest.raises(DiscoveryError):
        asyncio.run(_discovery(handler).discover(_WHEN))


def test_discover_wraps_http_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    with pytest.raises(DiscoveryError, match="discovery_request_failed"):
        asyncio.run(_discovery(handler).discover(_WHEN))
