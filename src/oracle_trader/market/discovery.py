"""Resolve the currently tradable UP/DOWN instrument pair."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Sequence
from zoneinfo import ZoneInfo

import httpx

from oracle_trader.config import Settings
from oracle_trader.types import InstrumentPair
from oracle_trader.utils.logging import get_logger

_EASTERN = ZoneInfo("America/New_York")
_ACTIVE_LIMIT = 50


class DiscoveryError(Exception):
    """Raised when no tradable instrument pair can be resolved."""


def hour_label(hour: int) -> str:
    """24h hour -> ``12am``, ``9am``, ``12pm``, ``3pm``."""
    if hour == 0:
        return "12am"
    if hour < 12:
        return f"{hour}am"
    if hour == 12:
        return "12pm"
    return f"{hour - 12}pm"


def hourly_slug(prefix: str, when: datetime) -> str:
    """Slug of the hourly market covering ``when`` (converted to US Eastern)."""
    local = when.astimezone(_EASTERN) if when.tzinfo else when
    month = local.strftime("%B").lower()
    return f"{prefix}-{month}-{local.day}-{hour_label(local.hour)}-et"


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return []
    return list(value) if isinstance(value, (list, tuple)) else []


def _markets(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict) and isinstance(payload.get("data"), list):
        items = payload["data"]
    else:
        items = []
    return [m for m in items if isinstance(m, dict)]


def pair_from_market(market: dict[str, Any]) -> InstrumentPair:
    """Map a market's outcome tokens to (UP, DOWN); falls back to positions 0/1."""
    token_ids = _as_list(market.get("clobTokenIds"))
    outcomes = [str(o).lower() for o in _as_list(market.get("outcomes"))]
    if len(token_ids) < 2:
        raise DiscoveryError("market_has_fewer_than_two_tokens")

    up_index = next((i for i, o in enumerate(outcomes) if "up" in o or "yes" in o), 0)
    down_index = next((i for i, o in enumerate(outcomes) if "down" in o or "no" in o), 1)
    if up_index >= len(token_ids) or down_index >= len(token_ids):
        up_index, down_index = 0, 1
    return InstrumentPair(
        up_id=str(token_ids[up_index]),
        down_id=str(token_ids[down_index]),
        question=str(market.get("question") or ""),
    )


class InstrumentDiscovery:
    """Looks up the hourly market by slug, then scans active markets by keyword."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        url: str = "https://gamma-api.polymarket.com/markets",
        slug_prefix: str = "bitcoin-up-or-down",
        keywords: Sequence[str] = ("bitcoin", "btc"),
    ) -> None:
        self._client = client
        self._url = url
        self._slug_prefix = slug_prefix
        self._keywords = [k.lower() for k in keywords]
        self._logger = get_logger("oracle_trader.market.discovery")

    @classmethod
    def from_settings(cls, settings: Settings, client: httpx.AsyncClient) -> "InstrumentDiscovery":
        return cls(
            client,
            url=settings.discovery_url,
            slug_prefix=settings.discovery_slug_prefix,
            keywords=settings.discovery_keywords,
        )

    async def discover(self, when: datetime | None = None) -> InstrumentPair:
        when = when or datetime.now(tz=_EASTERN)
        slug = hourly_slug(self._slug_prefix, when)
        self._logger.info("market_lookup", slug=slug)

        markets = await self._get({"slug": slug})
        market = markets[0] if markets else None
        if market is None:
            self._logger.info("market_slug_not_found", slug=slug)
            active = await self._get({"active": "true", "closed": "false", "limit": _ACTIVE_LIMIT})
            market = next((m for m in active if self._matches(m)), None)
        if market is None:
            raise DiscoveryError("no_active_market_found")

        pair = pair_from_market(market)
        self._logger.info(
            "market_found",
            question=pair.question,
            up_id=pair.up_id[:20],
            down_id=pair.down_id[:20],
        )
        return pair

    def _matches(self, market: dict[str, Any]) -> bool:
        question = str(market.get("question") or "").lower()
        return (
            any(k in question for k in self._keywords)
            and "up" in question
            and "down" in question
        )

    async def _get(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            response = await self._client.get(self._url, params=params)
            response.raise_for_status()
            return _markets(response.json())
        except (httpx.HTTPError, ValueError) as exc:
            raise DiscoveryError(f"discovery_request_failed: {exc}") from exc
