"""Trading venue interfaces and the REST gateway client."""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from oracle_trader.config import Settings
from oracle_trader.types import BalanceInfo, Side
from oracle_trader.utils.logging import get_logger


class VenueError(Exception):
    """Base trading venue error."""


class VenueAPIError(VenueError):
    """Raised when a gateway call fails in transport or returns an error status."""


class TradingVenue(Protocol):
    """Order entry; an order leaving the open set is the only fill/cancel signal."""

    async def submit_order(self, instrument_id: str, side: Side, price: float, size: float) -> str: ...

    async def cancel_order(self, order_id: str) -> bool: ...

    async def list_open_orders(self) -> set[str]: ...


class BalanceProvider(Protocol):
    async def get_balance(self, account: str) -> BalanceInfo: ...


class RestVenueClient:
    """Thin async client for an order gateway that signs and forwards venue requests."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = client or httpx.AsyncClient(
            base_url=settings.venue_api_url,
            timeout=settings.venue_timeout,
        )
        self._logger = get_logger("oracle_trader.exec.venue")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def submit_order(self, instrument_id: str, side: Side, price: float, size: float) -> str:
        payload = {
            "instrument_id": instrument_id,
            "side": side,
            "price": round(price, 4),
            "size": round(size, 4),
            "order_type": "GTC",
        }
        body = await self._request("POST", "/orders", json=payload)
        order_id = body.get("order_id") or body.get("orderID") or body.get("id")
        if not order_id:
            raise VenueAPIError(f"order_rejected: {body.get('error') or body}")
        return str(order_id)

    async def cancel_order(self, order_id: str) -> bool:
        body = await self._request("DELETE", f"/orders/{order_id}")
        return bool(body.get("cancelled", True))

    async def list_open_orders(self) -> set[str]:
        body = await self._request("GET", "/orders", params={"status": "open"})
        orders = body.get("orders", []) if isinstance(body, dict) else []
        ids = (o.get("id") or o.get("order_id") for o in orders if isinstance(o, dict))
        return {str(order_id) for order_id in ids if order_id}

    async def get_balance(self, account: str) -> BalanceInfo:
        body = await self._request("GET", f"/balance/{account}")
        try:
            return BalanceInfo(
                trade_currency=float(body["trade_currency"]),
                gas_currency=float(body["gas_currency"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise VenueAPIError(f"unexpected_balance_payload: {body}") from exc

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        if not self._settings.venue_api_key:
            raise VenueAPIError("missing_venue_api_key")
        headers = {
            "X-API-Key": self._settings.venue_api_key,
            "X-API-Secret": self._settings.venue_api_secret,
            "Content-Type": "application/json",
        }
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
            response.raise_for_status()
            body = response.json() if response.content else {}
        except httpx.HTTPStatusError as exc:
            raise VenueAPIError(
                f"venue_http_error: {exc.response.status_code} {exc.response.text[:200]}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise VenueAPIError(f"venue_request_failed: {exc}") from exc

        if not isinstance(body, dict):
            raise VenueAPIError("unexpected_response_shape")
        self._logger.debug("venue_call", method=method, path=path, status=response.status_code)
        return body
