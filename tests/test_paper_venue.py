from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from oracle_trader.exec.paper import PaperVenue
from oracle_trader.exec.venue import VenueAPIError


def test_buy_fills_immediately_and_debits_balance() -> None:
    venue = PaperVenue(initial_balance=100.0)

    order_id = asyncio.run(venue.submit_order("up", "BUY", 0.5, 10.0))

    assert venue.balance == pytest.approx(95.0)
    assert order_id not in asyncio.run(venue.list_open_orders())
    assert venue.fills[0]["order_id"] == order_id


def test_buy_beyond_balance_rejected() -> None:
    venue = PaperVenue(initial_balance=1.0)
    with pytest.raises(VenueAPIError):
        asyncio.run(venue.submit_order("up", "BUY", 0.5, 10.0))


def test_exit_pair_fills_on_touch() -> None:
    venue = PaperVenue(initial_balance=100.0)
    venue.mark_price("up", 0.70)

    async def _arm() -> tuple[str, str]:
        take_profit = await venue.submit_order("up", "SELL", 0.71, 10.0)
        stop_loss = await venue.submit_order("up", "SELL", 0.695, 10.0)
        return take_profit, stop_loss

    take_profit, stop_loss = asyncio.run(_arm())
    assert venue.mark_price("up", 0.705) == []
    assert venue.mark_price("up", 0.712) == [take_profit]
    assert asyncio.run(venue.list_open_orders()) == {stop_loss}
    assert venue.balance == pytest.approx(107.1)

    assert asyncio.run(venue.cancel_order(stop_loss))
    assert not asyncio.run(venue.cancel_order(stop_loss))


def test_stop_fills_on_drop() -> None:
    venue = PaperVenue()
    venue.mark_price("up", 0.70)
    stop_loss = asyncio.run(venue.submit_order("up", "SELL", 0.695, 1.0))
    assert venue.mark_price("down", 0.10) == []
    assert venue.mark_price("up", 0.69) == [stop_loss]


def test_balance_persisted_between_sessions(tmp_path: Path) -> None:
    first = PaperVenue(tmp_path, initial_balance=50.0)
    asyncio.run(first.submit_order("up", "BUY", 0.5, 20.0))

    second = PaperVenue(tmp_path, initial_balance=50.0)
    balance = asyncio.run(second.get_balance("paper"))

    assert balance.trade_currency == pytest.approx(40.0)
    assert (tmp_path / "paper_state.json").exists()
