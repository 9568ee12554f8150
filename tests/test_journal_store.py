from __future__ import annotations

from pathlib import Path

import pytest

from oracle_trader.journal.store import JournalStore, to_payload
from oracle_trader.types import OrderLevel


def test_append_and_load_recent(tmp_path: Path) -> None:
    store = JournalStore(tmp_path)
    for i in range(4):
        store.append("order", {"order_id": f"o{i}"})
    store.append("trade_close", {"trade_id": "trade-1", "pnl": 0.07})

    rows = store.load_recent(3)

    assert [row["event_type"] for row in rows] == ["order", "order", "trade_close"]
    assert rows[0]["payload"] == {"order_id": "o2"}
    assert "timestamp" in rows[-1]


def test_load_recent_filters_by_event_type(tmp_path: Path) -> None:
    store = JournalStore(tmp_path)
    store.append("engine_start", {"mode": "paper"})
    store.append("order", {"order_id": "o1"})
    store.append("engine_stop", {})

    rows = store.load_recent(10, event_type="order")

    assert len(rows) == 1
    assert rows[0]["payload"]["order_id"] == "o1"
    assert store.load_recent(0) == []


def test_unknown_event_type_rejected(tmp_path: Path) -> None:
    store = JournalStore(tmp_path)
    with pytest.raises(ValueError, match="unsupported_event_type"):
        store.append("signal", {})


def test_payload_from_dataclass_or_mapping() -> None:
    assert to_payload(OrderLevel(price=0.5, size=2.0)) == {"price": 0.5, "size": 2.0}
    assert to_payload({"a": 1}) == {"a": 1}
