from __future__ import annotations

import asyncio

import pytest

from oracle_trader.runtime.clock import VirtualClock
from oracle_trader.utils.rate_limiter import RateLimitedCaller, is_rate_limit_error


class _Flaky:
    def __init__(self, failures: int, message: str = "connection reset") -> None:
        self.failures = failures
        self.message = message
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(self.message)
        return "ok"


def test_retry_succeeds_on_fourth_attempt_with_doubling_delays() -> None:
    clock = VirtualClock()
    caller = RateLimitedCaller(max_retries=4, base_delay=1.0, max_delay=16.0, clock=clock)
    thunk = _Flaky(failures=3)

    result = asyncio.run(caller.call("submit-order", thunk))

    assert result == "ok"
    assert thunk.calls == 4
    assert clock.sleeps == [1.0, 2.0, 4.0]


def test_retry_delay_is_capped() -> None:
    clock = VirtualClock()
    caller = RateLimitedCaller(max_retries=4, base_delay=1.0, max_delay=3.0, clock=clock)
    thunk = _Flaky(failures=4)

    asyncio.run(caller.call("op", thunk))

    assert clock.sleeps == [1.0, 2.0, 3.0, 3.0]


def test_exhausted_retries_reraise_last_error() -> None:
    clock = VirtualClock()
    caller = RateLimitedCaller(max_retries=2, base_delay=1.0, clock=clock)
    thunk = _Flaky(failures=10, message="HTTP 429 Too Many Requests")

    with pytest.raises(RuntimeError, match="429"):
        asyncio.run(caller.call("balance-check", thunk))

    assert thunk.calls == 3
    assert clock.sleeps == [1.0, 2.0]


def test_calls_with_same_key_are_spaced() -> None:
    clock = VirtualClock()
    caller = RateLimitedCaller(min_interval=0.5, clock=clock)

    async def _ok() -> int:
        return 1

    async def _run() -> None:
        await caller.call("get-orders", _ok)
        await caller.call("get-orders", _ok)
        await caller.call("cancel-order", _ok)

    asyncio.run(_run())

    # only the repeated key waits
    assert clock.sleeps == [0.5]


def test_rate_limit_pattern_detection() -> None:
    assert is_rate_limit_error(RuntimeError("status 429"))
    assert is_rate_limit_error(RuntimeError("Rate limit exceeded"))
    assert is_rate_limit_error(RuntimeError("too many requests"))
    assert not is_rate_limit_error(RuntimeError("connection refused"))


def test_negative_retry_count_rejected() -> None:
    with pytest.raises(ValueError):
        RateLimitedCaller(max_retries=-1)
