"""Per-key call spacing with exponential-backoff retry for outbound calls."""

from __future__ import annotations

from typing import Awaitable, Callable, TypeVar

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_exponential

from oracle_trader.config import Settings
from oracle_trader.runtime.clock import Clock, SystemClock
from oracle_trader.utils.logging import get_logger

T = TypeVar("T")

_RATE_LIMIT_MARKERS = ("429", "rate limit", "too many requests")


def is_rate_limit_error(exc: BaseException) -> bool:
    """Best-effort detection of a rate-limit rejection from the error text."""
    text = str(exc).lower()
    return any(marker in text for marker in _RATE_LIMIT_MARKERS)


class RateLimitedCaller:
    """Spaces calls per operation key and retries failures with backoff.

    Retry delay for attempt ``n`` (0-based) is ``min(base * 2**n, cap)``.
    Every error is retried the same way; callers that need fatal errors to
    short-circuit must wrap the thunk themselves.
    """

    def __init__(
        self,
        *,
        min_interval: float = 0.1,
        max_retries: int = 4,
        base_delay: float = 1.0,
        max_delay: float = 16.0,
        clock: Clock | None = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries_must_be_non_negative")
        self._min_interval = min_interval
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._clock = clock or SystemClock()
        self._last_call: dict[str, float] = {}
        self._logger = get_logger("oracle_trader.utils.rate_limiter")

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock | None = None) -> "RateLimitedCaller":
        return cls(
            min_interval=settings.api_min_interval_s,
            max_retries=settings.api_max_retries,
            base_delay=settings.api_base_delay_s,
            max_delay=settings.api_max_delay_s,
            clock=clock,
        )

    async def call(self, operation_key: str, thunk: Callable[[], Awaitable[T]]) -> T:
        """Run ``thunk`` under spacing and retry; re-raises the last error."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_exponential(multiplier=self._base_delay, max=self._max_delay),
            sleep=self._clock.sleep,
            before_sleep=lambda state: self._log_retry(operation_key, state),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._wait_for_slot(operation_key)
                    result = await thunk()
        except Exception as exc:
            if is_rate_limit_error(exc):
                self._logger.error(
                    "api_call_rate_limited",
                    operation=operation_key,
                    attempts=self._max_retries + 1,
                )
            raise
        return result

    async def _wait_for_slot(self, operation_key: str) -> None:
        last = self._last_call.get(operation_key)
        if last is not None:
            elapsed = self._clock.now() - last
            if elapsed < self._min_interval:
                await self._clock.sleep(self._min_interval - elapsed)
        self._last_call[operation_key] = self._clock.now()

    def _log_retry(self, operation_key: str, state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome is not None else None
        delay = state.next_action.sleep if state.next_action is not None else 0.0
        self._logger.warning(
            "api_call_retry",
            operation=operation_key,
            attempt=f"{state.attempt_number}/{self._max_retries + 1}",
            delay_s=round(delay, 3),
            rate_limited=error is not None and is_rate_limit_error(error),
            error=str(error),
        )
