"""Bounded exponential-backoff retry for calls into infrastructure."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    RetryCallState,
    stop_after_attempt,
    wait_exponential,
)

from bluegreen.domain.errors import RETRYABLE_ERRORS
from bluegreen.domain.models.base import ValueObject


logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RetryPolicy(ValueObject):
    """Retry budget applied to every external call of the controller."""

    attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0


def _log_retry(operation: str) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        logger.warning(
            "external_call_retrying",
            operation=operation,
            attempt=state.attempt_number,
            error=str(error),
        )

    return before_sleep


async def call_with_retry(
    operation: str,
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: tuple[type[BaseException], ...] = RETRYABLE_ERRORS,
    on_retry: Callable[[str], None] | None = None,
) -> T:
    """Run ``func`` up to ``policy.attempts`` times, re-raising the last error.

    Only exceptions in ``retry_on`` are retried; anything else propagates on
    the first failure.
    """
    before_sleep = _log_retry(operation)

    def _before_sleep(state: RetryCallState) -> None:
        before_sleep(state)
        if on_retry is not None:
            on_retry(operation)

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(policy.attempts),
        wait=wait_exponential(multiplier=policy.base_delay, max=policy.max_delay),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_before_sleep,
        reraise=True,
    ):
        with attempt:
            return await func()
    raise AssertionError("unreachable")  # pragma: no cover
