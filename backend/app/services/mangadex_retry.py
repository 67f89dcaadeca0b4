"""Explicit retry strategy for transient MangaDex failures.

The policy is a plain value object and the sleep function is injectable, so
backoff behaviour can be asserted without waiting on a real clock.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from app.services.mangadex_errors import UpstreamUnavailableError

if TYPE_CHECKING:
    from app.core.config import Settings

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]
RetryHook = Callable[[int, "TransientUpstreamError", float], None]


class TransientUpstreamError(UpstreamUnavailableError):
    """A failure that may succeed if the same request is issued again."""

    def __init__(
        self,
        message: str,
        *,
        reason: str,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.reason = reason
        self.retry_after = retry_after


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff.

    ``max_attempts`` counts the first try, so ``max_attempts=3`` allows two
    retries. The delay before retry ``n`` (0-based) is
    ``min(max_delay_s, base_delay_s * multiplier**n)`` plus up to ``jitter_s``.
    """

    max_attempts: int = 3
    base_delay_s: float = 0.25
    multiplier: float = 2.0
    max_delay_s: float = 4.0
    jitter_s: float = 0.1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_s < 0 or self.max_delay_s < 0 or self.jitter_s < 0:
            raise ValueError("retry delays cannot be negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.mangadex_retry_max_attempts,
            base_delay_s=settings.mangadex_retry_base_delay_seconds,
            max_delay_s=settings.mangadex_retry_max_delay_seconds,
            jitter_s=settings.mangadex_retry_jitter_seconds,
        )

    def backoff_delay(
        self, retry_index: int, rand: Callable[[], float] = random.random
    ) -> float:
        delay = min(self.max_delay_s, self.base_delay_s * (self.multiplier**retry_index))
        if self.jitter_s:
            delay += self.jitter_s * rand()
        return delay


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    sleep: SleepFunc = asyncio.sleep,
    on_retry: RetryHook | None = None,
    rand: Callable[[], float] = random.random,
) -> T:
    """Run ``fn`` until it succeeds, fails permanently, or the budget runs out.

    Only ``TransientUpstreamError`` is retried; anything else propagates on the
    first occurrence. When the budget is exhausted, or upstream asks us to wait
    longer than ``max_delay_s``, the last transient error is surfaced as
    ``UpstreamUnavailableError``.
    """
    for attempt in range(policy.max_attempts):
        try:
            return await fn()
        except TransientUpstreamError as error:
            if attempt + 1 >= policy.max_attempts:
                raise UpstreamUnavailableError(
                    f"{error} (gave up after {policy.max_attempts} attempts)",
                    status_code=error.status_code,
                ) from error

            if error.retry_after is not None:
                if error.retry_after > policy.max_delay_s:
                    raise UpstreamUnavailableError(
                        f"{error} (retry-after {error.retry_after:.1f}s exceeds budget)",
                        status_code=error.status_code,
                    ) from error
                delay = error.retry_after
            else:
                delay = policy.backoff_delay(attempt, rand)

            if on_retry is not None:
                on_retry(attempt, error, delay)
            await sleep(delay)

    raise AssertionError("unreachable: retry loop always returns or raises")


__all__ = ["RetryPolicy", "TransientUpstreamError", "call_with_retry"]
