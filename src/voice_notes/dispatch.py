"""Concurrent provider calls with rate limiting and retry.

Every stage that talks to a provider (transcription, summarization,
translation) builds its own Dispatcher, so each gets an independent
limiter sized for the provider it targets.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from voice_notes.errors import DeadlineExceeded
from voice_notes.shared import tprint as print, PipelineConfig, RunContext

RECOVERABLE_MESSAGES = ("econnreset", "connection reset", "connection error")


def is_recoverable(error: BaseException) -> bool:
    """Connection resets, generic connection errors and HTTP 5xx are worth retrying.

    Everything else (4xx including 429, malformed requests, local bugs)
    is terminal.
    """
    if isinstance(error, ConnectionResetError):
        return True
    for attr in ("status_code", "status", "code"):
        status = getattr(error, attr, None)
        if isinstance(status, int) and status >= 500:
            return True
    message = str(error).lower()
    return any(m in message for m in RECOVERABLE_MESSAGES)


def exponential_backoff(initial: float = 1.0, factor: float = 2.0,
                        maximum: float = 30.0) -> Callable[[int], float]:
    """Delay before the retry that follows failed attempt number `attempt`."""
    def backoff(attempt: int) -> float:
        return min(initial * factor ** (attempt - 1), maximum)
    return backoff


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    is_recoverable: Callable[[BaseException], bool] = is_recoverable
    backoff: Callable[[int], float] = exponential_backoff()

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "RetryPolicy":
        return cls(max_attempts=max(1, config.api_max_retries),
                   backoff=exponential_backoff(config.api_initial_backoff))


@dataclass(frozen=True)
class RatePolicy:
    """At most max_concurrent calls in flight, starts spaced min_interval apart."""
    max_concurrent: int
    min_interval: float = 0.0

    @classmethod
    def spread(cls, max_concurrent: int) -> "RatePolicy":
        """Allow max_concurrent calls, started no faster than max_concurrent per second."""
        return cls(max_concurrent, 1.0 / max_concurrent)

    def override(self, max_concurrent: Optional[int] = None,
                 min_interval: Optional[float] = None) -> "RatePolicy":
        return RatePolicy(
            max_concurrent if max_concurrent else self.max_concurrent,
            min_interval if min_interval is not None else self.min_interval,
        )


class RateLimiter:
    """Async context manager enforcing a RatePolicy."""

    def __init__(self, policy: RatePolicy):
        if policy.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.policy = policy
        self._semaphore = asyncio.Semaphore(policy.max_concurrent)
        self._spacing = asyncio.Lock()
        self._next_start = 0.0

    async def __aenter__(self):
        await self._semaphore.acquire()
        try:
            await self._wait_for_slot()
        except BaseException:
            self._semaphore.release()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self._semaphore.release()
        return False

    async def _wait_for_slot(self) -> None:
        if self.policy.min_interval <= 0:
            return
        loop = asyncio.get_running_loop()
        async with self._spacing:
            wait = self._next_start - loop.time()
            if wait > 0:
                await asyncio.sleep(wait)
            self._next_start = loop.time() + self.policy.min_interval


async def retry_call(fn: Callable[[], Awaitable], policy: RetryPolicy,
                     label: str = "Request"):
    """Await fn() up to policy.max_attempts times.

    Returns the first successful result. A terminal error is re-raised
    immediately; a recoverable one is re-raised once attempts run out.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await fn()
        except Exception as e:
            if not policy.is_recoverable(e):
                print(f"    {label} failed: {e}")
                raise
            if attempt >= policy.max_attempts:
                print(f"    {label} failed after {attempt} attempts: {e}")
                raise
            delay = policy.backoff(attempt)
            print(f"    {label} error ({e}), retrying in {delay:g}s "
                  f"(attempt {attempt}/{policy.max_attempts})...")
            await asyncio.sleep(delay)


class Dispatcher:
    """Runs one call per item concurrently and returns results in item order.

    call(index, item) must return an awaitable. When fallback is given,
    an item that used up its retries on recoverable errors is replaced by
    fallback(index, item, error). Terminal errors always propagate, as
    does any error when there is no fallback; the remaining calls are
    then cancelled.
    """

    def __init__(self, rate: RatePolicy, retry: Optional[RetryPolicy] = None,
                 ctx: Optional[RunContext] = None, label: str = "Item"):
        self.rate = rate
        self.retry = retry or RetryPolicy()
        self.ctx = ctx
        self.label = label

    @classmethod
    def for_stage(cls, rate: RatePolicy, config: PipelineConfig,
                  ctx: Optional[RunContext] = None, label: str = "Item") -> "Dispatcher":
        """Build a dispatcher with CLI overrides applied to the provider's default rate."""
        rate = rate.override(config.max_concurrent, config.min_interval)
        return cls(rate, RetryPolicy.from_config(config), ctx, label)

    async def dispatch(self, items: Sequence, call: Callable[[int, object], Awaitable],
                       fallback: Optional[Callable[[int, object, Exception], object]] = None) -> list:
        limiter = RateLimiter(self.rate)

        async def run_one(index, item):
            async with limiter:
                if self.ctx is not None:
                    self.ctx.check_deadline(f"{self.label.lower()} {index}")
                try:
                    return await retry_call(lambda: call(index, item), self.retry,
                                            label=f"{self.label} {index}")
                except DeadlineExceeded:
                    raise
                except Exception as e:
                    if fallback is None or not self.retry.is_recoverable(e):
                        raise
                    print(f"    {self.label} {index}: using placeholder after error: {e}")
                    return fallback(index, item, e)

        tasks = [asyncio.ensure_future(run_one(i, item)) for i, item in enumerate(items)]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
