"""Retry with a shared backoff, and a bounded worker pool.

When a backend starts throttling, every in-flight worker backs off together:
a retryable failure pushes one shared deadline forward and each worker waits
it out before its next attempt. The deadline only ever moves forward.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from static_publisher.errors import StorageBackendError, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")
ItemT = TypeVar("ItemT")

DEFAULT_MAX_CONCURRENT = 12
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_INITIAL_DELAY = 60.0

# err -> short reason string if the error is worth retrying, else None
ErrorClassifier = Callable[[BaseException], "str | None"]


def default_classifier(err: BaseException) -> str | None:
    if not is_retryable(err):
        return None
    assert isinstance(err, StorageBackendError)
    return err.reason or "retryable"


class BackoffDeadline:
    """A point in time before which no worker may start another attempt."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._until = 0.0

    @property
    def until(self) -> float:
        return self._until

    def now(self) -> float:
        return self._clock()

    def advance(self, until: float) -> None:
        """Move the deadline to ``until`` unless it is already later."""
        if until > self._until:
            self._until = until

    def remaining(self) -> float:
        return max(0.0, self._until - self._clock())

    async def wait(self) -> None:
        # Another worker may push the deadline while we sleep
        while (delay := self.remaining()) > 0:
            await self._sleep(delay)


async def attempt_with_retries(
    fn: Callable[[], Awaitable[T]],
    *,
    backoff: BackoffDeadline,
    classify: ErrorClassifier = default_classifier,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    on_retry: Callable[[int, BaseException, str, float], None] | None = None,
) -> T:
    """Call ``fn`` until it succeeds, fails non-retryably, or runs out of attempts.

    After retryable failure number N the shared deadline is pushed to
    ``now + N * initial_delay``. The last error is re-raised unchanged.
    """
    attempt = 1
    while True:
        await backoff.wait()
        try:
            return await fn()
        except Exception as e:
            reason = classify(e)
            if reason is None or attempt >= max_attempts:
                raise
            delay = initial_delay * attempt
            backoff.advance(backoff.now() + delay)
            if on_retry is not None:
                on_retry(attempt, e, reason, delay)
        attempt += 1


@dataclass
class BatchResult:
    """Outcome of running a unit of work per item through the pool."""

    succeeded: list[str] = field(default_factory=list)
    failed: list[tuple[str, BaseException]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def failed_keys(self) -> list[str]:
        return [key for key, _ in self.failed]

    def extend(self, other: BatchResult) -> None:
        self.succeeded.extend(other.succeeded)
        self.failed.extend(other.failed)


async def concurrent_parallel(
    items: Sequence[ItemT],
    fn: Callable[[ItemT], Awaitable[None]],
    *,
    key: Callable[[ItemT], str],
    backoff: BackoffDeadline,
    classify: ErrorClassifier = default_classifier,
    max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
) -> BatchResult:
    """Run ``fn`` once per item with at most ``max_concurrent`` in flight.

    A failure (after retries) is recorded against that item only; the other
    items keep going.
    """
    result = BatchResult()
    next_index = 0

    def log_retry(item_key: str) -> Callable[[int, BaseException, str, float], None]:
        def _log(attempt: int, err: BaseException, reason: str, delay: float) -> None:
            logger.warning(
                "Attempt %d for %s failed (%s: %s), backing off %.1fs",
                attempt,
                item_key,
                reason,
                err,
                delay,
            )

        return _log

    async def worker() -> None:
        nonlocal next_index
        while next_index < len(items):
            item = items[next_index]
            next_index += 1
            item_key = key(item)
            try:
                await attempt_with_retries(
                    lambda: fn(item),
                    backoff=backoff,
                    classify=classify,
                    max_attempts=max_attempts,
                    initial_delay=initial_delay,
                    on_retry=log_retry(item_key),
                )
            except Exception as e:
                logger.error("Failed %s: %s", item_key, e)
                result.failed.append((item_key, e))
            else:
                result.succeeded.append(item_key)

    workers = min(max_concurrent, len(items))
    await asyncio.gather(*(worker() for _ in range(workers)))
    return result
