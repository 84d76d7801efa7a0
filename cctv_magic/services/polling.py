"""Bounded polling shared by the worker, the stale-job sweep and the API client."""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")


class PollStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class PollResult(Generic[T]):
    status: PollStatus
    value: T | None
    attempts: int


async def poll_until(
    fetch: Callable[[], Awaitable[T]],
    classify: Callable[[T], PollStatus | None],
    *,
    max_attempts: int,
    interval: float,
    retry_on: tuple[type[BaseException], ...] = (),
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    on_error: Callable[[BaseException, int], None] | None = None,
) -> PollResult[T]:
    """
    Call ``fetch`` up to ``max_attempts`` times, sleeping ``interval`` before each call.

    ``classify`` maps a fetched value to COMPLETED or FAILED, or None to keep polling.
    Exceptions listed in ``retry_on`` use up an attempt; anything else propagates.
    """
    last: T | None = None
    for attempt in range(1, max_attempts + 1):
        await sleep(interval)
        try:
            last = await fetch()
        except retry_on as e:
            if on_error is not None:
                on_error(e, attempt)
            continue
        status = classify(last)
        if status is not None:
            return PollResult(status=status, value=last, attempts=attempt)
    return PollResult(status=PollStatus.TIMED_OUT, value=last, attempts=max_attempts)
