"""Retry loops with explicit delay schedules."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Sequence, Tuple, Type, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def fixed_delays(delay: float, attempts: int) -> List[float]:
    """Waits between ``attempts`` tries: the same delay every time."""
    return [delay] * max(attempts - 1, 0)


def exponential_delays(base: float, attempts: int) -> List[float]:
    """Waits between ``attempts`` tries: base, 2*base, 4*base, ..."""
    return [base * (2 ** i) for i in range(max(attempts - 1, 0))]


async def retry_async(
    operation: Callable[[int], Awaitable[T]],
    *,
    delays: Sequence[float],
    label: str,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    give_up_on: Tuple[Type[BaseException], ...] = (),
    sleep: Sleep = asyncio.sleep,
) -> T:
    """
    Run ``operation(attempt)`` until it succeeds, waiting ``delays[i]`` after
    the (i+1)-th failure.  Total tries = ``len(delays) + 1``.

    Exceptions in ``give_up_on`` propagate immediately; anything else outside
    ``retry_on`` propagates too.  The last failure is re-raised once the
    schedule is exhausted.
    """
    attempts = len(delays) + 1
    for attempt in range(1, attempts + 1):
        try:
            return await operation(attempt)
        except give_up_on:
            raise
        except retry_on as exc:
            if attempt == attempts:
                logger.error("%s: giving up after %d attempt(s): %s", label, attempts, exc)
                raise
            delay = delays[attempt - 1]
            logger.warning(
                "%s: attempt %d/%d failed (%s), retrying in %.1fs",
                label,
                attempt,
                attempts,
                exc,
                delay,
            )
            await sleep(delay)
    raise RuntimeError("unreachable")  # pragma: no cover
