"""
Bounded-concurrency scheduling for per-document extraction.

A fixed number of asyncio workers share one cursor over the input list; each
worker takes the next unprocessed index as soon as it is free, so slow PDF
downloads do not hold back fast HTML pages.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

from policy_scraper.models import FailedItem
from policy_scraper.utils import ProgressTracker, clamp

logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")


async def map_with_concurrency(
    items: Sequence[T],
    limit: int,
    worker: Callable[[T, int], Awaitable[U]],
) -> List[U]:
    """
    Apply an async worker to every item with at most `limit` in flight.

    Args:
        items: Items to process
        limit: Requested concurrency, clamped to [1, len(items)]
        worker: Coroutine function called as worker(item, index)

    Returns:
        Worker results in input order
    """
    if not items:
        return []

    effective_limit = clamp(limit, 1, len(items))
    output: List[Optional[U]] = [None] * len(items)
    cursor = 0

    async def run_worker() -> None:
        nonlocal cursor
        while True:
            index = cursor
            cursor += 1
            if index >= len(items):
                return
            output[index] = await worker(items[index], index)

    await asyncio.gather(*(run_worker() for _ in range(effective_limit)))
    return output


@dataclass
class BatchOutcome(Generic[U]):
    """Successful results and recorded failures of one batch."""
    results: List[U] = field(default_factory=list)
    failures: List[FailedItem] = field(default_factory=list)


async def run_all(
    items: Sequence[T],
    limit: int,
    worker: Callable[[T], Awaitable[U]],
    describe: Callable[[T], str] = str,
    name: str = "Extracting policies",
) -> BatchOutcome[U]:
    """
    Run a worker over every item, isolating per-item failures.

    An exception raised by the worker is logged and recorded as a FailedItem
    for that item; sibling work keeps running. This never raises for item
    failures, even when every item fails.

    Args:
        items: Items to process
        limit: Requested concurrency
        worker: Coroutine function producing one result per item
        describe: Maps an item to the reference string stored on failure
        name: Label used in progress logging

    Returns:
        BatchOutcome with successes (in input order) and failures
    """
    failures: List[FailedItem] = []
    tracker = ProgressTracker(len(items), name=name)

    async def guarded(item: T, _index: int) -> Optional[U]:
        try:
            result = await worker(item)
        except Exception as e:
            reason = str(e) or e.__class__.__name__
            logger.warning(f"Failed {describe(item)}: {reason}")
            failures.append(FailedItem(reference=describe(item), reason=reason))
            tracker.update(1, failed=True)
            return None
        tracker.update(1)
        return result

    results = await map_with_concurrency(items, limit, guarded)
    tracker.finish()
    return BatchOutcome(
        results=[result for result in results if result is not None],
        failures=failures,
    )
