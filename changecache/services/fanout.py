"""
Fan-out Worker Pool

Runs a single-item operation over many items with a fixed number of
asyncio worker tasks. A failing item never aborts its siblings; every item
gets its own result.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

import structlog

logger = structlog.get_logger(__name__)

ItemT = TypeVar("ItemT")


@dataclass
class ItemResult(Generic[ItemT]):
    """Outcome of the operation for one item."""

    item: ItemT
    success: bool = False
    error: Optional[BaseException] = None
    data: Any = None
    duration: float = 0.0


@dataclass
class FanoutSummary:
    """Aggregate of a fan-out run."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    total_duration: float = 0.0
    results: List[ItemResult] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        return self.succeeded / self.total if self.total else 0.0


async def process_concurrently(
    items: Sequence[ItemT],
    operation: Callable[[ItemT], Awaitable[Any]],
    max_concurrency: int = 10,
) -> List[ItemResult[ItemT]]:
    """
    Apply `operation` to every item using a bounded pool of workers.

    Args:
        items: Items to process
        operation: Coroutine function invoked once per item
        max_concurrency: Worker count; values < 1 mean one worker per item

    Returns:
        One ItemResult per item, in input order
    """
    if not items:
        return []

    if max_concurrency < 1 or max_concurrency > len(items):
        max_concurrency = len(items)

    queue: "asyncio.Queue[int]" = asyncio.Queue()
    for position in range(len(items)):
        queue.put_nowait(position)
    results: List[Optional[ItemResult[ItemT]]] = [None] * len(items)

    async def worker(worker_id: int) -> None:
        while True:
            try:
                position = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            item = items[position]
            result = ItemResult(item=item)
            start_time = time.perf_counter()
            try:
                result.data = await operation(item)
                result.success = True
            except Exception as e:
                result.error = e
                logger.warning(
                    "fanout_item_failed",
                    worker_id=worker_id,
                    item=str(item),
                    error_type=type(e).__name__,
                    error=str(e),
                )
            finally:
                result.duration = time.perf_counter() - start_time
                results[position] = result
                queue.task_done()

    workers = [asyncio.create_task(worker(i)) for i in range(max_concurrency)]
    try:
        await asyncio.gather(*workers)
    except asyncio.CancelledError:
        for task in workers:
            task.cancel()
        raise

    return [result for result in results if result is not None]


def summarize(results: Sequence[ItemResult]) -> FanoutSummary:
    """Aggregate per-item results."""
    summary = FanoutSummary(total=len(results), results=list(results))
    for result in results:
        summary.total_duration += result.duration
        if result.success:
            summary.succeeded += 1
        else:
            summary.failed += 1
    return summary
