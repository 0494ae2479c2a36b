"""
Bounded-parallelism task runner used for crawling, health analysis,
generation batches and bulk publishing.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Iterable, Optional, TypeVar

logger = logging.getLogger("concurrency")

T = TypeVar("T")

DEFAULT_CONCURRENCY = 5


async def process_concurrently(
    items: Iterable[T],
    processor: Callable[[T], Awaitable[None]],
    concurrency: int = DEFAULT_CONCURRENCY,
    on_progress: Optional[Callable[[int, int], None]] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> None:
    """
    Run *processor* over *items* with at most *concurrency* in flight.

    Workers pull from a shared queue in input order and await each item
    before pulling the next. Before every pull a worker checks
    *should_stop*; when it returns True the queue is drained so every worker
    exits after its current item. In-flight work is never aborted.

    Parameters
    ----------
    items : iterable
        Work items, pulled in order.
    processor : async callable
        Called once per item. Exceptions propagate; callers that need
        per-item isolation must catch inside the processor.
    concurrency : int
        Number of workers.
    on_progress : callable, optional
        ``on_progress(completed, total)`` after every finished item.
    should_stop : callable, optional
        Cooperative stop predicate.
    """
    queue: Deque[T] = deque(items)
    total = len(queue)
    completed = 0

    if total == 0:
        return

    async def _worker(worker_id: int) -> None:
        nonlocal completed
        while queue:
            if should_stop is not None and should_stop():
                if queue:
                    logger.info("Stop requested, skipping %d queued item(s)", len(queue))
                queue.clear()
                break
            item = queue.popleft()
            await processor(item)
            completed += 1
            if on_progress is not None:
                on_progress(completed, total)
        logger.debug("Worker %d finished", worker_id)

    workers = [_worker(i) for i in range(max(1, min(concurrency, total)))]
    await asyncio.gather(*workers)
