"""Single-flight execution keyed by an identifier.

The first ``run_once`` for a key starts the operation as a task and remembers
it. Every later call for that key, concurrent or not, awaits the same task and
sees the same result or exception. Markers live in process memory only; with
``max_entries`` set, the oldest finished markers are dropped once the cap is
exceeded.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional

from rental_checkout.core.metrics import guard_suppressed

logger = logging.getLogger(__name__)


def _retrieve(task: asyncio.Task) -> None:
    # Results are read by whoever awaits; this keeps unawaited failures quiet.
    if not task.cancelled():
        task.exception()


def _ended_retryably(task: asyncio.Task) -> bool:
    if task.cancelled():
        return True
    exc = task.exception()
    if exc is not None:
        return bool(getattr(exc, "retryable", False))
    return bool(getattr(task.result(), "retryable", False))


class IdempotencyGuard:
    def __init__(self, max_entries: Optional[int] = None):
        self._tasks: Dict[Hashable, asyncio.Task] = {}
        self._lock = asyncio.Lock()
        self.max_entries = max_entries

    async def run_once(
        self,
        key: Hashable,
        operation: Callable[[], Awaitable[Any]],
        *,
        retry: bool = False,
    ) -> Any:
        async with self._lock:
            task = self._tasks.get(key)
            if task is None or (retry and task.done() and _ended_retryably(task)):
                if task is not None:
                    logger.info(f"Re-running operation for {key!r} after a retryable result")
                task = asyncio.ensure_future(operation())
                task.add_done_callback(_retrieve)
                self._tasks.pop(key, None)
                self._tasks[key] = task
                self._evict()
            else:
                guard_suppressed.inc()
                logger.info(f"Duplicate trigger for {key!r} absorbed ({'in flight' if not task.done() else 'completed'})")
        # Callers may stop waiting; the shared operation keeps running.
        return await asyncio.shield(task)

    def in_flight(self, key: Hashable) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def has_run(self, key: Hashable) -> bool:
        return key in self._tasks

    def forget(self, key: Hashable) -> bool:
        if self.in_flight(key):
            return False
        return self._tasks.pop(key, None) is not None

    def _evict(self) -> None:
        # Oldest finished markers go first; in-flight ones are never dropped
        if self.max_entries is None:
            return
        excess = len(self._tasks) - self.max_entries
        if excess <= 0:
            return
        stale = [k for k, t in self._tasks.items() if t.done()][:excess]
        for key in stale:
            del self._tasks[key]
        logger.debug(f"Evicted {len(stale)} finished markers")
