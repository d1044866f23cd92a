"""Per-category FIFO mutual exclusion for async mutations.

Each category has a chain of tasks.  A new task waits for the previous tail
of its chain, whatever that tail's outcome, then runs.  Chains of different
categories are independent.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from siteledger.logging.events import TASK_FAILED, EventType, emit_error

_log = logging.getLogger(__name__)

T = TypeVar("T")


class WriteSerializer:
    """Registry of per-category task chains.

    Must be used from a single event loop.
    """

    def __init__(self) -> None:
        self._tails: dict[str, asyncio.Task[Any]] = {}

    def with_lock(
        self, category: str, task: Callable[[], Awaitable[T]]
    ) -> asyncio.Future[T]:
        """Queue *task* behind every earlier task for *category*.

        Args:
            category: Chain to join.
            task: Zero-argument coroutine function; called once its turn comes.

        Returns:
            A future resolving to the task's result.  A failure is logged and
            re-raised to whoever awaits it; the chain continues with the next
            queued task either way.  Cancelling the future only stops the
            wait: the queued task still runs, and the next one starts after it.
        """
        previous = self._tails.get(category)

        async def run() -> T:
            if previous is not None and not previous.done():
                await asyncio.wait([previous])
            return await task()

        current: asyncio.Task[T] = asyncio.ensure_future(run())
        self._tails[category] = current

        def _finished(fut: asyncio.Task[Any]) -> None:
            if self._tails.get(category) is fut:
                del self._tails[category]
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                _log.debug("task for %r failed", category, exc_info=exc)
                emit_error(
                    EventType.serializer_task_failed,
                    f"Queued write for {category!r} failed: {exc}",
                    {"category": category, "exception": type(exc).__name__},
                    error_code=TASK_FAILED,
                )

        current.add_done_callback(_finished)
        return asyncio.shield(current)

    def is_busy(self, category: str) -> bool:
        """True while *category* has a queued or running task."""
        tail = self._tails.get(category)
        return tail is not None and not tail.done()

    async def drain(self) -> None:
        """Wait until every queued task, including ones queued meanwhile, is done."""
        while self._tails:
            pending = [t for t in self._tails.values() if not t.done()]
            if not pending:
                return
            await asyncio.wait(pending)
