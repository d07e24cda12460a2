"""Single-flight FIFO queue serializing every store mutation.

Native callbacks and UI requests arrive concurrently, but each reconciliation
step reads the store, computes a write set and writes it back. Running two
steps at once would let the later one overwrite the earlier one with stale
reads, so every step goes through one worker task that awaits each item to
completion before taking the next.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger


@dataclass
class _QueueItem:
    label: str
    work: Callable[[], Awaitable[Any]]
    done: asyncio.Future[bool]


class EventQueue:
    """Strict FIFO of async work items processed one at a time.

    Each ``enqueue`` returns a future resolving to True when the item ran to
    completion and False when it raised. A failing item is logged and the
    worker moves on to the next one.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[_QueueItem | None] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def size(self) -> int:
        """Number of items waiting (not counting the one in flight)."""
        return self._queue.qsize()

    def enqueue(self, label: str, work: Callable[[], Awaitable[Any]]) -> asyncio.Future[bool]:
        """Append ``work`` to the queue; must be called from a running event loop."""
        if self._closed:
            msg = f"Cannot enqueue {label!r}: queue is closed"
            raise RuntimeError(msg)
        loop = asyncio.get_running_loop()
        done: asyncio.Future[bool] = loop.create_future()
        self._queue.put_nowait(_QueueItem(label=label, work=work, done=done))
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._worker_loop())
        return done

    async def _worker_loop(self) -> None:
        """Consume items in order, awaiting each to completion."""
        while True:
            item = await self._queue.get()
            if item is None:
                # Sentinel received, shutdown
                self._queue.task_done()
                break
            try:
                await item.work()
            except Exception:
                logger.exception("Queued event {} failed", item.label)
                ok = False
            else:
                ok = True
            if not item.done.done():
                item.done.set_result(ok)
            self._queue.task_done()

    async def join(self) -> None:
        """Wait until every item enqueued so far has been processed."""
        await self._queue.join()

    async def close(self) -> None:
        """Finish the queued items, then stop the worker."""
        if self._closed:
            return
        self._closed = True
        if self._worker is None or self._worker.done():
            return
        self._queue.put_nowait(None)
        await self._worker

    def queued_handler(
        self,
        label: str,
        handler: Callable[..., Awaitable[Any]],
    ) -> Callable[..., asyncio.Future[bool]]:
        """Wrap an async handler so each call is enqueued instead of run directly.

        The returned callback captures its arguments at call time, which makes
        it suitable as a native event listener.
        """

        def callback(*args: Any, **kwargs: Any) -> asyncio.Future[bool]:
            return self.enqueue(label, lambda: handler(*args, **kwargs))

        return callback
