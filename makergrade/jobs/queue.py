"""
Unbounded FIFO work queue with an explicit end-of-input signal.

One producer appends batches; any number of consumers block in
:meth:`WorkQueue.take` until an item arrives or the producer closes the
queue. Items are never requeued.
"""

import asyncio
from collections import deque
from collections.abc import Iterable
from typing import Generic, TypeVar

T = TypeVar("T")


class QueueClosed(Exception):
    """Raised when putting into a queue whose producer has finished."""


class WorkQueue(Generic[T]):
    """FIFO queue of candidates shared by a worker pool."""

    def __init__(self) -> None:
        self._items: deque[T] = deque()
        self._closed = False
        self._changed = asyncio.Condition()

    def __len__(self) -> int:
        return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    async def put_many(self, items: Iterable[T]) -> int:
        """Append items in order and wake one consumer per item."""
        batch = list(items)
        if not batch:
            return 0
        async with self._changed:
            if self._closed:
                raise QueueClosed("queue is closed")
            self._items.extend(batch)
            self._changed.notify(len(batch))
        return len(batch)

    async def close(self) -> None:
        """Signal end-of-input; consumers drain what is left, then stop."""
        async with self._changed:
            self._closed = True
            self._changed.notify_all()

    async def take(self) -> T | None:
        """
        Next item, waiting if necessary.

        Returns:
            The next item, or None once the queue is closed and drained
        """
        async with self._changed:
            await self._changed.wait_for(lambda: self._items or self._closed)
            if self._items:
                return self._items.popleft()
            return None
