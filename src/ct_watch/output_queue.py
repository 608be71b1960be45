"""Bounded fan-in queue between the pollers and the filter workers."""

import asyncio
from collections import deque
from typing import Deque, Optional

from .diagnostics import Diagnostics
from .models import RawEntry


async def _wait_either(first: asyncio.Event, second: asyncio.Event) -> None:
    """Suspend until one of two events is set."""
    waiters = [
        asyncio.ensure_future(first.wait()),
        asyncio.ensure_future(second.wait()),
    ]
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            if not waiter.done():
                waiter.cancel()
        await asyncio.gather(*waiters, return_exceptions=True)


class OutputQueue:
    """
    Fixed-capacity queue of RawEntry objects.

    Producers call offer(), which never waits: when the queue is full the
    entry is dropped and reported. Consumers call take(), which suspends
    until an entry arrives or the queue is closed and empty. All calls must
    come from the event loop that owns the queue.
    """

    def __init__(self, capacity: int, diagnostics: Optional[Diagnostics] = None):
        if capacity < 1:
            raise ValueError(f"Queue capacity must be at least 1, got {capacity}")
        self._capacity = capacity
        self._items: Deque[RawEntry] = deque()
        self._readable = asyncio.Event()
        self._closed = False
        self._diagnostics = diagnostics or Diagnostics()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._items)

    def offer(self, entry: RawEntry) -> bool:
        """Enqueue `entry` if there is room. Returns False if it was not accepted."""
        if self._closed:
            return False
        if len(self._items) >= self._capacity:
            self._diagnostics.entry_dropped(entry.log_url, entry.index)
            return False
        self._items.append(entry)
        self._readable.set()
        return True

    async def take(self, until: Optional[asyncio.Event] = None) -> Optional[RawEntry]:
        """
        Next entry, or None at end-of-stream.

        End-of-stream is the queue being closed and drained, or `until`
        being set while the queue is empty.
        """
        while True:
            if self._items:
                return self._items.popleft()
            if self._closed:
                return None
            if until is not None and until.is_set():
                return None
            self._readable.clear()
            if until is None:
                await self._readable.wait()
            else:
                await _wait_either(self._readable, until)

    def close(self) -> None:
        """Reject further offers and wake every waiting consumer."""
        if self._closed:
            return
        self._closed = True
        self._readable.set()

    def clear(self) -> int:
        """Discard buffered entries; returns how many were dropped."""
        count = len(self._items)
        self._items.clear()
        return count
