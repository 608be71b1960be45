"""Per-log polling loops feeding the output queue."""

import asyncio
import logging
from typing import List, Optional

from .config import DEFAULT_POLL_INTERVAL
from .diagnostics import Diagnostics
from .errors import LogQueryError
from .output_queue import OutputQueue
from .sources import LogSource

logger = logging.getLogger(__name__)


async def join_tasks(tasks: List[asyncio.Task], timeout: Optional[float] = None) -> None:
    """
    Wait for every task to finish. Tasks still running after `timeout`
    seconds are cancelled and awaited.
    """
    if not tasks:
        return
    done, pending = await asyncio.wait(tasks, timeout=timeout)
    if pending:
        logger.warning(f"Cancelling {len(pending)} task(s) still running after {timeout}s")
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
    for task in done:
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Task {task.get_name()} failed", exc_info=task.exception())


class LogPoller:
    """The polling loop of a single log. Sole writer of its source's cursor."""

    def __init__(
        self,
        source: LogSource,
        queue: OutputQueue,
        cancel: asyncio.Event,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        diagnostics: Optional[Diagnostics] = None,
    ):
        self.source = source
        self.poll_interval = poll_interval
        self._queue = queue
        self._cancel = cancel
        self._diagnostics = diagnostics or Diagnostics()

    async def poll_once(self) -> int:
        """
        Fetch the next window of new entries and offer them to the queue.

        Returns the number of entries retrieved. Transport errors propagate
        and leave the cursor where it was.
        """
        source = self.source
        tree_size = await source.client.get_tree_size()

        if tree_size < source.last_size:
            self._diagnostics.tree_shrank(source.url, tree_size, source.last_size)
            return 0

        window = source.next_window(tree_size)
        if window is None or self._cancel.is_set():
            return 0
        start, end = window

        entries = await source.client.get_entries(start, end)
        if len(entries) != end - start:
            raise LogQueryError(
                source.url, f"expected {end - start} entries for [{start}, {end}), got {len(entries)}"
            )

        for entry in entries:
            self._queue.offer(entry)

        self._diagnostics.entries_fetched(source.url, len(entries))
        source.advance(end)
        logger.debug(f"Fetched [{start}, {end}) from {source.url}, tree size {tree_size}")
        return len(entries)

    async def _sleep(self, delay: float) -> None:
        """Sleep for `delay` seconds or until cancelled, whichever is first."""
        try:
            await asyncio.wait_for(self._cancel.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def run(self) -> None:
        """Poll immediately, then once per interval, until cancelled."""
        url = self.source.url
        lag: float = 0
        loop = asyncio.get_running_loop()

        while not self._cancel.is_set():
            cycle_start = loop.time()

            try:
                await self.poll_once()
            except Exception as e:
                self._diagnostics.poll_failure(url, e)

            if self._cancel.is_set():
                break

            # Sleep for the remaining time in the poll interval
            remaining_time = self.poll_interval - (loop.time() - cycle_start)
            if remaining_time > 0:
                await self._sleep(remaining_time)
                lag = 0
            else:
                current_lag = -remaining_time
                if current_lag > lag:
                    logger.warning(
                        f"Poll cycle for {url} exceeded interval by {current_lag:.2f}s"
                    )
                lag = current_lag

        logger.debug(f"Polling loop for {url} exited at size {self.source.last_size}")


class PollingScheduler:
    """Runs one LogPoller task per source, all sharing a cancellation event."""

    def __init__(
        self,
        queue: OutputQueue,
        cancel: asyncio.Event,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        diagnostics: Optional[Diagnostics] = None,
    ):
        if poll_interval <= 0:
            raise ValueError(f"Poll interval must be positive, got {poll_interval}")
        self.poll_interval = poll_interval
        self._queue = queue
        self._cancel = cancel
        self._diagnostics = diagnostics or Diagnostics()
        self.pollers: List[LogPoller] = []
        self._tasks: List[asyncio.Task] = []

    @property
    def tasks(self) -> List[asyncio.Task]:
        return list(self._tasks)

    def start(self, sources: List[LogSource]) -> None:
        for source in sources:
            poller = LogPoller(
                source,
                self._queue,
                self._cancel,
                poll_interval=self.poll_interval,
                diagnostics=self._diagnostics,
            )
            self.pollers.append(poller)
            self._tasks.append(
                asyncio.create_task(poller.run(), name=f"poll:{source.url}")
            )

    async def join(self, timeout: Optional[float] = None) -> None:
        """Wait until every polling loop has exited."""
        await join_tasks(self._tasks, timeout)
