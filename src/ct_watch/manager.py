"""
Monitoring manager: discovery, polling, filtering and an orderly shutdown.

Usage:
    manager = CTWatchManager({"acme": r"^acme\\."}, sink=print)
    await manager.discover()
    await manager.start()
    ...
    await manager.stop()
"""

import asyncio
import logging
from concurrent.futures import ProcessPoolExecutor
from datetime import datetime, timezone
from enum import Enum
from typing import List, Mapping, Optional, Union

import httpx

from .config import (
    DEFAULT_FILTER_WORKERS,
    DEFAULT_LOG_LIST_TIMEOUT,
    DEFAULT_MAX_CONNECTIONS,
    DEFAULT_MAX_KEEPALIVE_CONNECTIONS,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_QUEUE_CAPACITY,
    DEFAULT_TIMEOUT,
    DEFAULT_WINDOW_SIZE,
    LOG_LIST_URL,
)
from .diagnostics import DiagnosticCallback, Diagnostics, WatchStats
from .errors import ConstructionError, LifecycleError
from .httpx_transport import StatsTransport
from .loglist import ClientFactory, LogListResolver
from .models import MatchResult
from .output_queue import OutputQueue
from .polling import PollingScheduler
from .rules import RulePack
from .sources import LogSource
from .workers import FilterWorkerPool, MatchSink

logger = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


def log_match(result: MatchResult) -> None:
    """Default sink: log each match."""
    logger.info(
        f"[{result.category}] {result.common_name} "
        f"(log {result.log_url}, index {result.index})"
    )


class CTWatchManager:
    """
    Watches every usable CT log for certificates matching a RulePack.

    One polling task per log pushes entries into a bounded queue; a fixed
    pool of filter workers drains it and hands matches to the sink. All
    tasks share one cancellation event, set by stop().
    """

    def __init__(
        self,
        rules: Union[RulePack, Mapping[str, str]],
        log_list_url: str = LOG_LIST_URL,
        sink: Optional[MatchSink] = None,
        on_diagnostic: Optional[DiagnosticCallback] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        window_size: int = DEFAULT_WINDOW_SIZE,
        queue_capacity: int = DEFAULT_QUEUE_CAPACITY,
        filter_workers: int = DEFAULT_FILTER_WORKERS,
        parse_workers: int = 0,
        timeout: float = DEFAULT_TIMEOUT,
        log_list_timeout: float = DEFAULT_LOG_LIST_TIMEOUT,
        user_agent: Optional[str] = None,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        max_keepalive_connections: int = DEFAULT_MAX_KEEPALIVE_CONNECTIONS,
        include_logs: Optional[List[str]] = None,
        exclude_logs: Optional[List[str]] = None,
        match_san: bool = False,
        drain_on_stop: bool = True,
        shutdown_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        """
        Initialize the manager.

        Args:
            rules: RulePack, or a mapping of category to regex compiled here
            log_list_url: URL of the v3 CT log list
            sink: Called with every MatchResult, sync or async
            on_diagnostic: Called with every non-fatal DiagnosticEvent
            poll_interval: Seconds between polls of one log
            window_size: Max entries fetched from one log per poll
            queue_capacity: Entries buffered between pollers and workers
            filter_workers: Number of concurrent filter workers
            parse_workers: Processes for certificate decoding, 0 decodes inline
            timeout: HTTP request timeout for log queries
            log_list_timeout: HTTP timeout for the log list download
            user_agent: Custom user agent string
            max_connections: Max concurrent connections across all logs
            max_keepalive_connections: Max keepalive connections in pool
            include_logs: Only monitor logs matching these patterns (partial URL match)
            exclude_logs: Skip logs matching these patterns (partial URL match)
            match_san: Also match SAN DNS names, not only the Common Name
            drain_on_stop: Let workers finish buffered entries during stop()
            shutdown_timeout: Seconds stop() waits for each task group before
                cancelling it, None waits for ever
            transport: httpx transport for every request, mainly for tests
            client_factory: Builds the query capability of each log

        Raises:
            ConstructionError: invalid rules or options
        """
        self.rules = RulePack.coerce(rules)
        if not len(self.rules):
            raise ConstructionError("At least one rule is required")

        for name, value in (
            ("window_size", window_size),
            ("queue_capacity", queue_capacity),
            ("filter_workers", filter_workers),
        ):
            if value < 1:
                raise ConstructionError(f"{name} must be at least 1, got {value}")
        if poll_interval <= 0:
            raise ConstructionError(f"poll_interval must be positive, got {poll_interval}")
        if parse_workers < 0:
            raise ConstructionError(f"parse_workers must not be negative, got {parse_workers}")

        self.log_list_url = log_list_url
        self.sink = sink or log_match
        self.poll_interval = poll_interval
        self.window_size = window_size
        self.filter_workers = filter_workers
        self.parse_workers = parse_workers
        self.match_san = match_san
        self.drain_on_stop = drain_on_stop
        self.shutdown_timeout = shutdown_timeout

        self.diagnostics = Diagnostics(on_diagnostic)
        self._owns_transport = transport is None
        self._transport = transport or StatsTransport(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive_connections,
        )
        self._resolver = LogListResolver(
            log_list_url=log_list_url,
            window_size=window_size,
            timeout=timeout,
            log_list_timeout=log_list_timeout,
            user_agent=user_agent,
            transport=self._transport,
            client_factory=client_factory,
            include_logs=include_logs,
            exclude_logs=exclude_logs,
            diagnostics=self.diagnostics,
        )

        self.sources: List[LogSource] = []
        self._discovered = False
        self._state = LifecycleState.CREATED
        self._cancel = asyncio.Event()
        self._stopped = asyncio.Event()
        self._queue = OutputQueue(queue_capacity, self.diagnostics)
        self._scheduler: Optional[PollingScheduler] = None
        self._pool: Optional[FilterWorkerPool] = None
        self._executor: Optional[ProcessPoolExecutor] = None

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def queue(self) -> OutputQueue:
        return self._queue

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def get_stats(self) -> WatchStats:
        """Get monitoring statistics."""
        return self.diagnostics.stats

    async def discover(self) -> List[LogSource]:
        """
        Fetch the log list and open every usable log.

        Raises:
            FetchError, ParseError: the log list could not be used
            LifecycleError: monitoring already started
        """
        if self._state is not LifecycleState.CREATED:
            raise LifecycleError(f"Cannot discover logs in state {self._state.value}")

        sources = await self._resolver.discover()
        # A repeated discovery replaces the previous set
        await self._close_sources()
        self.sources = sources
        self._discovered = True
        return sources

    async def start(self) -> None:
        """
        Start one polling loop per discovered log plus the filter workers.

        Runs discovery first if it has not happened yet.
        """
        if self._state is not LifecycleState.CREATED:
            raise LifecycleError(f"Manager cannot start from state {self._state.value}")
        if not self._discovered:
            await self.discover()
            if self._state is not LifecycleState.CREATED:
                raise LifecycleError("Manager was started twice concurrently")

        self._state = LifecycleState.RUNNING
        stats = self.diagnostics.stats
        stats.start_time = datetime.now(timezone.utc)
        stats.active_logs = len(self.sources)

        if not self.sources:
            logger.warning("No usable CT logs to monitor")

        # Process pool for certificate parsing (bypasses GIL)
        if self.parse_workers > 0:
            self._executor = ProcessPoolExecutor(max_workers=self.parse_workers)

        self._pool = FilterWorkerPool(
            self._queue,
            self.rules,
            self.sink,
            self._cancel,
            size=self.filter_workers,
            executor=self._executor,
            match_san=self.match_san,
            drain_on_stop=self.drain_on_stop,
            diagnostics=self.diagnostics,
        )
        self._scheduler = PollingScheduler(
            self._queue,
            self._cancel,
            poll_interval=self.poll_interval,
            diagnostics=self.diagnostics,
        )
        self._pool.start()
        self._scheduler.start(self.sources)

        logger.info(
            f"Starting monitoring of {len(self.sources)} CT logs with "
            f"{self.filter_workers} filter workers and {len(self.rules)} rules"
        )

    async def stop(self) -> None:
        """
        Stop monitoring and wait until everything has wound down.

        Pollers exit first, then the queue is closed and the workers finish
        (draining buffered entries unless drain_on_stop is off). When this
        returns no further match will be produced. Calling it before start()
        or after a previous stop() does nothing.
        """
        if self._state is LifecycleState.CREATED:
            logger.debug("stop() called before start(), nothing to do")
            return
        if self._state is LifecycleState.STOPPED:
            return
        if self._state is LifecycleState.STOPPING:
            await self._stopped.wait()
            return

        logger.info("Stopping CT watch...")
        self._state = LifecycleState.STOPPING
        try:
            self._cancel.set()
            if self._scheduler is not None:
                await self._scheduler.join(self.shutdown_timeout)

            self._queue.close()
            if not self.drain_on_stop:
                discarded = self._queue.clear()
                if discarded:
                    logger.info(f"Discarded {discarded} buffered entries on stop")

            if self._pool is not None:
                await self._pool.join(self.shutdown_timeout)
        finally:
            await self._release()
            self._state = LifecycleState.STOPPED
            self._stopped.set()

        stats = self.diagnostics.stats
        logger.info(
            f"CT watch stopped: {stats.entries_fetched} entries fetched, "
            f"{stats.matches} matches, {stats.entries_dropped} dropped"
        )

    async def run(self, stop_event: asyncio.Event) -> None:
        """Monitor until `stop_event` is set, then stop."""
        try:
            await self.start()
            await stop_event.wait()
        finally:
            # Also releases the transport when start() itself failed
            await self.aclose()

    async def aclose(self) -> None:
        """Release logs opened by discover() when monitoring never started."""
        if self._state is LifecycleState.CREATED:
            await self._release()
        else:
            await self.stop()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def _close_sources(self) -> None:
        for source in self.sources:
            try:
                await source.client.close()
            except Exception as e:
                logger.debug(f"Error closing client for {source.url}: {e}")

    async def _release(self) -> None:
        await self._close_sources()

        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

        if self._owns_transport:
            await self._transport.aclose()
