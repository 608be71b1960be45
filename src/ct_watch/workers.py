"""Filter workers: decode queued entries and match them against the rules."""

import asyncio
import inspect
import logging
from concurrent.futures import Executor
from typing import Awaitable, Callable, List, Optional, Union

from .certificates import decode_certificate
from .config import DEFAULT_FILTER_WORKERS
from .diagnostics import Diagnostics
from .models import CertificateInfo, MatchResult, RawEntry
from .output_queue import OutputQueue
from .polling import join_tasks
from .rules import RulePack

logger = logging.getLogger(__name__)

MatchSink = Callable[[MatchResult], Union[None, Awaitable[None]]]


class FilterWorkerPool:
    """
    Fixed number of consumers sharing one OutputQueue and one RulePack.

    Only the Subject Common Name is matched unless `match_san` is set, in
    which case SAN DNS names are tried too. Categories are tried in
    lexicographic order and the first matching one tags the result.
    """

    def __init__(
        self,
        queue: OutputQueue,
        rules: RulePack,
        sink: MatchSink,
        cancel: asyncio.Event,
        size: int = DEFAULT_FILTER_WORKERS,
        executor: Optional[Executor] = None,
        match_san: bool = False,
        drain_on_stop: bool = True,
        diagnostics: Optional[Diagnostics] = None,
    ):
        if size < 1:
            raise ValueError(f"Worker pool size must be at least 1, got {size}")
        self.size = size
        self.match_san = match_san
        self.drain_on_stop = drain_on_stop
        self._queue = queue
        self._rules = rules
        self._sink = sink
        self._cancel = cancel
        self._executor = executor
        self._diagnostics = diagnostics or Diagnostics()
        self._tasks: List[asyncio.Task] = []

    @property
    def tasks(self) -> List[asyncio.Task]:
        return list(self._tasks)

    def start(self) -> None:
        for worker_id in range(self.size):
            self._tasks.append(
                asyncio.create_task(self._worker(worker_id), name=f"filter:{worker_id}")
            )

    async def join(self, timeout: Optional[float] = None) -> None:
        """Wait until every worker has exited."""
        await join_tasks(self._tasks, timeout)

    async def _decode(self, cert_data: bytes) -> Optional[CertificateInfo]:
        try:
            if self._executor is None:
                return decode_certificate(cert_data)
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, decode_certificate, cert_data)
        except Exception as e:
            # Unparseable certificates are routine in CT logs
            logger.debug(f"Discarding undecodable certificate: {e}")
            self._diagnostics.decode_failure()
            return None

    def classify(self, cert: CertificateInfo) -> Optional[str]:
        """Category tagging this certificate, or None."""
        if not self.match_san:
            return self._rules.match(cert.common_name)
        return self._rules.match_any([cert.common_name] + cert.domains)

    async def process(self, entry: RawEntry) -> Optional[MatchResult]:
        """Turn one entry into a MatchResult, or None when it is discarded."""
        if not entry.has_certificate:
            self._diagnostics.entry_without_certificate()
            return None

        cert = await self._decode(entry.cert_data)
        if cert is None:
            return None

        category = self.classify(cert)
        if category is None:
            self._diagnostics.entry_filtered()
            return None

        self._diagnostics.matched(category)
        return MatchResult(
            category=category,
            certificate=cert,
            log_url=entry.log_url,
            index=entry.index,
            timestamp=entry.timestamp,
            entry_type=entry.entry_type,
        )

    async def _deliver(self, result: MatchResult) -> None:
        try:
            outcome = self._sink(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            self._diagnostics.sink_failure(result.log_url, e)

    async def _worker(self, worker_id: int) -> None:
        until = None if self.drain_on_stop else self._cancel
        while True:
            if until is not None and until.is_set():
                break
            entry = await self._queue.take(until)
            if entry is None:
                break
            result = await self.process(entry)
            if result is not None:
                await self._deliver(result)
        logger.debug(f"Filter worker {worker_id} exited")
