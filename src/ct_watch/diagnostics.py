"""Non-fatal event reporting and running statistics."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

# Overload warnings are logged for the first drop and then every N drops
DROP_LOG_EVERY = 1_000


class DiagnosticKind(str, Enum):
    DISCOVERY_FAILURE = "discovery_failure"
    POLL_FAILURE = "poll_failure"
    TREE_SHRANK = "tree_shrank"
    ENTRY_DROPPED = "entry_dropped"
    SINK_FAILURE = "sink_failure"


@dataclass
class DiagnosticEvent:
    """Something went wrong for one log or one entry; monitoring continues."""

    kind: DiagnosticKind
    log_url: str
    message: str
    error: Optional[BaseException] = None


@dataclass
class WatchStats:
    """Statistics for monitoring"""

    entries_fetched: int = 0
    entries_per_log: Dict[str, int] = field(default_factory=dict)
    errors_per_log: Dict[str, int] = field(default_factory=dict)
    entries_dropped: int = 0
    entries_without_certificate: int = 0
    decode_failures: int = 0
    entries_filtered: int = 0
    matches: int = 0
    matches_per_category: Dict[str, int] = field(default_factory=dict)
    sink_failures: int = 0
    active_logs: int = 0
    start_time: Optional[datetime] = None


DiagnosticCallback = Callable[[DiagnosticEvent], None]


class Diagnostics:
    """
    Collects stats and fans non-fatal events out to logging and an
    optional callback. A failing callback is logged and otherwise ignored.
    """

    def __init__(self, callback: Optional[DiagnosticCallback] = None):
        self.callback = callback
        self.stats = WatchStats()

    def _emit(self, event: DiagnosticEvent) -> None:
        if self.callback is None:
            return
        try:
            self.callback(event)
        except Exception as e:
            logger.error(f"Error in diagnostics callback for {event.log_url}: {e}", exc_info=True)

    def _count_error(self, log_url: str) -> None:
        self.stats.errors_per_log[log_url] = self.stats.errors_per_log.get(log_url, 0) + 1

    def discovery_failure(self, log_url: str, error: BaseException) -> None:
        self._count_error(log_url)
        # Strip verbose httpx error info
        err_msg = str(error).split("\n")[0]
        logger.warning(f"Skipping {log_url}: cannot initialise log: {err_msg}")
        self._emit(DiagnosticEvent(DiagnosticKind.DISCOVERY_FAILURE, log_url, err_msg, error))

    def poll_failure(self, log_url: str, error: BaseException) -> None:
        self._count_error(log_url)
        err_msg = str(error).split("\n")[0] or type(error).__name__
        logger.warning(f"Error polling {log_url}: {err_msg}")
        self._emit(DiagnosticEvent(DiagnosticKind.POLL_FAILURE, log_url, err_msg, error))

    def tree_shrank(self, log_url: str, tree_size: int, last_size: int) -> None:
        self._count_error(log_url)
        message = f"tree size went backwards ({tree_size} < {last_size})"
        logger.warning(f"Ignoring tree head from {log_url}: {message}")
        self._emit(DiagnosticEvent(DiagnosticKind.TREE_SHRANK, log_url, message))

    def entries_fetched(self, log_url: str, count: int) -> None:
        self.stats.entries_fetched += count
        self.stats.entries_per_log[log_url] = self.stats.entries_per_log.get(log_url, 0) + count

    def entry_dropped(self, log_url: str, index: int) -> None:
        self.stats.entries_dropped += 1
        dropped = self.stats.entries_dropped
        if dropped == 1 or dropped % DROP_LOG_EVERY == 0:
            logger.warning(f"Output queue full, dropping log entries ({dropped} dropped so far)")
        self._emit(
            DiagnosticEvent(
                DiagnosticKind.ENTRY_DROPPED, log_url, f"entry {index} dropped, queue full"
            )
        )

    def entry_without_certificate(self) -> None:
        self.stats.entries_without_certificate += 1

    def decode_failure(self) -> None:
        self.stats.decode_failures += 1

    def entry_filtered(self) -> None:
        self.stats.entries_filtered += 1

    def matched(self, category: str) -> None:
        self.stats.matches += 1
        self.stats.matches_per_category[category] = (
            self.stats.matches_per_category.get(category, 0) + 1
        )

    def sink_failure(self, log_url: str, error: BaseException) -> None:
        self.stats.sink_failures += 1
        logger.error(f"Error in match sink for {log_url}: {error}", exc_info=error)
        self._emit(DiagnosticEvent(DiagnosticKind.SINK_FAILURE, log_url, str(error), error))
