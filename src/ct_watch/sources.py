"""Per-log cursor state."""

from dataclasses import dataclass
from typing import Optional, Tuple

from .clients import LogClient
from .config import DEFAULT_WINDOW_SIZE
from .models import LogMeta


@dataclass
class LogSource:
    """
    One monitored log: its query capability and how far we have read it.

    `last_size` is the number of entries already consumed. It only moves
    forward. A source belongs to a single polling loop, which is the only
    writer.
    """

    meta: LogMeta
    client: LogClient
    last_size: int
    window_size: int = DEFAULT_WINDOW_SIZE

    def __post_init__(self):
        if self.window_size < 1:
            raise ValueError(f"Window size must be at least 1, got {self.window_size}")
        if self.last_size < 0:
            raise ValueError(f"Starting size must not be negative, got {self.last_size}")

    @property
    def url(self) -> str:
        return self.meta.url

    def next_window(self, tree_size: int) -> Optional[Tuple[int, int]]:
        """
        The [start, end) slice to fetch for a log of `tree_size` entries,
        or None when there is nothing new.
        """
        if tree_size <= self.last_size:
            return None
        start = self.last_size
        end = min(start + self.window_size, tree_size)
        return start, end

    def advance(self, end: int) -> None:
        if end < self.last_size:
            raise ValueError(
                f"Cursor for {self.url} cannot move backwards ({end} < {self.last_size})"
            )
        self.last_size = end
