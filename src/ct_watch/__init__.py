"""
Certificate Transparency watch library.

Polls every usable CT log (classic and tiled) concurrently and reports
newly logged certificates whose names match a set of regex rules.
"""

from .config import LOG_LIST_URL, VERSION
from .diagnostics import DiagnosticEvent, DiagnosticKind, Diagnostics, WatchStats
from .errors import (
    ConstructionError,
    CTWatchError,
    DiscoveryError,
    FetchError,
    LifecycleError,
    LogQueryError,
    ParseError,
)
from .loglist import LogListResolver, is_usable_log, parse_log_list
from .manager import CTWatchManager, LifecycleState
from .models import CertificateInfo, EntryType, LogKind, LogMeta, MatchResult, RawEntry
from .output_queue import OutputQueue
from .polling import LogPoller, PollingScheduler
from .rules import RulePack, load_rules
from .sources import LogSource
from .workers import FilterWorkerPool

__version__ = VERSION

__all__ = [
    "LOG_LIST_URL",
    "CTWatchManager",
    "LifecycleState",
    "RulePack",
    "load_rules",
    "LogListResolver",
    "is_usable_log",
    "parse_log_list",
    "LogSource",
    "LogPoller",
    "PollingScheduler",
    "OutputQueue",
    "FilterWorkerPool",
    "Diagnostics",
    "DiagnosticEvent",
    "DiagnosticKind",
    "WatchStats",
    "CertificateInfo",
    "EntryType",
    "LogKind",
    "LogMeta",
    "MatchResult",
    "RawEntry",
    "CTWatchError",
    "ConstructionError",
    "DiscoveryError",
    "FetchError",
    "ParseError",
    "LogQueryError",
    "LifecycleError",
]
