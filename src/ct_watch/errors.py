"""Exception hierarchy for ct_watch."""


class CTWatchError(Exception):
    """Base class for all ct_watch errors"""


class ConstructionError(CTWatchError, ValueError):
    """Invalid rules or options; raised before monitoring starts."""

    def __init__(self, message: str, category: str = ""):
        super().__init__(message)
        self.category = category


class DiscoveryError(CTWatchError):
    """The log list could not be obtained; fatal to one discovery attempt."""


class FetchError(DiscoveryError):
    """Transport failure while downloading the log list"""


class ParseError(DiscoveryError):
    """The log list document is malformed"""


class LogQueryError(CTWatchError):
    """A single log answered with something unusable."""

    def __init__(self, log_url: str, message: str):
        super().__init__(f"{log_url}: {message}")
        self.log_url = log_url


class LifecycleError(CTWatchError, RuntimeError):
    """Manager used out of order"""
