"""
CT log list discovery.

Fetches the v3 log list, keeps the logs worth watching and turns each of
them into a LogSource positioned at the log's current size.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from .clients import LogClient, create_client
from .config import (
    DEFAULT_LOG_LIST_TIMEOUT,
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    DEFAULT_WINDOW_SIZE,
    LOG_LIST_URL,
    MAX_MMD_SECONDS,
)
from .diagnostics import Diagnostics
from .errors import FetchError, ParseError
from .httpx_transport import SharedTransportView
from .models import LogDescriptor, LogKind, LogMeta
from .sources import LogSource

logger = logging.getLogger(__name__)

RETIRED = "retired"
REJECTED = "rejected"

ClientFactory = Callable[[LogMeta], LogClient]


def is_usable_log(
    description: str,
    state: Optional[str],
    validity_end: Optional[datetime],
    mmd_seconds: int,
    now: Optional[datetime] = None,
) -> bool:
    """Decide whether a listed log is worth monitoring."""
    # Test and placeholder logs
    if "bogus" in description or "placeholder" in description:
        return False
    if state in (RETIRED, REJECTED):
        return False
    # Expired shard
    if validity_end is not None:
        if now is None:
            now = datetime.now(timezone.utc)
        if now >= validity_end:
            return False
    if mmd_seconds > MAX_MMD_SECONDS:
        return False
    return True


def _parse_timestamp(value: Any) -> datetime:
    if not isinstance(value, str):
        raise ValueError(f"expected an RFC 3339 string, got {value!r}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_log(log: Any, operator: str, kind: LogKind) -> LogDescriptor:
    if not isinstance(log, dict):
        raise ValueError(f"log listing must be an object, got {type(log).__name__}")

    url_key = "monitoring_url" if kind == LogKind.TILED else "url"
    url = log.get(url_key)
    if not isinstance(url, str) or not url:
        raise ValueError(f"log listing has no {url_key}")

    state = None
    raw_state = log.get("state")
    if isinstance(raw_state, dict) and raw_state:
        state = next(iter(raw_state))

    validity_end = None
    interval = log.get("temporal_interval")
    if isinstance(interval, dict) and "end_exclusive" in interval:
        validity_end = _parse_timestamp(interval["end_exclusive"])

    mmd = log.get("mmd", 0)
    if isinstance(mmd, bool) or not isinstance(mmd, int):
        raise ValueError(f"mmd of {url} is not an integer: {mmd!r}")

    return LogDescriptor(
        url=url,
        description=str(log.get("description", "")),
        operator=operator,
        state=state,
        validity_end=validity_end,
        mmd=mmd,
        kind=kind,
    )


def parse_log_list(document: Any) -> List[LogDescriptor]:
    """Flatten a v3 log list into descriptors, classic and tiled alike."""
    if not isinstance(document, dict):
        raise ParseError("Log list must be a JSON object")
    operators = document.get("operators")
    if not isinstance(operators, list):
        raise ParseError("Log list has no operators array")

    descriptors: List[LogDescriptor] = []
    try:
        for operator in operators:
            if not isinstance(operator, dict):
                raise ValueError("operator entry must be an object")
            operator_name = str(operator.get("name", "Unknown"))
            for log in operator.get("logs") or []:
                descriptors.append(_parse_log(log, operator_name, LogKind.CLASSIC))
            for log in operator.get("tiled_logs") or []:
                descriptors.append(_parse_log(log, operator_name, LogKind.TILED))
    except (TypeError, ValueError) as e:
        raise ParseError(f"Malformed log list: {e}") from e

    return descriptors


class LogListResolver:
    """Turns the published log list into ready-to-poll LogSources."""

    def __init__(
        self,
        log_list_url: str = LOG_LIST_URL,
        window_size: int = DEFAULT_WINDOW_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
        log_list_timeout: float = DEFAULT_LOG_LIST_TIMEOUT,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        client_factory: Optional[ClientFactory] = None,
        include_logs: Optional[List[str]] = None,
        exclude_logs: Optional[List[str]] = None,
        diagnostics: Optional[Diagnostics] = None,
    ):
        """
        Args:
            log_list_url: Where to download the v3 log list from
            window_size: Max entries each source fetches per poll
            timeout: HTTP timeout for per-log requests
            log_list_timeout: HTTP timeout for the log list download
            user_agent: Custom user agent string
            transport: httpx transport shared by all requests
            client_factory: Builds the query capability for a log; defaults
                to a classic or tiled httpx client depending on the listing
            include_logs: Only monitor logs matching these patterns (partial URL match)
            exclude_logs: Skip logs matching these patterns (partial URL match)
            diagnostics: Where per-log setup failures are reported
        """
        self.log_list_url = log_list_url
        self.window_size = window_size
        self.timeout = timeout
        self.log_list_timeout = log_list_timeout
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.include_logs = include_logs
        self.exclude_logs = exclude_logs
        self.diagnostics = diagnostics or Diagnostics()
        self._transport = transport
        self._client_factory = client_factory or self._default_client

    def _default_client(self, log_meta: LogMeta) -> LogClient:
        return create_client(
            log_meta,
            timeout=self.timeout,
            user_agent=self.user_agent,
            transport=self._transport,
        )

    def _should_include_log(self, url: str) -> bool:
        """Check if log URL should be included based on include/exclude filters."""
        if self.include_logs:
            if not any(pattern in url for pattern in self.include_logs):
                return False
        if self.exclude_logs:
            if any(pattern in url for pattern in self.exclude_logs):
                return False
        return True

    async def fetch_log_list(self) -> Dict[str, Any]:
        """Download and decode the log list document."""
        headers = {"User-Agent": self.user_agent}
        transport = SharedTransportView(self._transport) if self._transport is not None else None
        try:
            async with httpx.AsyncClient(headers=headers, transport=transport) as client:
                response = await client.get(self.log_list_url, timeout=self.log_list_timeout)
                response.raise_for_status()
                body = response.content
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchError(f"Failed to fetch CT log list from {self.log_list_url}: {e}") from e

        try:
            return json.loads(body)
        except ValueError as e:
            raise ParseError(f"CT log list from {self.log_list_url} is not valid JSON: {e}") from e

    def select(self, descriptors: List[LogDescriptor]) -> List[LogDescriptor]:
        """Descriptors that pass the eligibility and URL filters, in list order."""
        now = datetime.now(timezone.utc)
        selected = []
        for descriptor in descriptors:
            if not is_usable_log(
                descriptor.description,
                descriptor.state,
                descriptor.validity_end,
                descriptor.mmd,
                now=now,
            ):
                logger.debug(f"Ignoring unusable log {descriptor.url} ({descriptor.description})")
                continue
            if not self._should_include_log(descriptor.url):
                logger.debug(f"Ignoring filtered log {descriptor.url}")
                continue
            selected.append(descriptor)
        return selected

    async def _init_source(self, descriptor: LogDescriptor) -> Optional[LogSource]:
        """Open one log and read its size. Failures are reported, not raised."""
        client = None
        try:
            client = self._client_factory(descriptor.to_meta())
            tree_size = await client.get_tree_size()
        except Exception as e:
            self.diagnostics.discovery_failure(descriptor.url, e)
            if client is not None:
                try:
                    await client.close()
                except Exception as close_error:
                    logger.debug(f"Error closing client for {descriptor.url}: {close_error}")
            return None

        logger.debug(f"Monitoring {descriptor.url} from tree size {tree_size}")
        return LogSource(
            meta=descriptor.to_meta(),
            client=client,
            last_size=tree_size,
            window_size=self.window_size,
        )

    async def discover(self) -> List[LogSource]:
        """
        Build one LogSource per usable log.

        Raises FetchError or ParseError when the log list itself cannot be
        used. A log that cannot be opened is skipped.
        """
        document = await self.fetch_log_list()
        descriptors = self.select(parse_log_list(document))

        results = await asyncio.gather(*(self._init_source(d) for d in descriptors))
        sources = [source for source in results if source is not None]

        logger.info(
            f"Discovered {len(sources)} usable CT logs "
            f"({len(descriptors) - len(sources)} failed to initialise)"
        )
        return sources
