"""Tests for log list parsing and discovery."""

import json
from datetime import timezone

import httpx
import pytest

from ct_watch.diagnostics import DiagnosticKind
from ct_watch.errors import FetchError, ParseError
from ct_watch.loglist import LogListResolver, parse_log_list
from ct_watch.models import LogKind

from tests.helpers import FakeLogClient

LOG_LIST_URL = "https://loglist.example/v3/log_list.json"


def log(url, description="Good log", state="usable", end="2099-01-01T00:00:00Z", mmd=86400):
    entry = {"description": description, "url": url, "mmd": mmd}
    if state is not None:
        entry["state"] = {state: {"timestamp": "2020-01-01T00:00:00Z"}}
    if end is not None:
        entry["temporal_interval"] = {
            "start_inclusive": "2020-01-01T00:00:00Z",
            "end_exclusive": end,
        }
    return entry


def sample_log_list():
    return {
        "version": "1.0",
        "operators": [
            {
                "name": "Google",
                "logs": [
                    log("https://ct.google.example/argon/"),
                    log("https://ct.google.example/old/", state="retired"),
                    log("https://ct.google.example/expired/", end="2001-01-01T00:00:00Z"),
                ],
            },
            {
                "name": "Example CA",
                "logs": [
                    log("https://ct.ca.example/bogus/", description="bogus testing log"),
                    log("https://ct.ca.example/slow/", mmd=86401),
                    log("https://ct.ca.example/down/"),
                ],
                "tiled_logs": [
                    {
                        **log(None),
                        "submission_url": "https://submit.ca.example/tiled/",
                        "monitoring_url": "https://mon.ca.example/tiled/",
                    }
                ],
            },
        ],
    }


def list_transport(body, status=200):
    def handler(request):
        if str(request.url) == LOG_LIST_URL:
            if isinstance(body, (dict, list)):
                return httpx.Response(status, json=body)
            return httpx.Response(status, content=body)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


class FakeFactory:
    def __init__(self, sizes=None, broken=()):
        self.sizes = sizes or {}
        self.broken = set(broken)
        self.clients = {}

    def __call__(self, meta):
        client = FakeLogClient(meta.url)
        client.log_meta = meta
        client.grow(self.sizes.get(meta.url, 0))
        if meta.url in self.broken:
            client.fail_tree_size = 1
        self.clients[meta.url] = client
        return client


def test_parse_log_list_reads_classic_and_tiled_logs():
    descriptors = parse_log_list(sample_log_list())
    assert len(descriptors) == 7

    first = descriptors[0]
    assert first.url == "https://ct.google.example/argon/"
    assert first.operator == "Google"
    assert first.state == "usable"
    assert first.mmd == 86400
    assert first.validity_end.tzinfo == timezone.utc
    assert first.kind == LogKind.CLASSIC

    tiled = descriptors[-1]
    assert tiled.url == "https://mon.ca.example/tiled/"
    assert tiled.kind == LogKind.TILED


@pytest.mark.parametrize("document", [
    [],
    {"version": "1"},
    {"operators": [{"name": "x", "logs": [{"description": "no url"}]}]},
    {"operators": [{"name": "x", "logs": [log("https://a/", mmd="soon")]}]},
    {"operators": [{"name": "x", "logs": [log("https://a/", end="not a date")]}]},
])
def test_parse_log_list_rejects_malformed_documents(document):
    with pytest.raises(ParseError):
        parse_log_list(document)


@pytest.mark.asyncio
async def test_discover_keeps_usable_logs_and_isolates_failures(diagnostics, recorder):
    factory = FakeFactory(
        sizes={"https://ct.google.example/argon/": 1500, "https://mon.ca.example/tiled/": 7},
        broken={"https://ct.ca.example/down/"},
    )
    resolver = LogListResolver(
        LOG_LIST_URL,
        window_size=500,
        transport=list_transport(sample_log_list()),
        client_factory=factory,
        diagnostics=diagnostics,
    )

    sources = await resolver.discover()

    assert [source.url for source in sources] == [
        "https://ct.google.example/argon/",
        "https://mon.ca.example/tiled/",
    ]
    assert sources[0].last_size == 1500
    assert sources[0].window_size == 500
    assert sources[1].last_size == 7
    assert sources[1].meta.kind == LogKind.TILED

    # Ineligible logs never get a client
    assert set(factory.clients) == {
        "https://ct.google.example/argon/",
        "https://ct.ca.example/down/",
        "https://mon.ca.example/tiled/",
    }
    assert factory.clients["https://ct.ca.example/down/"].closed
    assert recorder.kinds() == [DiagnosticKind.DISCOVERY_FAILURE]
    assert recorder.events[0].log_url == "https://ct.ca.example/down/"


@pytest.mark.asyncio
async def test_discover_applies_include_and_exclude_filters():
    factory = FakeFactory()
    resolver = LogListResolver(
        LOG_LIST_URL,
        transport=list_transport(sample_log_list()),
        client_factory=factory,
        include_logs=["example/"],
        exclude_logs=["argon", "down"],
    )
    sources = await resolver.discover()
    assert [source.url for source in sources] == ["https://mon.ca.example/tiled/"]


@pytest.mark.asyncio
async def test_discover_fetch_failure():
    resolver = LogListResolver(LOG_LIST_URL, transport=list_transport({}, status=500))
    with pytest.raises(FetchError):
        await resolver.discover()


@pytest.mark.asyncio
async def test_discover_transport_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    resolver = LogListResolver(LOG_LIST_URL, transport=httpx.MockTransport(handler))
    with pytest.raises(FetchError):
        await resolver.discover()


@pytest.mark.asyncio
async def test_discover_parse_failure():
    resolver = LogListResolver(LOG_LIST_URL, transport=list_transport(b"<html>nope</html>"))
    with pytest.raises(ParseError):
        await resolver.discover()


@pytest.mark.asyncio
async def test_fetch_log_list_returns_document():
    document = sample_log_list()
    resolver = LogListResolver(LOG_LIST_URL, transport=list_transport(document))
    assert await resolver.fetch_log_list() == json.loads(json.dumps(document))
