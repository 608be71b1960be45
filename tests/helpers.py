"""Shared builders and fakes for the test suite."""

import asyncio
import datetime
from typing import Callable, Dict, List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from ct_watch.diagnostics import DiagnosticEvent
from ct_watch.models import EntryType, LogKind, LogMeta, RawEntry

_KEY = ec.generate_private_key(ec.SECP256R1())
_CERT_CACHE: Dict[tuple, bytes] = {}


def make_cert(common_name: Optional[str], sans: Optional[List[str]] = None) -> bytes:
    """Self-signed DER certificate with the given CN and SAN DNS names."""
    key = (common_name, tuple(sans or ()))
    if key in _CERT_CACHE:
        return _CERT_CACHE[key]

    attributes = []
    if common_name is not None:
        attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
    subject = x509.Name(attributes)
    issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test CA")])
    now = datetime.datetime(2025, 1, 1, tzinfo=datetime.timezone.utc)

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(_KEY.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=90))
    )
    if sans:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(name) for name in sans]),
            critical=False,
        )
    der = builder.sign(_KEY, hashes.SHA256()).public_bytes(serialization.Encoding.DER)
    _CERT_CACHE[key] = der
    return der


def raw_entry(
    cert_data: Optional[bytes], index: int = 0, log_url: str = "https://log.example/"
) -> RawEntry:
    return RawEntry(
        index=index,
        timestamp=1_700_000_000_000 + index,
        entry_type=EntryType.X509_ENTRY,
        log_url=log_url,
        cert_data=cert_data,
    )


class FakeLogClient:
    """In-memory log: `certs` holds one DER (or None) per entry."""

    def __init__(self, url: str = "https://log.example/", certs: Optional[List] = None):
        self.log_meta = LogMeta(url=url, name=f"Fake {url}", operator="Fake", kind=LogKind.CLASSIC)
        self.certs: List[Optional[bytes]] = list(certs or [])
        self.size_override: Optional[int] = None
        self.fail_tree_size = 0
        self.fail_entries = 0
        self.entry_calls: List[tuple] = []
        self.tree_size_calls = 0
        self.closed = False

    def grow(self, count: int, cert: Optional[bytes] = b"") -> None:
        for _ in range(count):
            self.certs.append(cert)

    async def get_tree_size(self) -> int:
        self.tree_size_calls += 1
        if self.fail_tree_size:
            self.fail_tree_size -= 1
            raise ConnectionError(f"tree head unavailable for {self.log_meta.url}")
        if self.size_override is not None:
            return self.size_override
        return len(self.certs)

    async def get_entries(self, start: int, end: int) -> List[RawEntry]:
        self.entry_calls.append((start, end))
        if self.fail_entries:
            self.fail_entries -= 1
            raise ConnectionError(f"get-entries failed for {self.log_meta.url}")
        return [
            raw_entry(self.certs[i] if i < len(self.certs) else None, i, self.log_meta.url)
            for i in range(start, end)
        ]

    async def close(self) -> None:
        self.closed = True


class EventRecorder:
    def __init__(self):
        self.events: List[DiagnosticEvent] = []

    def __call__(self, event: DiagnosticEvent) -> None:
        self.events.append(event)

    def kinds(self):
        return [event.kind for event in self.events]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)
