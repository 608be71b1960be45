"""Data types shared across the CT watch pipeline."""

import base64
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional


class EntryType(IntEnum):
    """CT log entry types"""

    X509_ENTRY = 0
    PRECERT_ENTRY = 1


class LogKind(str, Enum):
    """How a log is queried"""

    CLASSIC = "classic"
    TILED = "tiled"


@dataclass
class SignedTreeHead:
    """Signed Tree Head from a classic CT log"""

    tree_size: int
    timestamp: int
    sha256_root_hash: str
    tree_head_signature: str


@dataclass
class TiledCheckpoint:
    """Checkpoint information from a tiled CT log"""

    origin: str
    size: int
    hash: str


@dataclass
class LogMeta:
    """Metadata about a CT log"""

    url: str
    name: str
    operator: str
    kind: LogKind = LogKind.CLASSIC


@dataclass
class LogDescriptor:
    """One log listing taken from the log list document, used during discovery only."""

    url: str
    description: str
    operator: str
    state: Optional[str]
    validity_end: Optional[datetime]
    mmd: int
    kind: LogKind = LogKind.CLASSIC

    def to_meta(self) -> LogMeta:
        return LogMeta(
            url=self.url, name=self.description, operator=self.operator, kind=self.kind
        )


@dataclass
class RawEntry:
    """Undecoded log entry as it travels from a poller to the filter workers."""

    index: int
    timestamp: int
    entry_type: EntryType
    log_url: str
    cert_data: Optional[bytes] = None  # DER certificate, None when the leaf carries none

    @property
    def has_certificate(self) -> bool:
        return bool(self.cert_data)


@dataclass
class CertificateInfo:
    """Attributes decoded from a DER certificate."""

    common_name: str
    domains: List[str] = field(default_factory=list)
    subject: str = ""
    issuer: str = ""
    not_before: Optional[datetime] = None
    not_after: Optional[datetime] = None
    serial_number: str = ""
    fingerprint_sha256: str = ""
    fingerprint_sha1: str = ""
    der: bytes = b""


@dataclass
class MatchResult:
    """A certificate that matched one rule category."""

    category: str
    certificate: CertificateInfo
    log_url: str
    index: int
    timestamp: int
    entry_type: EntryType

    @property
    def common_name(self) -> str:
        return self.certificate.common_name

    def to_dict(self) -> Dict[str, Any]:
        cert = self.certificate
        return {
            "category": self.category,
            "common_name": cert.common_name,
            "domains": cert.domains,
            "subject": cert.subject,
            "issuer": cert.issuer,
            "not_before": cert.not_before.isoformat() if cert.not_before else None,
            "not_after": cert.not_after.isoformat() if cert.not_after else None,
            "serial_number": cert.serial_number,
            "fingerprint_sha256": cert.fingerprint_sha256,
            "fingerprint_sha1": cert.fingerprint_sha1,
            "der": base64.b64encode(cert.der).decode("ascii"),
            "log_url": self.log_url,
            "index": self.index,
            "timestamp": self.timestamp,
            "entry_type": (
                "PrecertLogEntry"
                if self.entry_type == EntryType.PRECERT_ENTRY
                else "X509LogEntry"
            ),
        }
