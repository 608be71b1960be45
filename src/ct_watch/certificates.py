"""Decode certificates carried by CT log entries."""

import hashlib
from typing import List

from cryptography import x509
from cryptography.hazmat.backends import default_backend

from .models import CertificateInfo


def parse_x509_certificate(cert_data: bytes) -> x509.Certificate:
    """Parse X.509 certificate from DER bytes"""
    return x509.load_der_x509_certificate(cert_data, default_backend())


def extract_common_name(cert: x509.Certificate) -> str:
    """Subject CN, or an empty string when the certificate has none."""
    try:
        cn_attr = cert.subject.get_attributes_for_oid(x509.oid.NameOID.COMMON_NAME)
    except ValueError:
        return ""
    if not cn_attr:
        return ""
    cn_value = cn_attr[0].value
    if isinstance(cn_value, bytes):
        cn_value = cn_value.decode("utf-8", errors="ignore")
    return str(cn_value)


def extract_san_names(cert: x509.Certificate) -> List[str]:
    try:
        san_ext = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    return list(san_ext.value.get_values_for_type(x509.DNSName))


def calculate_fingerprint(cert_data: bytes, algorithm: str = "sha256") -> str:
    """Calculate certificate fingerprint"""
    if algorithm == "sha256":
        h = hashlib.sha256(cert_data).digest()
    elif algorithm == "sha1":
        h = hashlib.sha1(cert_data).digest()
    else:
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    return ":".join(f"{b:02X}" for b in h)


def decode_certificate(cert_data: bytes) -> CertificateInfo:
    """
    Decode a DER certificate into a CertificateInfo.

    Module-level so it can be shipped to a process pool. Raises whatever
    the X.509 parser raises on malformed input; callers treat that as a
    discarded entry.
    """
    cert = parse_x509_certificate(cert_data)
    common_name = extract_common_name(cert)

    domains: List[str] = []
    if common_name:
        domains.append(common_name)
    for name in extract_san_names(cert):
        if name not in domains:
            domains.append(name)

    return CertificateInfo(
        common_name=common_name,
        domains=domains,
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        serial_number=format(cert.serial_number, "X"),
        fingerprint_sha256=calculate_fingerprint(cert_data, "sha256"),
        fingerprint_sha1=calculate_fingerprint(cert_data, "sha1"),
        der=bytes(cert_data),
    )
