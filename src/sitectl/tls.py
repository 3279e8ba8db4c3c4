"""Certificate presence and expiry inspection.

Certificates are owned by certbot. sitectl only looks at the files under
``<live_dir>/<domain>/`` to decide whether the HTTPS form of a site may be
activated and to report expiry during health checks.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Protocol, cast

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .config import TLSConfig


class CertificateSeverity(Enum):
    """Severities for certificate findings."""

    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class CertificatePaths:
    """Well-known certbot file locations for a domain."""

    directory: Path
    fullchain: Path
    private_key: Path
    certificate: Path

    @classmethod
    def for_domain(cls, live_dir: Path, domain: str) -> CertificatePaths:
        """Return the certbot live paths for *domain*."""
        directory = live_dir / domain
        return cls(
            directory=directory,
            fullchain=directory / "fullchain.pem",
            private_key=directory / "privkey.pem",
            certificate=directory / "cert.pem",
        )

    def exists(self) -> bool:
        """Return True when the chain and key nginx needs are both present."""
        return self.fullchain.exists() and self.private_key.exists()


@dataclass(frozen=True)
class CertificateFinding:
    """Individual inspection outcome."""

    check: str
    severity: CertificateSeverity
    message: str
    path: Path | None = None


@dataclass(frozen=True)
class CertificateReport:
    """Aggregate inspection results for a domain's certificate."""

    domain: str
    paths: CertificatePaths
    present: bool
    findings: tuple[CertificateFinding, ...]
    not_valid_after: datetime | None = None
    days_remaining: int | None = None

    @property
    def status(self) -> CertificateSeverity:
        """Return the worst severity across findings."""
        severities = {finding.severity for finding in self.findings}
        if CertificateSeverity.ERROR in severities:
            return CertificateSeverity.ERROR
        if CertificateSeverity.WARNING in severities:
            return CertificateSeverity.WARNING
        return CertificateSeverity.OK

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation of the report."""
        return {
            "domain": self.domain,
            "directory": str(self.paths.directory),
            "present": self.present,
            "status": self.status.value,
            "not_valid_after": (
                self.not_valid_after.isoformat() if self.not_valid_after else None
            ),
            "days_remaining": self.days_remaining,
            "findings": [
                {
                    "check": finding.check,
                    "severity": finding.severity.value,
                    "message": finding.message,
                    "path": str(finding.path) if finding.path is not None else None,
                }
                for finding in self.findings
            ],
        }


class PublicKeyProtocol(Protocol):
    """Protocol covering public keys exposing ``public_bytes``."""

    def public_bytes(
        self,
        *,
        encoding: serialization.Encoding,
        format: serialization.PublicFormat,
    ) -> bytes:
        """Return the public key bytes in the requested encoding/format."""


class PrivateKeyProtocol(Protocol):
    """Protocol for private keys that can provide a matching public key."""

    def public_key(self) -> PublicKeyProtocol:
        """Return the associated public key object."""


class CertificateInspector:
    """Locate and inspect certbot-managed certificates."""

    def __init__(self, tls: TLSConfig) -> None:
        """Capture the live directory and expiry policy."""
        self._tls = tls

    def paths_for(self, domain: str) -> CertificatePaths:
        """Return the certificate paths for *domain*."""
        return CertificatePaths.for_domain(self._tls.live_dir, domain)

    def has_certificate(self, domain: str) -> bool:
        """Return True when a usable certificate exists for *domain*."""
        return self.paths_for(domain).exists()

    def inspect(self, domain: str, *, now: datetime | None = None) -> CertificateReport:
        """Inspect the certificate for *domain* and return a report."""
        now = now or datetime.now(UTC)
        paths = self.paths_for(domain)
        findings: list[CertificateFinding] = []

        if not paths.directory.is_dir():
            findings.append(
                CertificateFinding(
                    check="exists",
                    severity=CertificateSeverity.WARNING,
                    message="No SSL certificate found.",
                    path=paths.directory,
                )
            )
            return CertificateReport(
                domain=domain, paths=paths, present=False, findings=tuple(findings)
            )

        source = paths.certificate if paths.certificate.exists() else paths.fullchain
        try:
            cert_obj = _load_certificate(source)
        except (OSError, ValueError) as exc:
            findings.append(
                CertificateFinding(
                    check="parse",
                    severity=CertificateSeverity.WARNING,
                    message=f"Certificate expiry unreadable: {exc}",
                    path=source,
                )
            )
            return CertificateReport(
                domain=domain, paths=paths, present=True, findings=tuple(findings)
            )

        not_after = _not_valid_after(cert_obj)
        days_remaining = (not_after - now).days
        if not_after <= now:
            findings.append(
                CertificateFinding(
                    check="expiry",
                    severity=CertificateSeverity.ERROR,
                    message=f"Certificate expired on {not_after.isoformat()}",
                    path=source,
                )
            )
        elif days_remaining <= self._tls.warn_expiry_days:
            findings.append(
                CertificateFinding(
                    check="expiry",
                    severity=CertificateSeverity.WARNING,
                    message=(
                        "Certificate expires soon "
                        f"({not_after.isoformat()}, {days_remaining} day(s) remaining)"
                    ),
                    path=source,
                )
            )
        else:
            findings.append(
                CertificateFinding(
                    check="expiry",
                    severity=CertificateSeverity.OK,
                    message=f"Certificate expires: {not_after.isoformat()}",
                    path=source,
                )
            )

        findings.append(self._check_key(cert_obj, paths.private_key))
        return CertificateReport(
            domain=domain,
            paths=paths,
            present=True,
            findings=tuple(findings),
            not_valid_after=not_after,
            days_remaining=days_remaining,
        )

    def _check_key(self, cert_obj: x509.Certificate, key_path: Path) -> CertificateFinding:
        if not key_path.exists():
            return CertificateFinding(
                check="key",
                severity=CertificateSeverity.ERROR,
                message="Private key missing.",
                path=key_path,
            )
        if not os.access(key_path, os.R_OK):
            return CertificateFinding(
                check="key",
                severity=CertificateSeverity.WARNING,
                message="Private key not readable by the current user; match not verified.",
                path=key_path,
            )
        try:
            key_obj = _load_private_key(key_path)
        except (OSError, ValueError, TypeError) as exc:
            return CertificateFinding(
                check="key",
                severity=CertificateSeverity.ERROR,
                message=f"Failed to parse private key: {exc}",
                path=key_path,
            )
        if _public_keys_match(cert_obj, key_obj):
            return CertificateFinding(
                check="key",
                severity=CertificateSeverity.OK,
                message="Certificate and key match.",
                path=key_path,
            )
        return CertificateFinding(
            check="key",
            severity=CertificateSeverity.ERROR,
            message="Certificate does not match the private key.",
            path=key_path,
        )


def _load_certificate(path: Path) -> x509.Certificate:
    data = path.read_bytes()
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        return x509.load_der_x509_certificate(data)


def _load_private_key(path: Path) -> PrivateKeyProtocol:
    data = path.read_bytes()
    private_key = serialization.load_pem_private_key(data, password=None)
    return cast(PrivateKeyProtocol, private_key)


def _public_keys_match(cert: x509.Certificate, private_key: PrivateKeyProtocol) -> bool:
    cert_bytes = cert.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    key_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return cert_bytes == key_bytes


def _not_valid_after(cert: x509.Certificate) -> datetime:
    moment = getattr(cert, "not_valid_after_utc", None)
    if isinstance(moment, datetime):
        return moment
    legacy = cert.not_valid_after  # pragma: no cover - older cryptography releases
    if legacy.tzinfo is None:
        return legacy.replace(tzinfo=UTC)
    return legacy.astimezone(UTC)


__all__ = [
    "CertificateFinding",
    "CertificateInspector",
    "CertificatePaths",
    "CertificateReport",
    "CertificateSeverity",
]
