"""Unit tests for certificate inspection."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from conftest import write_certificate

from sitectl.config import TLSConfig
from sitectl.tls import (
    CertificateInspector,
    CertificatePaths,
    CertificateSeverity,
    _load_certificate,
    _load_private_key,
    _public_keys_match,
)


@pytest.fixture
def inspector(tmp_path: Path) -> CertificateInspector:
    """Return an inspector reading from a temporary live directory."""
    return CertificateInspector(TLSConfig(live_dir=tmp_path / "live", warn_expiry_days=30))


def _finding(report: object, check: str) -> CertificateSeverity:
    for finding in report.findings:  # type: ignore[attr-defined]
        if finding.check == check:
            return finding.severity
    raise AssertionError(f"no {check} finding")


def test_certificate_paths_follow_certbot_layout(tmp_path: Path) -> None:
    """Lineage paths live under ``<live_dir>/<domain>/``."""
    paths = CertificatePaths.for_domain(tmp_path, "example.com")

    assert paths.fullchain == tmp_path / "example.com" / "fullchain.pem"
    assert paths.private_key == tmp_path / "example.com" / "privkey.pem"
    assert paths.exists() is False


def test_missing_certificate_is_a_warning(inspector: CertificateInspector) -> None:
    """No lineage directory means no certificate, reported as a warning."""
    report = inspector.inspect("example.com")

    assert report.present is False
    assert report.status is CertificateSeverity.WARNING
    assert inspector.has_certificate("example.com") is False


def test_valid_certificate_reports_ok(inspector: CertificateInspector, tmp_path: Path) -> None:
    """A fresh certificate with its matching key is healthy."""
    write_certificate(tmp_path / "live", "example.com", days_valid=90)

    report = inspector.inspect("example.com")

    assert inspector.has_certificate("example.com") is True
    assert report.present is True
    assert report.status is CertificateSeverity.OK
    assert report.days_remaining is not None and report.days_remaining >= 88
    assert report.to_dict()["status"] == "ok"


def test_expiring_certificate_warns(inspector: CertificateInspector, tmp_path: Path) -> None:
    """Certificates inside the warning window are flagged."""
    write_certificate(tmp_path / "live", "example.com", days_valid=10)

    report = inspector.inspect("example.com")

    assert _finding(report, "expiry") is CertificateSeverity.WARNING
    assert report.status is CertificateSeverity.WARNING


def test_expired_certificate_errors(inspector: CertificateInspector, tmp_path: Path) -> None:
    """Expired certificates are errors."""
    write_certificate(tmp_path / "live", "example.com", days_valid=-5)

    report = inspector.inspect("example.com")

    assert _finding(report, "expiry") is CertificateSeverity.ERROR
    assert report.status is CertificateSeverity.ERROR


def test_inspect_honours_reference_time(inspector: CertificateInspector, tmp_path: Path) -> None:
    """Expiry is measured against the supplied clock."""
    write_certificate(tmp_path / "live", "example.com", days_valid=90)

    report = inspector.inspect("example.com", now=datetime.now(UTC) + timedelta(days=100))

    assert _finding(report, "expiry") is CertificateSeverity.ERROR


def test_mismatched_key_is_an_error(inspector: CertificateInspector, tmp_path: Path) -> None:
    """A key that does not belong to the certificate is reported."""
    write_certificate(tmp_path / "live", "example.com", mismatched_key=True)

    report = inspector.inspect("example.com")

    assert _finding(report, "key") is CertificateSeverity.ERROR


def test_unparseable_certificate_warns(inspector: CertificateInspector, tmp_path: Path) -> None:
    """Garbage in the certificate file yields a parse warning."""
    directory = tmp_path / "live" / "example.com"
    directory.mkdir(parents=True)
    (directory / "fullchain.pem").write_text("not a certificate", encoding="utf-8")
    (directory / "privkey.pem").write_text("not a key", encoding="utf-8")

    report = inspector.inspect("example.com")

    assert report.present is True
    assert _finding(report, "parse") is CertificateSeverity.WARNING


def test_load_certificate_and_private_key_round_trip(tmp_path: Path) -> None:
    """Loaded certificate and key are recognised as a pair."""
    directory = write_certificate(tmp_path, "example.com")

    cert = _load_certificate(directory / "cert.pem")
    key = _load_private_key(directory / "privkey.pem")

    assert _public_keys_match(cert, key)
