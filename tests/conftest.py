"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from sitectl.config import AppConfig, load_config


def config_overrides(root: Path) -> dict[str, object]:
    """Return overrides pointing every sitectl path below *root*."""
    return {
        "staging_dir": str(root / "staging"),
        "content_root": str(root / "www"),
        "quarantine_dir": str(root / "quarantine"),
        "logs_dir": str(root / "logs"),
        "templates_dir": str(root / "templates"),
        "nginx": {
            "sites_available": str(root / "sites-available"),
            "sites_enabled": str(root / "sites-enabled"),
        },
        "certbot": {"webroot": str(root / "certbot")},
        "tls": {"live_dir": str(root / "live")},
    }


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Return a configuration rooted in a temporary directory."""
    return load_config(
        config_file=tmp_path / "config.yml",
        env={},
        overrides=config_overrides(tmp_path),
    )


def write_certificate(
    live_dir: Path,
    domain: str,
    *,
    days_valid: int = 60,
    mismatched_key: bool = False,
) -> Path:
    """Write a self-signed certbot-style lineage for *domain* and return its directory."""
    now = datetime.now(UTC)
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)])
    not_before = now - timedelta(days=max(1, -days_valid + 1))
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(now + timedelta(days=days_valid))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    if mismatched_key:
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    directory = live_dir / domain
    directory.mkdir(parents=True, exist_ok=True)
    pem = cert.public_bytes(serialization.Encoding.PEM)
    (directory / "cert.pem").write_bytes(pem)
    (directory / "fullchain.pem").write_bytes(pem)
    key_path = directory / "privkey.pem"
    key_path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    key_path.chmod(0o600)
    return directory
