"""Tests for the two-stage certificate bootstrap."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest
from conftest import write_certificate

from sitectl.activation import ActivationSet, IsolationValidator
from sitectl.bootstrap import CertificateBootstrapper, CertState
from sitectl.config import AppConfig
from sitectl.domains import SiteOptions
from sitectl.errors import ConfigInvalidError
from sitectl.generator import ConfigGenerator
from sitectl.logging import OperationScope
from sitectl.providers.certbot import CertbotResult
from sitectl.providers.nginx import NginxError, NginxProvider, SelfCheckResult
from sitectl.templates import TemplateEngine
from sitectl.tls import CertificateInspector


@dataclass
class FakeService:
    """Records service starts and the activation set seen at start time."""

    activation: ActivationSet
    active: bool = True
    started_with: list[list[str]] = field(default_factory=list)

    def is_active(self) -> bool:
        return self.active

    def start(self) -> None:
        self.started_with.append(self.activation.names())
        self.active = True


@dataclass
class FakeCertbot:
    """Stand-in for certbot that optionally writes a lineage on success."""

    live_dir: Path
    returncode: int = 0
    output: str = ""
    write_lineage: bool = True
    requests: list[tuple[tuple[str, ...], Path, str]] = field(default_factory=list)

    def certonly_webroot(
        self,
        domains: Sequence[str],
        *,
        webroot: Path,
        email: str,
    ) -> CertbotResult:
        self.requests.append((tuple(domains), webroot, email))
        if self.returncode == 0 and self.write_lineage:
            write_certificate(self.live_dir, domains[0])
        return CertbotResult(
            command=("certbot", "certonly"),
            returncode=self.returncode,
            output=self.output,
        )


@dataclass
class FakePackages:
    """Package installer that never needs to install anything."""

    ensured: list[tuple[str, str | None]] = field(default_factory=list)

    def ensure(self, binary: str, package: str | None = None) -> bool:
        self.ensured.append((binary, package))
        return False


@dataclass
class FakeScheduler:
    """Counts renewal registrations."""

    calls: int = 0

    def ensure_renewal(self) -> bool:
        self.calls += 1
        return self.calls == 1


@dataclass
class Harness:
    """Bootstrapper wired to real registry code and fake external tools."""

    config: AppConfig
    registry: NginxProvider
    activation: ActivationSet
    service: FakeService
    certbot: FakeCertbot
    packages: FakePackages
    scheduler: FakeScheduler
    bootstrapper: CertificateBootstrapper
    reloads: list[str]


def _accept_http_only(self: NginxProvider) -> SelfCheckResult:
    """Reject any enabled artifact that references a certificate."""
    for marker in self.sites_enabled.iterdir():
        if "ssl_certificate" in marker.read_text(encoding="utf-8"):
            return SelfCheckResult(ok=False, diagnostics="nginx: [emerg] cannot load certificate")
    return SelfCheckResult(ok=True, diagnostics="test is successful")


@pytest.fixture
def harness(app_config: AppConfig, monkeypatch: pytest.MonkeyPatch) -> Harness:
    """Return a bootstrapper whose nginx checks always pass."""
    reloads: list[str] = []
    monkeypatch.setattr(
        NginxProvider,
        "self_check",
        lambda self: SelfCheckResult(ok=True, diagnostics="test is successful"),
    )
    monkeypatch.setattr(NginxProvider, "reload", lambda self: reloads.append("reload"))

    registry = NginxProvider.from_config(app_config)
    activation = ActivationSet(app_config.nginx.sites_enabled, app_config.quarantine_dir)
    service = FakeService(activation)
    certbot = FakeCertbot(app_config.tls.live_dir)
    packages = FakePackages()
    scheduler = FakeScheduler()
    bootstrapper = CertificateBootstrapper(
        app_config,
        generator=ConfigGenerator(app_config, TemplateEngine.with_overrides(None)),
        registry=registry,
        activation=activation,
        validator=IsolationValidator(registry, activation),
        service=service,  # type: ignore[arg-type]
        certbot=certbot,  # type: ignore[arg-type]
        packages=packages,  # type: ignore[arg-type]
        certificates=CertificateInspector(app_config.tls),
        scheduler=scheduler,  # type: ignore[arg-type]
    )
    return Harness(
        config=app_config,
        registry=registry,
        activation=activation,
        service=service,
        certbot=certbot,
        packages=packages,
        scheduler=scheduler,
        bootstrapper=bootstrapper,
        reloads=reloads,
    )


def _published(harness: Harness, domain: str) -> str:
    text = harness.registry.published_text(domain)
    assert text is not None
    return text


def test_successful_issuance_activates_https(harness: Harness) -> None:
    """A granted certificate ends with the HTTPS artifact active and renewal scheduled."""
    options = SiteOptions.build("example.com", www_redirect=True)
    op = OperationScope("ssl")

    result = harness.bootstrapper.bootstrap(options, op=op)

    assert result.state is CertState.ISSUED
    assert result.transitions == (CertState.NO_CERT, CertState.REQUESTING, CertState.ISSUED)
    assert result.renewal_scheduled is True
    assert result.certificate_reused is False
    assert "listen 443 ssl;" in _published(harness, "example.com")
    assert harness.registry.is_active("example.com")
    assert harness.packages.ensured == [("certbot", "certbot")]
    assert harness.config.certbot.webroot.is_dir()
    (request,) = harness.certbot.requests
    assert request == (
        ("example.com", "www.example.com"),
        harness.config.certbot.webroot,
        "admin@example.com",
    )
    assert harness.scheduler.calls == 1
    assert harness.reloads
    step_names = [step["name"] for step in op.steps]
    assert "certificate.request" in step_names
    assert "https.activate" in step_names


def test_failed_issuance_keeps_http_site(harness: Harness) -> None:
    """A rejected request leaves the HTTP-only artifact serving."""
    harness.certbot.returncode = 1
    harness.certbot.output = "Challenge failed for domain example.com"

    result = harness.bootstrapper.bootstrap(SiteOptions.build("example.com"))

    assert result.state is CertState.FAILED
    assert result.transitions == (CertState.NO_CERT, CertState.REQUESTING, CertState.FAILED)
    assert result.reason is not None and "Challenge failed" in result.reason
    text = _published(harness, "example.com")
    assert "listen 80;" in text
    assert "ssl_certificate" not in text
    assert harness.registry.is_active("example.com")
    assert harness.scheduler.calls == 0


def test_success_without_certificate_files_is_a_failure(harness: Harness) -> None:
    """HTTPS is never activated unless the certificate is really present."""
    harness.certbot.write_lineage = False

    result = harness.bootstrapper.bootstrap(SiteOptions.build("example.com"))

    assert result.state is CertState.FAILED
    assert result.reason is not None and "no certificate was found" in result.reason
    assert "ssl_certificate" not in _published(harness, "example.com")


def test_invalid_https_artifact_rolls_back(
    harness: Harness,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """When nginx rejects the HTTPS artifact the HTTP-only one is restored."""
    monkeypatch.setattr(NginxProvider, "self_check", _accept_http_only)

    with pytest.raises(ConfigInvalidError, match="cannot load certificate"):
        harness.bootstrapper.bootstrap(SiteOptions.build("example.com"))

    assert "ssl_certificate" not in _published(harness, "example.com")
    staged = harness.registry.staged_path("example.com").read_text(encoding="utf-8")
    assert "ssl_certificate" not in staged
    assert harness.registry.is_active("example.com")
    assert harness.scheduler.calls == 0


def test_existing_certificate_is_reused(harness: Harness) -> None:
    """An existing lineage skips the request and goes straight to HTTPS."""
    write_certificate(harness.config.tls.live_dir, "example.com")

    result = harness.bootstrapper.bootstrap(SiteOptions.build("example.com"))

    assert result.state is CertState.ISSUED
    assert result.certificate_reused is True
    assert result.transitions == (CertState.ISSUED,)
    assert harness.certbot.requests == []
    assert "listen 443 ssl;" in _published(harness, "example.com")


def test_stopped_service_starts_with_siblings_quarantined(harness: Harness) -> None:
    """A stopped nginx is started with only the candidate site enabled."""
    sibling = harness.config.nginx.sites_enabled / "other.conf"
    sibling.parent.mkdir(parents=True, exist_ok=True)
    sibling.write_text("server {}\n", encoding="utf-8")
    harness.service.active = False

    harness.bootstrapper.bootstrap(SiteOptions.build("example.com"))

    assert harness.service.started_with == [["example.com.conf"]]
    assert sibling.read_text(encoding="utf-8") == "server {}\n"
    assert harness.activation.leftovers() == []


def _enable_sibling(harness: Harness) -> Path:
    sibling = harness.config.nginx.sites_enabled / "other.conf"
    sibling.parent.mkdir(parents=True, exist_ok=True)
    sibling.write_text("server {}\n", encoding="utf-8")
    return sibling


def test_started_service_reloads_restored_siblings(harness: Harness) -> None:
    """Siblings moved aside for the start are loaded once they are back."""
    _enable_sibling(harness)
    harness.service.active = False
    harness.certbot.returncode = 1
    op = OperationScope("ssl")

    result = harness.bootstrapper.bootstrap(SiteOptions.build("example.com"), op=op)

    assert result.state is CertState.FAILED
    assert harness.service.started_with == [["example.com.conf"]]
    assert harness.reloads == ["reload"]
    assert sorted(harness.activation.names()) == ["example.com.conf", "other.conf"]
    statuses = {step["name"]: step["status"] for step in op.steps}
    assert statuses["nginx.start"] == "success"
    assert statuses["nginx.reload"] == "success"


def test_started_service_skips_reload_when_siblings_are_broken(
    harness: Harness,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A failing full config test after the start is recorded as a warning."""

    def reject_sibling(self: NginxProvider) -> SelfCheckResult:
        if (self.sites_enabled / "other.conf").exists():
            return SelfCheckResult(ok=False, diagnostics="nginx: [emerg] broken other.conf")
        return SelfCheckResult(ok=True, diagnostics="test is successful")

    monkeypatch.setattr(NginxProvider, "self_check", reject_sibling)
    sibling = _enable_sibling(harness)
    harness.service.active = False
    harness.certbot.returncode = 1
    op = OperationScope("ssl")

    harness.bootstrapper.bootstrap(SiteOptions.build("example.com"), op=op)

    assert harness.reloads == []
    assert sibling.exists()
    (reload_step,) = [step for step in op.steps if step["name"] == "nginx.reload"]
    assert reload_step["status"] == "warning"
    assert "broken other.conf" in str(reload_step["detail"])


def test_renewal_scheduled_when_https_reload_fails(
    harness: Harness,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A reload error after issuance still leaves renewal registered."""
    calls: list[str] = []

    def flaky_reload(self: NginxProvider) -> None:
        calls.append("reload")
        if len(calls) > 1:
            raise NginxError("nginx reload failed (exit 1)", output="[emerg] broken sibling")

    monkeypatch.setattr(NginxProvider, "reload", flaky_reload)
    op = OperationScope("ssl")

    result = harness.bootstrapper.bootstrap(SiteOptions.build("example.com"), op=op)

    assert result.state is CertState.ISSUED
    assert result.renewal_scheduled is True
    assert harness.scheduler.calls == 1
    assert harness.registry.is_active("example.com")
    assert "listen 443 ssl;" in _published(harness, "example.com")
    statuses = {step["name"]: step["status"] for step in op.steps}
    assert statuses["renewal.schedule"] == "success"
    assert statuses["https.activate"] == "warning"
