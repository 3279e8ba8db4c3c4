"""Two-stage certificate bootstrap.

A certificate can only be requested once nginx answers the ACME webroot
challenge over plain HTTP, and the HTTPS configuration can only be loaded once
the certificate exists. The bootstrapper therefore activates an HTTP-only
artifact first, requests the certificate, and only then swaps in the HTTPS
artifact. A failed request leaves the HTTP-only site serving.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from .activation import ActivationSet, IsolationValidator
from .config import AppConfig
from .domains import SiteOptions
from .errors import ConfigInvalidError
from .generator import ConfigGenerator
from .logging import OperationScope
from .providers.certbot import CertbotProvider
from .providers.cron import CronScheduler
from .providers.nginx import NginxError, NginxProvider
from .providers.packages import PackageInstaller
from .providers.systemd import SystemdProvider
from .tls import CertificateInspector

_LOG = logging.getLogger("sitectl.bootstrap")


class CertState(str, Enum):
    """Certificate lifecycle states for a domain."""

    NO_CERT = "no-cert"
    REQUESTING = "requesting"
    ISSUED = "issued"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class BootstrapResult:
    """Final state of a bootstrap run."""

    domain: str
    state: CertState
    transitions: tuple[CertState, ...]
    reason: str | None = None
    renewal_scheduled: bool = False
    certificate_reused: bool = False

    @property
    def issued(self) -> bool:
        """Return True when the domain ended up serving HTTPS."""
        return self.state is CertState.ISSUED

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "domain": self.domain,
            "state": self.state.value,
            "transitions": [state.value for state in self.transitions],
            "reason": self.reason,
            "renewal_scheduled": self.renewal_scheduled,
            "certificate_reused": self.certificate_reused,
        }


class CertificateBootstrapper:
    """Drive a domain from HTTP-only to HTTPS."""

    def __init__(
        self,
        config: AppConfig,
        *,
        generator: ConfigGenerator,
        registry: NginxProvider,
        activation: ActivationSet,
        validator: IsolationValidator,
        service: SystemdProvider,
        certbot: CertbotProvider,
        packages: PackageInstaller,
        certificates: CertificateInspector,
        scheduler: CronScheduler,
    ) -> None:
        """Wire the bootstrapper to its collaborators."""
        self._config = config
        self._generator = generator
        self._registry = registry
        self._activation = activation
        self._validator = validator
        self._service = service
        self._certbot = certbot
        self._packages = packages
        self._certificates = certificates
        self._scheduler = scheduler

    def bootstrap(
        self,
        options: SiteOptions,
        *,
        op: OperationScope | None = None,
    ) -> BootstrapResult:
        """Obtain a certificate for *options* and activate the HTTPS artifact."""
        domain = options.domain
        installed = self._packages.ensure(self._config.certbot.certbot_bin, "certbot")
        _step(op, "certbot.ensure", detail="installed" if installed else "present")

        webroot = self._config.certbot.webroot
        webroot.mkdir(parents=True, exist_ok=True)
        _step(op, "webroot.ensure", detail=str(webroot))

        if self._certificates.has_certificate(domain):
            _step(op, "certificate.request", status="skipped", detail="certificate already present")
            self._ensure_running(domain, op)
            renewal = self._activate_https(options, op)
            return BootstrapResult(
                domain=domain,
                state=CertState.ISSUED,
                transitions=(CertState.ISSUED,),
                renewal_scheduled=renewal,
                certificate_reused=True,
            )

        transitions = [CertState.NO_CERT]
        self._generator.stage(options, https_available=False)
        self._registry.publish(domain)
        self._validator.require_valid(domain)
        _step(op, "http.activate", detail="HTTP-only configuration validated")
        self._ensure_running(domain, op)

        transitions.append(CertState.REQUESTING)
        result = self._certbot.certonly_webroot(
            options.certificate_names(),
            webroot=webroot,
            email=self._config.certbot.contact_for(domain),
        )
        if not result.ok:
            transitions.append(CertState.FAILED)
            _step(op, "certificate.request", status="failed", detail=result.output)
            _LOG.warning("Certificate request for %s failed: %s", domain, result.output)
            return BootstrapResult(
                domain=domain,
                state=CertState.FAILED,
                transitions=tuple(transitions),
                reason=result.output or f"certbot exited with status {result.returncode}",
            )

        if not self._certificates.has_certificate(domain):
            transitions.append(CertState.FAILED)
            reason = (
                "certbot reported success but no certificate was found under "
                f"{self._certificates.paths_for(domain).directory}"
            )
            _step(op, "certificate.request", status="failed", detail=reason)
            return BootstrapResult(
                domain=domain,
                state=CertState.FAILED,
                transitions=tuple(transitions),
                reason=reason,
            )

        transitions.append(CertState.ISSUED)
        _step(op, "certificate.request", detail="issued")
        renewal = self._activate_https(options, op)
        return BootstrapResult(
            domain=domain,
            state=CertState.ISSUED,
            transitions=tuple(transitions),
            renewal_scheduled=renewal,
        )

    # ------------------------------------------------------------------
    def _activate_https(self, options: SiteOptions, op: OperationScope | None) -> bool:
        domain = options.domain
        previous = self._registry.published_text(domain)
        self._generator.stage(options, https_available=True)
        self._registry.publish(domain)
        validation = self._validator.validate(domain)
        if not validation.valid:
            if previous is not None:
                self._registry.restore_published(domain, previous)
                self._generator.stage(options, https_available=False)
            else:
                self._registry.unpublish(domain)
            _step(op, "https.activate", status="failed", detail=validation.diagnostics)
            raise ConfigInvalidError(domain, validation.diagnostics)

        # HTTPS is enabled on disk from here on.
        added = self._scheduler.ensure_renewal()
        _step(op, "renewal.schedule", detail="added" if added else "already present")

        try:
            self._registry.reload()
        except NginxError as exc:
            _LOG.warning("Reload after enabling HTTPS for %s failed: %s", domain, exc)
            _step(op, "https.activate", status="warning", detail=f"reload failed: {exc}")
        else:
            _step(op, "https.activate", detail="HTTPS configuration active")
        return True

    def _ensure_running(self, domain: str, op: OperationScope | None) -> None:
        if self._service.is_active():
            self._registry.reload()
            _step(op, "nginx.reload")
            return
        with self._activation.quarantine(keep=self._registry.enabled_path(domain).name):
            self._service.start()
        _step(op, "nginx.start", detail="started with siblings quarantined")

        # nginx came up serving only the candidate; load the restored siblings too.
        check = self._registry.self_check()
        if not check.ok:
            _LOG.warning("Sibling sites not loaded after starting nginx: %s", check.diagnostics)
            _step(op, "nginx.reload", status="warning", detail=check.diagnostics)
            return
        try:
            self._registry.reload()
        except NginxError as exc:
            _LOG.warning("Reload after starting nginx failed: %s", exc)
            _step(op, "nginx.reload", status="warning", detail=str(exc))
            return
        _step(op, "nginx.reload", detail="restored sites loaded")


def _step(
    op: OperationScope | None,
    name: str,
    *,
    status: str = "success",
    detail: str | None = None,
) -> None:
    if op is not None:
        op.add_step(name, status=status, detail=detail)


__all__ = ["BootstrapResult", "CertState", "CertificateBootstrapper"]
