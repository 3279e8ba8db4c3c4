"""Site lifecycle controller and irreversible site removal.

``SiteController`` composes the generator, registry, isolation validator,
certificate bootstrapper, and health checker into the operator actions the CLI
exposes. ``RemovalController`` tears a site down after an exact typed
confirmation.
"""
from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from .activation import ActivationSet, IsolationValidator, ValidationResult
from .bootstrap import BootstrapResult, CertificateBootstrapper
from .config import AppConfig
from .domains import SiteOptions
from .errors import ExternalToolMissingError
from .generator import ConfigGenerator, StagedArtifact
from .health import HealthChecker, HealthContext, HealthReport, collect_probes
from .logging import OperationScope
from .providers.certbot import CertbotProvider
from .providers.cron import CronScheduler
from .providers.network import DnsResolver, FirewallInspector, HttpProber
from .providers.nginx import NginxError, NginxProvider
from .providers.packages import PackageInstaller
from .providers.systemd import SystemdProvider
from .templates import TemplateEngine
from .tls import CertificateInspector

_LOG = logging.getLogger("sitectl.lifecycle")


@dataclass(frozen=True, slots=True)
class RemovalStep:
    """One independent step of a removal."""

    name: str
    status: str
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class RemovalResult:
    """Outcome of a removal request."""

    domain: str
    confirmed: bool
    steps: tuple[RemovalStep, ...] = ()

    @property
    def warnings(self) -> list[str]:
        """Return the details of steps that finished with a warning."""
        return [f"{step.name}: {step.detail}" for step in self.steps if step.status == "warning"]


@dataclass(frozen=True, slots=True)
class PrerequisiteReport:
    """Host preparation performed before mutating actions."""

    nginx_installed: bool
    enabled_on_boot: bool
    firewall_missing: tuple[str, ...] = ()


class RemovalController:
    """Remove every artifact belonging to a domain."""

    def __init__(
        self,
        config: AppConfig,
        *,
        registry: NginxProvider,
        certbot: CertbotProvider,
        certificates: CertificateInspector,
    ) -> None:
        """Wire the controller to the providers it tears down."""
        self._config = config
        self._registry = registry
        self._certbot = certbot
        self._certificates = certificates

    @staticmethod
    def confirmation_matches(domain: str, confirmation: str | None) -> bool:
        """Return True when *confirmation* is exactly *domain*."""
        return confirmation is not None and confirmation.strip() == domain

    def planned_paths(self, domain: str) -> dict[str, Path]:
        """Return everything a removal deletes, keyed by description."""
        return {
            "Website files": self._config.content_dir(domain),
            "Nginx config": self._registry.available_path(domain),
            "Nginx symlink": self._registry.enabled_path(domain),
            "SSL certificate": self._certificates.paths_for(domain).directory,
            "Local config": self._registry.staged_path(domain),
        }

    def remove(
        self,
        domain: str,
        confirmation: str | None,
        *,
        op: OperationScope | None = None,
    ) -> RemovalResult:
        """Remove *domain* when *confirmation* matches; otherwise do nothing."""
        if not self.confirmation_matches(domain, confirmation):
            return RemovalResult(domain=domain, confirmed=False)

        steps = [
            self._deactivate(domain),
            self._unpublish(domain),
            self._remove_staged(domain),
            self._delete_certificate(domain),
            self._remove_content(domain),
            self._reload(),
        ]
        if op is not None:
            for step in steps:
                op.add_step(step.name, status=step.status, detail=step.detail)
        return RemovalResult(domain=domain, confirmed=True, steps=tuple(steps))

    # ------------------------------------------------------------------
    def _deactivate(self, domain: str) -> RemovalStep:
        if self._registry.deactivate(domain):
            return RemovalStep("nginx.disable", "success", "Disabled nginx site")
        return RemovalStep("nginx.disable", "skipped", "Site was not enabled")

    def _unpublish(self, domain: str) -> RemovalStep:
        if self._registry.unpublish(domain):
            return RemovalStep("nginx.config", "success", "Removed nginx config")
        return RemovalStep("nginx.config", "skipped", "No nginx config present")

    def _remove_staged(self, domain: str) -> RemovalStep:
        path = self._registry.staged_path(domain)
        try:
            path.unlink()
        except FileNotFoundError:
            return RemovalStep("staged.config", "skipped", "No local config file")
        except OSError as exc:
            return RemovalStep("staged.config", "warning", f"Could not remove {path}: {exc}")
        return RemovalStep("staged.config", "success", "Removed local config file")

    def _delete_certificate(self, domain: str) -> RemovalStep:
        if not self._certificates.paths_for(domain).directory.is_dir():
            return RemovalStep("certificate", "skipped", "No SSL certificate present")
        try:
            result = self._certbot.delete(domain)
        except ExternalToolMissingError as exc:
            return RemovalStep("certificate", "warning", str(exc))
        if not result.ok:
            return RemovalStep(
                "certificate",
                "warning",
                f"Could not remove SSL certificate automatically: {result.output or 'no output'}",
            )
        return RemovalStep("certificate", "success", "Removed SSL certificate")

    def _remove_content(self, domain: str) -> RemovalStep:
        content_dir = self._config.content_dir(domain)
        if not content_dir.is_dir():
            return RemovalStep("content", "skipped", "No website files present")
        try:
            shutil.rmtree(content_dir)
        except OSError as exc:
            return RemovalStep("content", "warning", f"Could not remove {content_dir}: {exc}")
        return RemovalStep("content", "success", f"Removed website files at {content_dir}")

    def _reload(self) -> RemovalStep:
        try:
            check = self._registry.self_check()
            if not check.ok:
                return RemovalStep(
                    "nginx.reload",
                    "warning",
                    "Nginx configuration test failed - manual fix may be needed",
                )
            self._registry.reload()
        except (NginxError, ExternalToolMissingError) as exc:
            return RemovalStep("nginx.reload", "warning", str(exc))
        return RemovalStep("nginx.reload", "success", "Nginx configuration reloaded")


class SiteController:
    """Operator actions over one domain's site lifecycle."""

    def __init__(
        self,
        config: AppConfig,
        *,
        generator: ConfigGenerator,
        registry: NginxProvider,
        activation: ActivationSet,
        service: SystemdProvider,
        certbot: CertbotProvider,
        packages: PackageInstaller,
        certificates: CertificateInspector,
        scheduler: CronScheduler,
        firewall: FirewallInspector,
        resolver: DnsResolver,
        prober: HttpProber,
    ) -> None:
        """Wire the controller to its collaborators."""
        self.config = config
        self.generator = generator
        self.registry = registry
        self.activation = activation
        self.validator = IsolationValidator(registry, activation)
        self.service = service
        self.packages = packages
        self.certificates = certificates
        self.firewall = firewall
        self.resolver = resolver
        self.prober = prober
        self.bootstrapper = CertificateBootstrapper(
            config,
            generator=generator,
            registry=registry,
            activation=activation,
            validator=self.validator,
            service=service,
            certbot=certbot,
            packages=packages,
            certificates=certificates,
            scheduler=scheduler,
        )
        self.removal = RemovalController(
            config,
            registry=registry,
            certbot=certbot,
            certificates=certificates,
        )

    @classmethod
    def from_config(cls, config: AppConfig, templates: TemplateEngine) -> SiteController:
        """Build a controller with the default providers for *config*."""
        return cls(
            config,
            generator=ConfigGenerator(config, templates),
            registry=NginxProvider.from_config(config),
            activation=ActivationSet(config.nginx.sites_enabled, config.quarantine_dir),
            service=SystemdProvider(
                unit=config.nginx.service,
                systemctl_bin=config.systemd.systemctl_bin,
            ),
            certbot=CertbotProvider(certbot_bin=config.certbot.certbot_bin),
            packages=PackageInstaller(
                apt_bin=config.packages.apt_bin,
                auto_install=config.packages.auto_install,
            ),
            certificates=CertificateInspector(config.tls),
            scheduler=CronScheduler(
                schedule=config.renewal.schedule,
                command=config.renewal.command,
                crontab_bin=config.renewal.crontab_bin,
            ),
            firewall=FirewallInspector(),
            resolver=DnsResolver(),
            prober=HttpProber(timeout=config.health.request_timeout),
        )

    def ensure_prerequisites(self, *, op: OperationScope | None = None) -> PrerequisiteReport:
        """Install nginx if needed, create site directories, enable at boot."""
        installed = self.packages.ensure(self.config.nginx.nginx_bin, "nginx")
        self.config.nginx.sites_available.mkdir(parents=True, exist_ok=True)
        self.config.nginx.sites_enabled.mkdir(parents=True, exist_ok=True)
        enabled = False
        if not self.service.is_enabled():
            self.service.enable()
            enabled = True
        missing = tuple(self.firewall.missing_web_rules())
        if missing:
            _LOG.warning("ufw is active but ports %s may not be open", "/".join(missing))
        if op is not None:
            op.add_step("nginx.install", detail="installed" if installed else "present")
            op.add_step("nginx.enable", status="success" if enabled else "skipped")
            if missing:
                op.add_step("firewall", status="warning", detail=f"missing {'/'.join(missing)}")
        return PrerequisiteReport(
            nginx_installed=installed,
            enabled_on_boot=enabled,
            firewall_missing=missing,
        )

    def generate(
        self,
        options: SiteOptions,
        *,
        op: OperationScope | None = None,
    ) -> StagedArtifact:
        """Stage the artifact, choosing HTTPS when a certificate already exists."""
        https_available = self.certificates.has_certificate(options.domain)
        artifact = self.generator.stage(options, https_available)
        if op is not None:
            op.add_step(
                "generate",
                detail=f"{'HTTPS' if https_available else 'HTTP-only'} -> {artifact.path}",
            )
        return artifact

    def publish(self, domain: str, *, op: OperationScope | None = None) -> bool:
        """Publish the staged artifact and create the content directory."""
        changed = self.registry.publish(domain)
        content_dir = self.config.content_dir(domain)
        content_dir.mkdir(parents=True, exist_ok=True)
        if op is not None:
            op.add_step("publish", detail=str(self.registry.available_path(domain)))
            op.add_step("content.ensure", detail=str(content_dir))
        return changed

    def activate(self, domain: str, *, op: OperationScope | None = None) -> ValidationResult:
        """Activate *domain* after validating it in isolation."""
        result = self.validator.require_valid(domain)
        if op is not None:
            moved = ", ".join(result.quarantined) or "none"
            op.add_step("validate", detail=f"isolated (quarantined: {moved})")
        return result

    def bootstrap_ssl(
        self,
        options: SiteOptions,
        *,
        op: OperationScope | None = None,
    ) -> BootstrapResult:
        """Obtain a certificate and move the domain to HTTPS."""
        return self.bootstrapper.bootstrap(options, op=op)

    def full(self, options: SiteOptions, *, op: OperationScope | None = None) -> BootstrapResult:
        """Run generate, publish, activate, and bootstrap in order."""
        self.generate(options, op=op)
        self.publish(options.domain, op=op)
        self.activate(options.domain, op=op)
        return self.bootstrap_ssl(options, op=op)

    def check(
        self,
        domain: str,
        *,
        https_overrides_config_check: bool | None = None,
    ) -> HealthReport:
        """Run every health probe for *domain*."""
        context = HealthContext(
            domain=domain,
            config=self.config,
            registry=self.registry,
            service=self.service,
            certificates=self.certificates,
            resolver=self.resolver,
            prober=self.prober,
        )
        checker = HealthChecker(context)
        return checker.run(
            collect_probes(),
            https_overrides_config_check=https_overrides_config_check,
        )

    def remove(
        self,
        domain: str,
        confirmation: str | None,
        *,
        op: OperationScope | None = None,
    ) -> RemovalResult:
        """Remove *domain* after confirmation."""
        return self.removal.remove(domain, confirmation, op=op)


__all__ = [
    "PrerequisiteReport",
    "RemovalController",
    "RemovalResult",
    "RemovalStep",
    "SiteController",
]
