"""Probe registration for the ``check`` command."""

from __future__ import annotations

from collections.abc import Callable, Sequence

from ..tls import CertificateSeverity
from .models import HealthContext, ProbeDefinition, ProbeResult, ProbeStatus

HTTP_OK_CODES = frozenset({200, 301, 302})
HTTPS_OK_CODES = frozenset({200})


def collect_probes() -> Sequence[ProbeDefinition]:
    """Return the probes in execution order."""
    return (
        _make_probe("dns", _probe_dns),
        _make_probe("dns-www", _probe_dns_www),
        _make_probe("registry", _probe_registry),
        _make_probe("activation", _probe_activation),
        _make_probe("content", _probe_content),
        _make_probe("certificate", _probe_certificate),
        _make_probe("service", _probe_service),
        _make_probe("config", _probe_config),
        _make_probe("http", _probe_http),
        _make_probe("https", _probe_https),
    )


def _make_probe(
    probe_id: str,
    handler: Callable[[HealthContext], ProbeResult],
) -> ProbeDefinition:
    def _runner(context: HealthContext) -> ProbeResult:
        return handler(context)

    return ProbeDefinition(id=probe_id, run=_runner)


# ---------------------------------------------------------------------------
# DNS
# ---------------------------------------------------------------------------


def _probe_dns(context: HealthContext) -> ProbeResult:
    lookup = context.resolver.resolve(context.domain)
    if not lookup.resolved:
        return ProbeResult(
            id="dns",
            status=ProbeStatus.FAIL,
            message=f"DNS resolution failed for {context.domain}: {lookup.error}",
            remediation="Point the domain's A/AAAA records at this server.",
        )
    return ProbeResult(
        id="dns",
        status=ProbeStatus.PASS,
        message=f"DNS resolves to: {lookup.addresses[0]}",
        data={"addresses": list(lookup.addresses)},
    )


def _probe_dns_www(context: HealthContext) -> ProbeResult:
    hostname = f"www.{context.domain}"
    lookup = context.resolver.resolve(hostname)
    if not lookup.resolved:
        return ProbeResult(
            id="dns-www",
            status=ProbeStatus.WARN,
            message=f"{hostname} DNS not configured",
            remediation=f"Add a DNS record for {hostname} if the www name should work.",
        )
    return ProbeResult(
        id="dns-www",
        status=ProbeStatus.PASS,
        message=f"{hostname} DNS working",
        data={"addresses": list(lookup.addresses)},
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def _probe_registry(context: HealthContext) -> ProbeResult:
    path = context.registry.available_path(context.domain)
    if not context.registry.is_published(context.domain):
        return ProbeResult(
            id="registry",
            status=ProbeStatus.FAIL,
            message="Nginx config missing",
            remediation=f"Run `sitectl conf` and `sitectl copy` for {context.domain}.",
            data={"path": str(path)},
        )
    return ProbeResult(
        id="registry",
        status=ProbeStatus.PASS,
        message="Nginx config exists",
        data={"path": str(path)},
    )


def _probe_activation(context: HealthContext) -> ProbeResult:
    path = context.registry.enabled_path(context.domain)
    if not path.is_symlink():
        return ProbeResult(
            id="activation",
            status=ProbeStatus.FAIL,
            message="Nginx site not enabled",
            remediation=f"Run `sitectl enable` for {context.domain}.",
            data={"path": str(path)},
        )
    return ProbeResult(
        id="activation",
        status=ProbeStatus.PASS,
        message="Nginx site is enabled",
        data={"path": str(path)},
    )


def _probe_content(context: HealthContext) -> ProbeResult:
    content_dir = context.config.content_dir(context.domain)
    if not content_dir.is_dir():
        return ProbeResult(
            id="content",
            status=ProbeStatus.FAIL,
            message="Webroot directory missing",
            remediation=f"Run `sitectl copy` or create {content_dir}.",
            data={"path": str(content_dir)},
        )
    if not (content_dir / "index.html").is_file():
        return ProbeResult(
            id="content",
            status=ProbeStatus.WARN,
            message="No index.html found in webroot",
            remediation=f"Copy your site files into {content_dir}.",
            data={"path": str(content_dir)},
        )
    return ProbeResult(
        id="content",
        status=ProbeStatus.PASS,
        message=f"Webroot exists: {content_dir}",
        data={"path": str(content_dir)},
    )


# ---------------------------------------------------------------------------
# Certificate
# ---------------------------------------------------------------------------


def _probe_certificate(context: HealthContext) -> ProbeResult:
    report = context.certificates.inspect(context.domain)
    messages = "; ".join(finding.message for finding in report.findings)
    if not report.present:
        return ProbeResult(
            id="certificate",
            status=ProbeStatus.WARN,
            message="No SSL certificate found",
            remediation=f"Run `sitectl ssl` for {context.domain}.",
            data=report.to_dict(),
        )
    expiry = next((f for f in report.findings if f.check == "expiry"), None)
    if expiry is not None and expiry.severity is CertificateSeverity.ERROR:
        return ProbeResult(
            id="certificate",
            status=ProbeStatus.FAIL,
            message=messages,
            remediation="Run `certbot renew` and reload nginx.",
            data=report.to_dict(),
        )
    if report.status is CertificateSeverity.OK:
        return ProbeResult(
            id="certificate",
            status=ProbeStatus.PASS,
            message=messages,
            data=report.to_dict(),
        )
    return ProbeResult(
        id="certificate",
        status=ProbeStatus.WARN,
        message=messages,
        remediation="Inspect the certificate files under the certbot live directory.",
        data=report.to_dict(),
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


def _probe_service(context: HealthContext) -> ProbeResult:
    if not context.service.is_active():
        return ProbeResult(
            id="service",
            status=ProbeStatus.FAIL,
            message="Nginx service not running",
            remediation=f"sudo systemctl start {context.config.nginx.service}",
        )
    return ProbeResult(id="service", status=ProbeStatus.PASS, message="Nginx service is running")


def _probe_config(context: HealthContext) -> ProbeResult:
    check = context.registry.self_check()
    if not check.ok:
        return ProbeResult(
            id="config",
            status=ProbeStatus.FAIL,
            message="Nginx configuration has errors",
            remediation="Run `sudo nginx -t` and fix the reported errors.",
            data={"diagnostics": check.diagnostics},
        )
    return ProbeResult(id="config", status=ProbeStatus.PASS, message="Nginx configuration is valid")


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


def _probe_http(context: HealthContext) -> ProbeResult:
    result = context.prober.probe(f"http://{context.domain}")
    data = {"url": result.url, "status_code": result.status_code, "error": result.error}
    if result.status_code in HTTP_OK_CODES:
        if result.status_code == 200:
            message = f"HTTP responds (status: {result.status_code})"
        else:
            message = f"HTTP redirects properly (status: {result.status_code})"
        return ProbeResult(id="http", status=ProbeStatus.PASS, message=message, data=data)
    return ProbeResult(
        id="http",
        status=ProbeStatus.FAIL,
        message=f"HTTP connection failed (status: {_describe(result.status_code, result.error)})",
        remediation="Check that nginx is running and port 80 is reachable.",
        data=data,
    )


def _probe_https(context: HealthContext) -> ProbeResult:
    result = context.prober.probe(f"https://{context.domain}")
    data = {"url": result.url, "status_code": result.status_code, "error": result.error}
    if result.status_code in HTTPS_OK_CODES:
        return ProbeResult(
            id="https",
            status=ProbeStatus.PASS,
            message=f"HTTPS responds correctly (status: {result.status_code})",
            data=data,
        )
    return ProbeResult(
        id="https",
        status=ProbeStatus.FAIL,
        message=f"HTTPS connection failed (status: {_describe(result.status_code, result.error)})",
        remediation=f"Run `sitectl ssl` for {context.domain} and check port 443.",
        data=data,
    )


def _describe(status_code: int | None, error: str | None) -> str:
    if status_code is not None:
        return str(status_code)
    return error or "no response"
