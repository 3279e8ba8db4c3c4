"""DNS resolution, HTTP probing, and firewall inspection."""
from __future__ import annotations

import socket
import subprocess
from dataclasses import dataclass

import httpx


@dataclass(frozen=True, slots=True)
class DnsLookup:
    """Result of resolving a hostname."""

    hostname: str
    addresses: tuple[str, ...] = ()
    error: str | None = None

    @property
    def resolved(self) -> bool:
        """Return True when at least one address was found."""
        return bool(self.addresses)


@dataclass(slots=True)
class DnsResolver:
    """Resolve hostnames through the system resolver."""

    def resolve(self, hostname: str) -> DnsLookup:
        """Return the unique addresses for *hostname*."""
        try:
            infos = socket.getaddrinfo(hostname, None, proto=socket.IPPROTO_TCP)
        except (socket.gaierror, UnicodeError) as exc:
            return DnsLookup(hostname=hostname, error=str(exc))
        addresses: list[str] = []
        for info in infos:
            address = str(info[4][0])
            if address not in addresses:
                addresses.append(address)
        return DnsLookup(hostname=hostname, addresses=tuple(addresses))


@dataclass(frozen=True, slots=True)
class HttpProbeResult:
    """Outcome of a single HTTP request."""

    url: str
    status_code: int | None = None
    error: str | None = None


@dataclass(slots=True)
class HttpProber:
    """Issue single, non-redirect-following GET requests."""

    timeout: float = 10.0
    transport: httpx.BaseTransport | None = None

    def probe(self, url: str) -> HttpProbeResult:
        """Request *url* once and report the status code or error."""
        try:
            with httpx.Client(
                timeout=self.timeout,
                follow_redirects=False,
                transport=self.transport,
            ) as client:
                response = client.get(url)
        except httpx.HTTPError as exc:
            return HttpProbeResult(url=url, error=f"{type(exc).__name__}: {exc}")
        return HttpProbeResult(url=url, status_code=response.status_code)


@dataclass(slots=True)
class FirewallInspector:
    """Report whether an active ufw firewall is missing web rules."""

    ufw_bin: str = "ufw"

    def missing_web_rules(self) -> list[str]:
        """Return the ports (``80``/``443``) ufw does not allow.

        An empty list is returned when ufw is absent or inactive.
        """
        try:
            result = subprocess.run(  # noqa: S603, S607
                [self.ufw_bin, "status"],
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError:
            return []
        output = result.stdout or ""
        if result.returncode != 0 or "Status: active" not in output:
            return []
        missing: list[str] = []
        for port, profile in (("80", "Nginx HTTP"), ("443", "Nginx HTTPS")):
            allowed = any(
                (line.startswith(port) or line.startswith(profile) or "Nginx Full" in line)
                and "ALLOW" in line
                for line in output.splitlines()
            )
            if not allowed:
                missing.append(port)
        return missing


__all__ = [
    "DnsLookup",
    "DnsResolver",
    "FirewallInspector",
    "HttpProbeResult",
    "HttpProber",
]
