"""Provider interfaces for sitectl."""
from __future__ import annotations

from .certbot import CertbotProvider, CertbotResult
from .cron import CronError, CronScheduler
from .network import DnsLookup, DnsResolver, FirewallInspector, HttpProber, HttpProbeResult
from .nginx import NginxError, NginxProvider, SelfCheckResult
from .packages import PackageError, PackageInstaller
from .systemd import SystemdError, SystemdProvider

__all__ = [
    "CertbotProvider",
    "CertbotResult",
    "CronError",
    "CronScheduler",
    "DnsLookup",
    "DnsResolver",
    "FirewallInspector",
    "HttpProbeResult",
    "HttpProber",
    "NginxError",
    "NginxProvider",
    "PackageError",
    "PackageInstaller",
    "SelfCheckResult",
    "SystemdError",
    "SystemdProvider",
]
