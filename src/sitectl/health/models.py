"""Data models and aggregation rules for site health checks."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..config import AppConfig
    from ..providers.network import DnsResolver, HttpProber
    from ..providers.nginx import NginxProvider
    from ..providers.systemd import SystemdProvider
    from ..tls import CertificateInspector


class ProbeStatus(str, Enum):
    """Outcome for a single health probe."""

    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"

    @property
    def is_failure(self) -> bool:
        """Return ``True`` when the status represents a failure."""
        return self is ProbeStatus.FAIL

    @property
    def is_warning(self) -> bool:
        """Return ``True`` when the status represents a warning."""
        return self is ProbeStatus.WARN


@dataclass(slots=True, frozen=True)
class HealthContext:
    """Collaborators available to health probes."""

    domain: str
    config: AppConfig
    registry: NginxProvider
    service: SystemdProvider
    certificates: CertificateInspector
    resolver: DnsResolver
    prober: HttpProber


@dataclass(slots=True, frozen=True)
class ProbeResult:
    """Outcome of running a probe."""

    id: str
    status: ProbeStatus
    message: str
    remediation: str | None = None
    duration_ms: int | None = None
    data: Mapping[str, Any] | None = None

    @property
    def is_failure(self) -> bool:
        """Return ``True`` when the probe result represents a failure."""
        return self.status.is_failure

    @property
    def is_warning(self) -> bool:
        """Return ``True`` when the probe result represents a warning."""
        return self.status.is_warning


@dataclass(slots=True, frozen=True)
class ProbeDefinition:
    """Identifier + callable for a probe."""

    id: str
    run: Callable[[HealthContext], ProbeResult]


@dataclass(slots=True, frozen=True)
class HealthSummary:
    """Counts derived from probe results."""

    healthy: bool
    failing: int
    totals: Mapping[ProbeStatus, int]


@dataclass(slots=True, frozen=True)
class HealthReport:
    """Complete report for one health check run."""

    domain: str
    results: Sequence[ProbeResult]
    summary: HealthSummary
    overrides: tuple[str, ...] = ()
    metadata: Mapping[str, Any] | None = None

    @property
    def healthy(self) -> bool:
        """Return ``True`` when no probe failed."""
        return self.summary.healthy

    @property
    def failing(self) -> int:
        """Return the number of failing probes."""
        return self.summary.failing

    def get(self, probe_id: str) -> ProbeResult | None:
        """Return the result for *probe_id* if it ran."""
        for result in self.results:
            if result.id == probe_id:
                return result
        return None

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        return {
            "domain": self.domain,
            "healthy": self.healthy,
            "failing": self.failing,
            "overrides": list(self.overrides),
            "totals": {status.value: count for status, count in self.summary.totals.items()},
            "results": [
                {
                    "id": result.id,
                    "status": result.status.value,
                    "message": result.message,
                    "remediation": result.remediation,
                    "duration_ms": result.duration_ms,
                    "data": dict(result.data) if result.data else None,
                }
                for result in self.results
            ],
            "metadata": dict(self.metadata) if self.metadata else None,
        }


CONFIG_PROBE_ID = "config"
HTTPS_PROBE_ID = "https"


def aggregate_results(results: Iterable[ProbeResult]) -> HealthSummary:
    """Healthy iff no result failed; warnings never affect the verdict."""
    totals: dict[ProbeStatus, int] = {
        ProbeStatus.PASS: 0,
        ProbeStatus.WARN: 0,
        ProbeStatus.FAIL: 0,
    }
    for result in results:
        totals[result.status] += 1
    failing = totals[ProbeStatus.FAIL]
    return HealthSummary(healthy=failing == 0, failing=failing, totals=totals)


def apply_https_override(
    results: Sequence[ProbeResult],
) -> tuple[list[ProbeResult], tuple[str, ...]]:
    """Demote a failing config self-check when the HTTPS probe passed.

    Returns the adjusted results and the ids of the demoted probes.
    """
    https = next((result for result in results if result.id == HTTPS_PROBE_ID), None)
    if https is None or https.status is not ProbeStatus.PASS:
        return list(results), ()
    adjusted: list[ProbeResult] = []
    overrides: list[str] = []
    for result in results:
        if result.id == CONFIG_PROBE_ID and result.status is ProbeStatus.FAIL:
            result = replace(
                result,
                status=ProbeStatus.WARN,
                message=f"{result.message} (demoted: HTTPS probe succeeded)",
            )
            overrides.append(result.id)
        adjusted.append(result)
    return adjusted, tuple(overrides)


def build_report(
    domain: str,
    results: Sequence[ProbeResult],
    *,
    https_overrides_config_check: bool = True,
    metadata: Mapping[str, Any] | None = None,
) -> HealthReport:
    """Create a HealthReport from probe results."""
    overrides: tuple[str, ...] = ()
    final = list(results)
    if https_overrides_config_check:
        final, overrides = apply_https_override(final)
    summary = aggregate_results(final)
    return HealthReport(
        domain=domain,
        results=tuple(final),
        summary=summary,
        overrides=overrides,
        metadata=metadata,
    )
