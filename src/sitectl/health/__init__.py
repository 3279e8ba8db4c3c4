"""Site health check infrastructure."""

from __future__ import annotations

from .engine import HealthChecker, run_probes
from .models import (
    HealthContext,
    HealthReport,
    HealthSummary,
    ProbeDefinition,
    ProbeResult,
    ProbeStatus,
    aggregate_results,
    apply_https_override,
    build_report,
)
from .probes import collect_probes

__all__ = [
    "HealthChecker",
    "HealthContext",
    "HealthReport",
    "HealthSummary",
    "ProbeDefinition",
    "ProbeResult",
    "ProbeStatus",
    "aggregate_results",
    "apply_https_override",
    "build_report",
    "collect_probes",
    "run_probes",
]
