"""Sequential probe execution for the ``check`` command."""

from __future__ import annotations

import time
import traceback
from collections.abc import Sequence
from dataclasses import replace

from .models import (
    HealthContext,
    HealthReport,
    ProbeDefinition,
    ProbeResult,
    ProbeStatus,
    build_report,
)


def _duration_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _unexpected_failure(
    probe: ProbeDefinition,
    exc: Exception,
    duration_ms: int,
) -> ProbeResult:
    return ProbeResult(
        id=probe.id,
        status=ProbeStatus.FAIL,
        message=f"Probe '{probe.id}' raised an unexpected error: {exc}",
        duration_ms=duration_ms,
        data={
            "exception": repr(exc),
            "traceback": traceback.format_exc(),
        },
    )


def _run_single_probe(probe: ProbeDefinition, context: HealthContext) -> ProbeResult:
    start = time.perf_counter()
    try:
        result = probe.run(context)
    except Exception as exc:
        return _unexpected_failure(probe, exc, _duration_ms(start))
    coerced = result
    if result.id != probe.id:
        coerced = replace(coerced, id=probe.id)
    if result.duration_ms is None:
        coerced = replace(coerced, duration_ms=_duration_ms(start))
    return coerced


def run_probes(
    context: HealthContext,
    probes: Sequence[ProbeDefinition],
) -> list[ProbeResult]:
    """Execute probes one at a time, in order."""
    return [_run_single_probe(probe, context) for probe in probes]


class HealthChecker:
    """Run probes for one domain and aggregate the report."""

    def __init__(self, context: HealthContext) -> None:
        """Store the probe execution context."""
        self._context = context

    def run(
        self,
        probes: Sequence[ProbeDefinition],
        *,
        https_overrides_config_check: bool | None = None,
    ) -> HealthReport:
        """Run *probes* and build the health report."""
        if https_overrides_config_check is None:
            https_overrides_config_check = (
                self._context.config.health.https_overrides_config_check
            )
        start = time.perf_counter()
        results = run_probes(self._context, probes)
        run_metadata: dict[str, object] = {
            "duration_ms": _duration_ms(start),
            "probe_count": len(results),
            "https_overrides_config_check": https_overrides_config_check,
        }
        return build_report(
            self._context.domain,
            results,
            https_overrides_config_check=https_overrides_config_check,
            metadata=run_metadata,
        )
