"""Structured operation logging for sitectl commands.

Each CLI operation appends one JSON record to ``<logs_dir>/operations.log``
describing its arguments, the steps it performed, and the outcome. Logging is
best-effort: when the log directory is unavailable or a write fails the logger
disables itself instead of failing the command.
"""
from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

_LOG = logging.getLogger("sitectl")

OPERATIONS_LOG_NAME = "operations.log"


def _sanitize(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_sanitize(item) for item in value]
    return str(value)


class OperationScope:
    """Collects steps and the final result for a single operation."""

    def __init__(
        self,
        name: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Start tracking operation *name*."""
        self.name = name
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self.started_at = datetime.now(UTC)
        self._start = time.perf_counter()

    @property
    def duration_ms(self) -> int:
        """Return milliseconds elapsed since the operation started."""
        return int((time.perf_counter() - self._start) * 1000)

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record a step performed by the operation."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail:
            step["detail"] = detail
        self.steps.append(step)
        _LOG.debug("%s: step %s=%s %s", self.name, name, status, detail or "")

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Iterable[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._finish("success", message, changed=changed, warnings=warnings, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._finish(
            "warning",
            message,
            changed=changed,
            warnings=warnings,
            errors=errors,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._finish(
            "error",
            message,
            errors=list(errors) if errors is not None else [message],
            rc=rc,
            context=context,
        )

    def _finish(
        self,
        status: str,
        message: str,
        *,
        changed: int = 0,
        warnings: Iterable[str] | None = None,
        errors: Iterable[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": list(warnings or []),
            "errors": list(errors or []),
        }
        if rc is not None:
            result["rc"] = rc
        if context:
            result["context"] = _sanitize(context)
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON-safe log record for this operation."""
        return {
            "timestamp": self.started_at.isoformat(),
            "operation": self.name,
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "steps": _sanitize(self.steps),
            "result": self.result,
            "duration_ms": self.duration_ms,
        }


class StructuredLogger:
    """Append operation records to a JSON-lines log file."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare the log directory, disabling logging when it is unusable."""
        self._logs_dir = logs_dir
        self._operations_log_path = logs_dir / OPERATIONS_LOG_NAME
        self._enabled = True
        try:
            logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            _LOG.warning("Operation log disabled; cannot create %s: %s", logs_dir, exc)
            self._enabled = False

    @property
    def path(self) -> Path:
        """Return the operations log path."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        name: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Track an operation and persist its record when the block exits."""
        scope = OperationScope(name, args=args, target=target)
        try:
            yield scope
        except Exception as exc:
            if scope.result is None:
                scope.error(f"Unhandled error: {exc}", errors=[repr(exc)])
            raise
        finally:
            if scope.result is None:
                scope.warning("Operation ended without recording a result.")
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True))
                handle.write("\n")
        except OSError as exc:
            _LOG.warning("Operation log disabled after write failure: %s", exc)
            self._enabled = False


__all__ = ["OPERATIONS_LOG_NAME", "OperationScope", "StructuredLogger"]
