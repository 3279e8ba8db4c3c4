"""Systemd provider for the nginx service unit."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass

from ..errors import ExternalToolMissingError, SiteError


class SystemdError(SiteError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Start and query a service through ``systemctl``."""

    unit: str = "nginx"
    systemctl_bin: str = "systemctl"

    def start(self) -> subprocess.CompletedProcess[str]:
        """Start the unit."""
        return self._systemctl("start", self.unit)

    def enable(self) -> subprocess.CompletedProcess[str]:
        """Enable the unit at boot."""
        return self._systemctl("enable", self.unit)

    def is_active(self) -> bool:
        """Return True when the unit is running."""
        result = self._systemctl("is-active", "--quiet", self.unit, check=False)
        return result.returncode == 0

    def is_enabled(self) -> bool:
        """Return True when the unit starts at boot."""
        result = self._systemctl("is-enabled", "--quiet", self.unit, check=False)
        return result.returncode == 0

    # ------------------------------------------------------------------
    def _systemctl(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        command = [self.systemctl_bin, *args]
        return self._run_command(
            command,
            check=check,
            error_prefix=f"{self.systemctl_bin} {args[0]} {self.unit}",
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ExternalToolMissingError(args[0]) from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["SystemdError", "SystemdProvider"]
