"""Crontab provider for the certificate renewal job."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass

from ..errors import ExternalToolMissingError, SiteError

RENEWAL_MARKER = "certbot renew"


class CronError(SiteError):
    """Raised when the crontab cannot be read or written."""


@dataclass(slots=True)
class CronScheduler:
    """Register the recurring renewal job in the invoking user's crontab."""

    schedule: str = "0 3 * * *"
    command: str = "certbot renew --quiet && systemctl reload nginx"
    crontab_bin: str = "crontab"

    @property
    def line(self) -> str:
        """Return the crontab line for the renewal job."""
        return f"{self.schedule} {self.command}"

    def entries(self) -> list[str]:
        """Return the current crontab lines (empty when there is no crontab)."""
        result = self._run_crontab(["-l"])
        if result.returncode != 0:
            message = (result.stderr or "").strip()
            if "no crontab" in message.lower():
                return []
            raise CronError(f"{self.crontab_bin} -l failed (exit {result.returncode}): {message}")
        return [line for line in (result.stdout or "").splitlines() if line.strip()]

    def has_renewal(self) -> bool:
        """Return True when any crontab line already runs ``certbot renew``."""
        return any(RENEWAL_MARKER in line for line in self.entries())

    def ensure_renewal(self) -> bool:
        """Add the renewal job unless one exists; return ``True`` when added."""
        current = self.entries()
        if any(RENEWAL_MARKER in line for line in current):
            return False
        payload = "\n".join([*current, self.line]) + "\n"
        result = self._run_crontab(["-"], input_text=payload)
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise CronError(f"{self.crontab_bin} - failed (exit {result.returncode}): {message}")
        return True

    # ------------------------------------------------------------------
    def _run_crontab(
        self,
        args: Sequence[str],
        *,
        input_text: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        command = [self.crontab_bin, *args]
        try:
            return subprocess.run(  # noqa: S603, S607
                command,
                input=input_text,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ExternalToolMissingError(self.crontab_bin) from exc


__all__ = ["CronError", "CronScheduler", "RENEWAL_MARKER"]
