"""Certbot provider for webroot issuance and certificate deletion."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..errors import ExternalToolMissingError


@dataclass(slots=True, frozen=True)
class CertbotResult:
    """Outcome of a certbot invocation."""

    command: tuple[str, ...]
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        """Return True when certbot exited successfully."""
        return self.returncode == 0


@dataclass(slots=True)
class CertbotProvider:
    """Thin wrapper around the ``certbot`` command line."""

    certbot_bin: str = "certbot"

    def certonly_webroot(
        self,
        domains: Sequence[str],
        *,
        webroot: Path,
        email: str,
    ) -> CertbotResult:
        """Request a certificate covering *domains* via the webroot challenge."""
        args: list[str] = ["certonly", "--webroot", "-w", str(webroot)]
        for name in domains:
            args.extend(["-d", name])
        args.extend(["--non-interactive", "--agree-tos", "--email", email])
        return self._run_certbot(args)

    def delete(self, cert_name: str) -> CertbotResult:
        """Delete the certificate lineage *cert_name*."""
        return self._run_certbot(["delete", "--cert-name", cert_name, "--non-interactive"])

    # ------------------------------------------------------------------
    def _run_certbot(self, args: Sequence[str]) -> CertbotResult:
        command = [self.certbot_bin, *args]
        try:
            result = subprocess.run(  # noqa: S603, S607
                command,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ExternalToolMissingError(self.certbot_bin) from exc
        output = "\n".join(
            part.strip() for part in (result.stdout or "", result.stderr or "") if part.strip()
        )
        return CertbotResult(command=tuple(command), returncode=result.returncode, output=output)


__all__ = ["CertbotProvider", "CertbotResult"]
