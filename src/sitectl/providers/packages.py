"""Package manager provider used to install missing binaries."""
from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass

from ..errors import ExternalToolMissingError, SiteError


class PackageError(SiteError):
    """Raised when the package manager fails."""


@dataclass(slots=True)
class PackageInstaller:
    """Install system packages with apt when a binary is missing."""

    apt_bin: str = "apt-get"
    auto_install: bool = True

    def is_installed(self, binary: str) -> bool:
        """Return True when *binary* is on PATH."""
        return shutil.which(binary) is not None

    def ensure(self, binary: str, package: str | None = None) -> bool:
        """Make *binary* available, installing *package* if needed.

        Returns ``True`` when a package was installed.
        """
        if self.is_installed(binary):
            return False
        if not self.auto_install:
            raise ExternalToolMissingError(binary, "Automatic installation is disabled.")
        package = package or binary
        self._run_apt(["update"])
        self._run_apt(["install", "-y", package])
        if not self.is_installed(binary):
            raise ExternalToolMissingError(binary, f"Package '{package}' did not provide it.")
        return True

    # ------------------------------------------------------------------
    def _run_apt(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        command = [self.apt_bin, *args]
        env = {**os.environ, "DEBIAN_FRONTEND": "noninteractive"}
        try:
            result = subprocess.run(  # noqa: S603, S607
                command,
                capture_output=True,
                text=True,
                check=False,
                env=env,
            )
        except FileNotFoundError as exc:
            raise ExternalToolMissingError(self.apt_bin) from exc
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise PackageError(
                f"{self.apt_bin} {' '.join(args)} failed (exit {result.returncode}): {message}"
            )
        return result


__all__ = ["PackageError", "PackageInstaller"]
