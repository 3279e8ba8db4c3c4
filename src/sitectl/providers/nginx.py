"""Nginx provider for managing per-domain site configurations."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..config import AppConfig
from ..domains import artifact_name
from ..errors import ExternalToolMissingError, NotPublishedError, NotStagedError, SiteError
from ..templates import write_text_atomic


class NginxError(SiteError):
    """Raised when nginx operations fail."""

    def __init__(self, message: str, *, output: str = "", hint: str | None = None) -> None:
        """Capture nginx's own output alongside the message."""
        super().__init__(message, hint=hint)
        self.output = output


@dataclass(slots=True, frozen=True)
class SelfCheckResult:
    """Outcome of ``nginx -t``."""

    ok: bool
    diagnostics: str


@dataclass(slots=True)
class NginxProvider:
    """Publish and activate nginx site configurations.

    ``sites_available`` holds published artifacts. ``sites_enabled`` holds the
    activation markers, always symlinks back into ``sites_available``.
    """

    staging_dir: Path
    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    nginx_bin: str = "nginx"

    @classmethod
    def from_config(cls, config: AppConfig) -> NginxProvider:
        """Build a provider bound to the configured directories."""
        return cls(
            staging_dir=config.staging_dir,
            sites_available=config.nginx.sites_available,
            sites_enabled=config.nginx.sites_enabled,
            nginx_bin=config.nginx.nginx_bin,
        )

    def staged_path(self, domain: str) -> Path:
        """Return the staged artifact path for *domain*."""
        return self.staging_dir / artifact_name(domain)

    def available_path(self, domain: str) -> Path:
        """Return the published artifact path for *domain*."""
        return self.sites_available / artifact_name(domain)

    def enabled_path(self, domain: str) -> Path:
        """Return the activation marker path for *domain*."""
        return self.sites_enabled / artifact_name(domain)

    def publish(self, domain: str) -> bool:
        """Copy the staged artifact into sites-available.

        Returns ``True`` when the published content changed.
        """
        source = self.staged_path(domain)
        if not source.is_file():
            raise NotStagedError(domain, source)
        self.sites_available.mkdir(parents=True, exist_ok=True)
        content = source.read_text(encoding="utf-8")
        return write_text_atomic(self.available_path(domain), content, mode=0o644)

    def published_text(self, domain: str) -> str | None:
        """Return the published artifact content, or ``None`` when absent."""
        path = self.available_path(domain)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    def restore_published(self, domain: str, content: str) -> None:
        """Overwrite the published artifact with *content*."""
        write_text_atomic(self.available_path(domain), content, mode=0o644)

    def unpublish(self, domain: str) -> bool:
        """Delete the published artifact; return ``True`` if one was removed."""
        try:
            self.available_path(domain).unlink()
        except FileNotFoundError:
            return False
        return True

    def activate(self, domain: str) -> bool:
        """Create the activation marker for *domain*.

        A stale marker is replaced. Returns ``False`` when the marker already
        pointed at the published artifact.
        """
        source = self.available_path(domain)
        if not source.is_file():
            raise NotPublishedError(domain, source)
        target = self.enabled_path(domain)
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.exists() or target.is_symlink():
            if self.is_active(domain):
                return False
            target.unlink()
        target.symlink_to(source)
        return True

    def deactivate(self, domain: str) -> bool:
        """Remove the activation marker; return ``True`` if one was removed."""
        try:
            self.enabled_path(domain).unlink()
        except FileNotFoundError:
            return False
        return True

    def is_published(self, domain: str) -> bool:
        """Return True when the artifact exists in sites-available."""
        return self.available_path(domain).is_file()

    def is_active(self, domain: str) -> bool:
        """Return True when the marker links to the published artifact."""
        target = self.enabled_path(domain)
        if not target.is_symlink():
            return False
        try:
            return target.resolve() == self.available_path(domain).resolve()
        except (FileNotFoundError, RuntimeError):
            return False

    def self_check(self) -> SelfCheckResult:
        """Run ``nginx -t`` against the live configuration."""
        try:
            result = self._run_nginx(["-t"])
        except NginxError as exc:
            return SelfCheckResult(ok=False, diagnostics=exc.output or str(exc))
        output = (result.stderr or result.stdout or "").strip()
        return SelfCheckResult(ok=True, diagnostics=output)

    def reload(self) -> subprocess.CompletedProcess[str]:
        """Reload nginx to apply configuration changes."""
        return self._run_nginx(["-s", "reload"])

    # ------------------------------------------------------------------
    def _run_nginx(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        command = [self.nginx_bin, *args]
        try:
            result = subprocess.run(  # noqa: S603, S607
                command,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ExternalToolMissingError(self.nginx_bin) from exc
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise NginxError(
                f"{self.nginx_bin} {' '.join(args)} failed (exit {result.returncode}): {message}",
                output=message,
            )
        return result


__all__ = ["NginxError", "NginxProvider", "SelfCheckResult"]
