"""Error taxonomy shared by the lifecycle controller and providers.

Every error carries an operator-facing remediation ``hint`` and the exit code
the CLI terminates with, so commands can report failures uniformly.
"""
from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from .exit_codes import ExitCode


class SiteError(RuntimeError):
    """Base class for failures surfaced to the operator."""

    exit_code: ExitCode = ExitCode.PROVIDER

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        """Store the message and an optional remediation hint."""
        super().__init__(message)
        self.hint = hint


class InvalidDomainError(SiteError, ValueError):
    """Raised when a domain fails hostname validation."""

    exit_code = ExitCode.VALIDATION


class NotStagedError(SiteError):
    """Raised when publishing a domain that has no staged artifact."""

    exit_code = ExitCode.VALIDATION

    def __init__(self, domain: str, path: Path) -> None:
        """Describe the missing staged artifact for *domain*."""
        super().__init__(
            f"Config file {path} not found for {domain}.",
            hint="Run `sitectl conf` first.",
        )
        self.domain = domain
        self.path = path


class NotPublishedError(SiteError):
    """Raised when activating a domain that is not in sites-available."""

    exit_code = ExitCode.VALIDATION

    def __init__(self, domain: str, path: Path) -> None:
        """Describe the missing available artifact for *domain*."""
        super().__init__(
            f"Config file {path} not found in sites-available for {domain}.",
            hint="Run `sitectl copy` first.",
        )
        self.domain = domain
        self.path = path


class ConfigInvalidError(SiteError):
    """Raised when nginx rejects a candidate configuration."""

    exit_code = ExitCode.VALIDATION

    def __init__(self, domain: str, diagnostics: str) -> None:
        """Capture nginx's diagnostic output for *domain*."""
        super().__init__(
            f"{domain} configuration has errors: {diagnostics or 'no output'}",
            hint="Inspect the generated config and run `nginx -t` for details.",
        )
        self.domain = domain
        self.diagnostics = diagnostics


class IssuanceFailedError(SiteError):
    """Raised when the certificate authority rejects an issuance request."""

    def __init__(self, domain: str, reason: str) -> None:
        """Capture the authority-supplied *reason*."""
        super().__init__(
            f"Failed to get SSL certificate for {domain}: {reason or 'no output'}",
            hint=(
                "Check that the domain points to this server, ports 80/443 are open, "
                "and no other service is using port 80."
            ),
        )
        self.domain = domain
        self.reason = reason


class QuarantineRestoreFailedError(SiteError):
    """Raised when quarantined activation markers cannot be put back."""

    exit_code = ExitCode.STATE

    def __init__(self, message: str, stranded: Sequence[Path]) -> None:
        """Record the markers left stranded in the holding area."""
        listing = ", ".join(str(path) for path in stranded) or "none"
        super().__init__(
            f"{message} Stranded entries: {listing}.",
            hint="Move the stranded entries back into sites-enabled by hand before retrying.",
        )
        self.stranded = tuple(stranded)


class ExternalToolMissingError(SiteError):
    """Raised when a required binary is absent and could not be installed."""

    exit_code = ExitCode.ENVIRONMENT

    def __init__(self, tool: str, detail: str | None = None) -> None:
        """Describe the missing *tool*."""
        message = f"Required binary '{tool}' not found on PATH."
        if detail:
            message = f"{message} {detail}"
        super().__init__(message, hint=f"Install {tool} (e.g. `apt install {tool}`).")
        self.tool = tool


__all__ = [
    "ConfigInvalidError",
    "ExternalToolMissingError",
    "InvalidDomainError",
    "IssuanceFailedError",
    "NotPublishedError",
    "NotStagedError",
    "QuarantineRestoreFailedError",
    "SiteError",
]
