"""Activation set quarantine and isolated configuration validation.

nginx validates the whole activation set at once, so a broken sibling site
would mask whether a new domain's configuration is sound. ``ActivationSet``
temporarily moves every other activation marker into a holding area while the
check runs and always puts them back, including when the check itself fails.
"""
from __future__ import annotations

import filecmp
import logging
import os
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from .domains import artifact_name
from .errors import ConfigInvalidError, QuarantineRestoreFailedError
from .providers.nginx import NginxProvider

_LOG = logging.getLogger("sitectl.activation")


@dataclass(frozen=True, slots=True)
class QuarantineRecord:
    """Entries moved out of sites-enabled for the duration of a quarantine."""

    keep: str
    holding_dir: Path
    moved: tuple[str, ...]
    reconciled: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of validating one domain in isolation."""

    domain: str
    valid: bool
    diagnostics: str
    quarantined: tuple[str, ...] = ()
    was_active: bool = False


class ActivationSet:
    """The entries of sites-enabled plus the quarantine holding area."""

    def __init__(self, sites_enabled: Path, holding_dir: Path) -> None:
        """Bind the activation set to its directories."""
        self._sites_enabled = sites_enabled
        self._holding_dir = holding_dir

    @property
    def sites_enabled(self) -> Path:
        """Return the sites-enabled directory."""
        return self._sites_enabled

    @property
    def holding_dir(self) -> Path:
        """Return the quarantine holding directory."""
        return self._holding_dir

    def names(self) -> list[str]:
        """Return the sorted entry names in sites-enabled."""
        if not self._sites_enabled.is_dir():
            return []
        return sorted(entry.name for entry in self._sites_enabled.iterdir())

    def snapshot(self) -> dict[str, str | None]:
        """Map each entry name to its symlink target (``None`` for plain files)."""
        result: dict[str, str | None] = {}
        for name in self.names():
            path = self._sites_enabled / name
            result[name] = os.readlink(path) if path.is_symlink() else None
        return result

    def leftovers(self) -> list[str]:
        """Return entries stranded in the holding area by an interrupted run."""
        if not self._holding_dir.is_dir():
            return []
        return sorted(entry.name for entry in self._holding_dir.iterdir())

    def reconcile(self) -> list[str]:
        """Return leftovers to sites-enabled before a new quarantine.

        A leftover whose name already exists in sites-enabled is discarded when
        it is the same entry; a conflicting leftover is never overwritten.
        """
        restored: list[str] = []
        conflicts: list[Path] = []
        for name in self.leftovers():
            held = self._holding_dir / name
            destination = self._sites_enabled / name
            if destination.exists() or destination.is_symlink():
                if _same_entry(held, destination):
                    held.unlink()
                    _LOG.info("Dropped duplicate quarantine leftover %s", name)
                    continue
                conflicts.append(held)
                continue
            self._sites_enabled.mkdir(parents=True, exist_ok=True)
            shutil.move(str(held), str(destination))
            restored.append(name)
            _LOG.warning("Restored quarantine leftover %s from an interrupted run", name)
        if conflicts:
            raise QuarantineRestoreFailedError(
                "Quarantine leftovers conflict with entries in sites-enabled.",
                conflicts,
            )
        return restored

    @contextmanager
    def quarantine(self, *, keep: str) -> Iterator[QuarantineRecord]:
        """Move every entry except *keep* aside for the duration of the block."""
        reconciled = self.reconcile()
        self._holding_dir.mkdir(parents=True, exist_ok=True)
        moved: list[str] = []
        try:
            for name in self.names():
                if name == keep:
                    continue
                shutil.move(str(self._sites_enabled / name), str(self._holding_dir / name))
                moved.append(name)
            yield QuarantineRecord(
                keep=keep,
                holding_dir=self._holding_dir,
                moved=tuple(moved),
                reconciled=tuple(reconciled),
            )
        finally:
            self._restore(moved)

    def _restore(self, moved: list[str]) -> None:
        stranded: list[Path] = []
        for name in moved:
            held = self._holding_dir / name
            destination = self._sites_enabled / name
            try:
                if destination.exists() or destination.is_symlink():
                    raise FileExistsError(destination)
                shutil.move(str(held), str(destination))
            except OSError as exc:
                _LOG.error("Failed to restore %s: %s", name, exc)
                stranded.append(held)
        if stranded:
            raise QuarantineRestoreFailedError(
                "Failed to restore quarantined sites to sites-enabled.",
                stranded,
            )


def _same_entry(left: Path, right: Path) -> bool:
    if left.is_symlink() or right.is_symlink():
        return (
            left.is_symlink()
            and right.is_symlink()
            and os.readlink(left) == os.readlink(right)
        )
    if left.is_file() and right.is_file():
        return filecmp.cmp(left, right, shallow=False)
    return False


class IsolationValidator:
    """Validate a domain's configuration with its siblings quarantined."""

    def __init__(self, registry: NginxProvider, activation: ActivationSet) -> None:
        """Bind the validator to the site registry and activation set."""
        self._registry = registry
        self._activation = activation

    def validate(self, domain: str) -> ValidationResult:
        """Activate *domain* and run ``nginx -t`` against it alone.

        When the check fails and *domain* was not active beforehand its marker
        is removed again, leaving the activation set as it was found.
        """
        was_active = self._registry.is_active(domain)
        self._registry.activate(domain)
        valid = False
        try:
            with self._activation.quarantine(keep=artifact_name(domain)) as record:
                check = self._registry.self_check()
            valid = check.ok
        finally:
            if not valid and not was_active:
                self._registry.deactivate(domain)
        return ValidationResult(
            domain=domain,
            valid=check.ok,
            diagnostics=check.diagnostics,
            quarantined=record.moved,
            was_active=was_active,
        )

    def require_valid(self, domain: str) -> ValidationResult:
        """Validate *domain*, raising ``ConfigInvalidError`` when it fails."""
        result = self.validate(domain)
        if not result.valid:
            raise ConfigInvalidError(domain, result.diagnostics)
        return result


__all__ = [
    "ActivationSet",
    "IsolationValidator",
    "QuarantineRecord",
    "ValidationResult",
]
