"""Tests for activation set quarantine and isolated validation."""
from __future__ import annotations

import os
from pathlib import Path

import pytest

from sitectl.activation import ActivationSet, IsolationValidator
from sitectl.errors import ConfigInvalidError, QuarantineRestoreFailedError
from sitectl.exit_codes import ExitCode
from sitectl.providers.nginx import NginxProvider, SelfCheckResult


@pytest.fixture
def registry(tmp_path: Path) -> NginxProvider:
    """Return a registry bound to temporary directories."""
    return NginxProvider(
        staging_dir=tmp_path / "staging",
        sites_available=tmp_path / "sites-available",
        sites_enabled=tmp_path / "sites-enabled",
    )


@pytest.fixture
def activation(registry: NginxProvider, tmp_path: Path) -> ActivationSet:
    """Return the activation set for *registry*."""
    return ActivationSet(registry.sites_enabled, tmp_path / "quarantine")


def _publish(registry: NginxProvider, domain: str) -> None:
    staged = registry.staged_path(domain)
    staged.parent.mkdir(parents=True, exist_ok=True)
    staged.write_text(f"server {{ server_name {domain}; }}\n", encoding="utf-8")
    registry.publish(domain)


def _enable(registry: NginxProvider, domain: str) -> None:
    _publish(registry, domain)
    registry.activate(domain)


def _install_check(
    monkeypatch: pytest.MonkeyPatch,
    activation: ActivationSet,
    *,
    ok: bool,
    seen: list[list[str]],
) -> None:
    def fake_self_check(self: NginxProvider) -> SelfCheckResult:
        seen.append(activation.names())
        return SelfCheckResult(ok=ok, diagnostics="" if ok else "nginx: [emerg] bad directive")

    monkeypatch.setattr(NginxProvider, "self_check", fake_self_check)


def test_validation_sees_only_the_candidate(
    monkeypatch: pytest.MonkeyPatch,
    registry: NginxProvider,
    activation: ActivationSet,
) -> None:
    """Siblings are quarantined during the check and restored afterwards."""
    _enable(registry, "a.com")
    _enable(registry, "b.com")
    _publish(registry, "c.com")
    before = activation.snapshot()
    seen: list[list[str]] = []
    _install_check(monkeypatch, activation, ok=True, seen=seen)

    result = IsolationValidator(registry, activation).validate("c.com")

    assert result.valid is True
    assert seen == [["c.com.conf"]]
    assert result.quarantined == ("a.com.conf", "b.com.conf")
    assert activation.snapshot() == {
        **before,
        "c.com.conf": os.readlink(registry.enabled_path("c.com")),
    }
    assert activation.leftovers() == []


def test_failed_validation_restores_prior_state(
    monkeypatch: pytest.MonkeyPatch,
    registry: NginxProvider,
    activation: ActivationSet,
) -> None:
    """A rejected candidate is deactivated and siblings are put back."""
    _enable(registry, "a.com")
    _enable(registry, "b.com")
    _publish(registry, "c.com")
    before = activation.snapshot()
    seen: list[list[str]] = []
    _install_check(monkeypatch, activation, ok=False, seen=seen)
    validator = IsolationValidator(registry, activation)

    result = validator.validate("c.com")

    assert result.valid is False
    assert "bad directive" in result.diagnostics
    assert activation.snapshot() == before
    assert not registry.is_active("c.com")

    with pytest.raises(ConfigInvalidError) as excinfo:
        validator.require_valid("c.com")
    assert excinfo.value.exit_code is ExitCode.VALIDATION
    assert activation.snapshot() == before


def test_failed_revalidation_keeps_existing_marker(
    monkeypatch: pytest.MonkeyPatch,
    registry: NginxProvider,
    activation: ActivationSet,
) -> None:
    """A domain that was already active stays active when its check fails."""
    _enable(registry, "a.com")
    _install_check(monkeypatch, activation, ok=False, seen=[])

    result = IsolationValidator(registry, activation).validate("a.com")

    assert result.valid is False
    assert result.was_active is True
    assert registry.is_active("a.com")


def test_siblings_restored_when_check_raises(
    monkeypatch: pytest.MonkeyPatch,
    registry: NginxProvider,
    activation: ActivationSet,
) -> None:
    """Quarantined entries come back even if the self-check raises."""
    _enable(registry, "a.com")
    _publish(registry, "c.com")

    def exploding_check(self: NginxProvider) -> SelfCheckResult:
        raise RuntimeError("interrupted")

    monkeypatch.setattr(NginxProvider, "self_check", exploding_check)

    with pytest.raises(RuntimeError, match="interrupted"):
        IsolationValidator(registry, activation).validate("c.com")

    assert activation.names() == ["a.com.conf"]
    assert activation.leftovers() == []


def test_quarantine_preserves_plain_files(activation: ActivationSet) -> None:
    """Non-symlink entries in sites-enabled survive a quarantine untouched."""
    activation.sites_enabled.mkdir(parents=True)
    (activation.sites_enabled / "default").write_text("server {}\n", encoding="utf-8")
    (activation.sites_enabled / "keep.conf").write_text("keep\n", encoding="utf-8")

    with activation.quarantine(keep="keep.conf") as record:
        assert record.moved == ("default",)
        assert activation.names() == ["keep.conf"]

    assert activation.snapshot() == {"default": None, "keep.conf": None}
    assert (activation.sites_enabled / "default").read_text(encoding="utf-8") == "server {}\n"


def test_leftovers_are_reconciled_before_quarantine(activation: ActivationSet) -> None:
    """Entries stranded by an interrupted run are restored first."""
    activation.sites_enabled.mkdir(parents=True)
    activation.holding_dir.mkdir(parents=True)
    os.symlink("/etc/nginx/sites-available/a.com.conf", activation.holding_dir / "a.com.conf")
    (activation.sites_enabled / "keep.conf").write_text("keep\n", encoding="utf-8")

    with activation.quarantine(keep="keep.conf") as record:
        assert record.reconciled == ("a.com.conf",)
        assert record.moved == ("a.com.conf",)

    assert activation.names() == ["a.com.conf", "keep.conf"]
    assert os.readlink(activation.sites_enabled / "a.com.conf") == (
        "/etc/nginx/sites-available/a.com.conf"
    )
    assert activation.leftovers() == []


def test_duplicate_leftover_is_dropped(activation: ActivationSet) -> None:
    """A leftover identical to the live entry is discarded."""
    activation.sites_enabled.mkdir(parents=True)
    activation.holding_dir.mkdir(parents=True)
    target = "/etc/nginx/sites-available/a.com.conf"
    os.symlink(target, activation.sites_enabled / "a.com.conf")
    os.symlink(target, activation.holding_dir / "a.com.conf")

    assert activation.reconcile() == []
    assert activation.leftovers() == []
    assert activation.names() == ["a.com.conf"]


def test_conflicting_leftover_raises(activation: ActivationSet) -> None:
    """A leftover that differs from the live entry is never overwritten."""
    activation.sites_enabled.mkdir(parents=True)
    activation.holding_dir.mkdir(parents=True)
    os.symlink("/one", activation.sites_enabled / "a.com.conf")
    os.symlink("/two", activation.holding_dir / "a.com.conf")

    with pytest.raises(QuarantineRestoreFailedError) as excinfo:
        activation.reconcile()

    assert excinfo.value.exit_code is ExitCode.STATE
    assert excinfo.value.stranded == (activation.holding_dir / "a.com.conf",)
    assert os.readlink(activation.sites_enabled / "a.com.conf") == "/one"


def test_restore_failure_reports_stranded_entries(
    monkeypatch: pytest.MonkeyPatch,
    activation: ActivationSet,
) -> None:
    """Entries that cannot be moved back are reported, not silently lost."""
    activation.sites_enabled.mkdir(parents=True)
    (activation.sites_enabled / "a.com.conf").write_text("a\n", encoding="utf-8")
    (activation.sites_enabled / "keep.conf").write_text("keep\n", encoding="utf-8")

    with pytest.raises(QuarantineRestoreFailedError) as excinfo:
        with activation.quarantine(keep="keep.conf"):
            # Something recreated the entry while it was quarantined.
            (activation.sites_enabled / "a.com.conf").write_text("other\n", encoding="utf-8")

    assert excinfo.value.stranded == (activation.holding_dir / "a.com.conf",)
    assert activation.leftovers() == ["a.com.conf"]
