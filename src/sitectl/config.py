"""Configuration loader for sitectl.

Configuration values are merged from several sources, later sources winning:

1. Built-in defaults.
2. ``/etc/sitectl/config.yml`` (or an override path).
3. Environment variables prefixed with ``SITECTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export SITECTL_NGINX__SITES_ENABLED=/tmp/sites-enabled
    export SITECTL_HEALTH__REQUEST_TIMEOUT=5

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load sitectl configuration. Install with "
        "`pip install sitectl` or ensure PyYAML>=6.0 is available."
    ) from exc

from .errors import SiteError
from .exit_codes import ExitCode

ENV_PREFIX = "SITECTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(SiteError):
    """Raised when configuration parsing fails."""

    exit_code = ExitCode.VALIDATION


@dataclass(frozen=True)
class NginxConfig:
    """Locations and binaries used to manage nginx sites."""

    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    nginx_bin: str = "nginx"
    service: str = "nginx"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "sites_available": str(self.sites_available),
            "sites_enabled": str(self.sites_enabled),
            "nginx_bin": self.nginx_bin,
            "service": self.service,
        }


@dataclass(frozen=True)
class CertbotConfig:
    """Certificate authority client settings."""

    certbot_bin: str = "certbot"
    webroot: Path = Path("/var/www/certbot")
    email: str = "admin@{domain}"

    def contact_for(self, domain: str) -> str:
        """Return the contact email for *domain*."""
        return self.email.replace("{domain}", domain)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "certbot_bin": self.certbot_bin,
            "webroot": str(self.webroot),
            "email": self.email,
        }


@dataclass(frozen=True)
class TLSConfig:
    """Certificate locations and expiry policy."""

    live_dir: Path = Path("/etc/letsencrypt/live")
    warn_expiry_days: int = 30

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"live_dir": str(self.live_dir), "warn_expiry_days": self.warn_expiry_days}


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    systemctl_bin: str = "systemctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"systemctl_bin": self.systemctl_bin}


@dataclass(frozen=True)
class PackagesConfig:
    """Package manager integration."""

    auto_install: bool = True
    apt_bin: str = "apt-get"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"auto_install": self.auto_install, "apt_bin": self.apt_bin}


@dataclass(frozen=True)
class RenewalConfig:
    """Recurring certificate renewal job."""

    schedule: str = "0 3 * * *"
    command: str = "certbot renew --quiet && systemctl reload nginx"
    crontab_bin: str = "crontab"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "schedule": self.schedule,
            "command": self.command,
            "crontab_bin": self.crontab_bin,
        }


@dataclass(frozen=True)
class HealthConfig:
    """Health check tunables."""

    request_timeout: float = 10.0
    https_overrides_config_check: bool = True

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "request_timeout": self.request_timeout,
            "https_overrides_config_check": self.https_overrides_config_check,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for sitectl."""

    config_file: Path
    staging_dir: Path
    content_root: Path
    quarantine_dir: Path
    logs_dir: Path
    templates_dir: Path
    nginx: NginxConfig
    certbot: CertbotConfig
    tls: TLSConfig
    systemd: SystemdConfig
    packages: PackagesConfig
    renewal: RenewalConfig
    health: HealthConfig

    def content_dir(self, domain: str) -> Path:
        """Return the content directory for *domain*."""
        return self.content_root / domain

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "staging_dir": str(self.staging_dir),
            "content_root": str(self.content_root),
            "quarantine_dir": str(self.quarantine_dir),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "nginx": self.nginx.to_dict(),
            "certbot": self.certbot.to_dict(),
            "tls": self.tls.to_dict(),
            "systemd": self.systemd.to_dict(),
            "packages": self.packages.to_dict(),
            "renewal": self.renewal.to_dict(),
            "health": self.health.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/sitectl/config.yml",
    "staging_dir": None,  # current working directory when absent
    "content_root": "/var/www",
    "quarantine_dir": "/var/lib/sitectl/quarantine",
    "logs_dir": "/var/log/sitectl",
    "templates_dir": "/etc/sitectl/templates",
    "nginx": {
        "sites_available": "/etc/nginx/sites-available",
        "sites_enabled": "/etc/nginx/sites-enabled",
        "nginx_bin": "nginx",
        "service": "nginx",
    },
    "certbot": {
        "certbot_bin": "certbot",
        "webroot": "/var/www/certbot",
        "email": "admin@{domain}",
    },
    "tls": {
        "live_dir": "/etc/letsencrypt/live",
        "warn_expiry_days": 30,
    },
    "systemd": {
        "systemctl_bin": "systemctl",
    },
    "packages": {
        "auto_install": True,
        "apt_bin": "apt-get",
    },
    "renewal": {
        "schedule": "0 3 * * *",
        "command": "certbot renew --quiet && systemctl reload nginx",
        "crontab_bin": "crontab",
    },
    "health": {
        "request_timeout": 10.0,
        "https_overrides_config_check": True,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    key: set(cast(Mapping[str, object], value).keys())
    for key, value in DEFAULTS.items()
    if isinstance(value, Mapping)
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    schedule = _as_dict(raw.get("renewal"), "renewal").get("schedule")
    if schedule is not None and len(str(schedule).split()) != 5:
        raise ConfigError(
            f"renewal.schedule must be a five-field cron expression. Got {schedule!r}."
        )


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    staging_value = raw.get("staging_dir")
    staging_dir = _to_path(staging_value) if staging_value else Path.cwd()

    nginx_mapping = _as_dict(raw.get("nginx"), "nginx")
    nginx = NginxConfig(
        sites_available=_to_path(nginx_mapping.get("sites_available")),
        sites_enabled=_to_path(nginx_mapping.get("sites_enabled")),
        nginx_bin=str(nginx_mapping.get("nginx_bin", "nginx")),
        service=str(nginx_mapping.get("service", "nginx")),
    )

    certbot_mapping = _as_dict(raw.get("certbot"), "certbot")
    email = str(certbot_mapping.get("email", "admin@{domain}")).strip()
    if "@" not in email:
        raise ConfigError(f"certbot.email must be an email address. Got {email!r}.")
    certbot = CertbotConfig(
        certbot_bin=str(certbot_mapping.get("certbot_bin", "certbot")),
        webroot=_to_path(certbot_mapping.get("webroot")),
        email=email,
    )

    tls_mapping = _as_dict(raw.get("tls"), "tls")
    warn_expiry_days = _expect_int(
        tls_mapping.get("warn_expiry_days"), "tls.warn_expiry_days", default=30
    )
    if warn_expiry_days < 0:
        raise ConfigError("tls.warn_expiry_days must be non-negative.")
    tls = TLSConfig(
        live_dir=_to_path(tls_mapping.get("live_dir")),
        warn_expiry_days=warn_expiry_days,
    )

    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        systemctl_bin=str(systemd_mapping.get("systemctl_bin", "systemctl")),
    )

    packages_mapping = _as_dict(raw.get("packages"), "packages")
    packages = PackagesConfig(
        auto_install=_expect_bool(
            packages_mapping.get("auto_install"), "packages.auto_install", default=True
        ),
        apt_bin=str(packages_mapping.get("apt_bin", "apt-get")),
    )

    renewal_mapping = _as_dict(raw.get("renewal"), "renewal")
    renewal = RenewalConfig(
        schedule=str(renewal_mapping.get("schedule", "0 3 * * *")),
        command=str(
            renewal_mapping.get("command", "certbot renew --quiet && systemctl reload nginx")
        ),
        crontab_bin=str(renewal_mapping.get("crontab_bin", "crontab")),
    )

    health_mapping = _as_dict(raw.get("health"), "health")
    health = HealthConfig(
        request_timeout=_expect_positive_float(
            health_mapping.get("request_timeout"), "health.request_timeout", default=10.0
        ),
        https_overrides_config_check=_expect_bool(
            health_mapping.get("https_overrides_config_check"),
            "health.https_overrides_config_check",
            default=True,
        ),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        staging_dir=staging_dir,
        content_root=_to_path(raw.get("content_root")),
        quarantine_dir=_to_path(raw.get("quarantine_dir")),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        nginx=nginx,
        certbot=certbot,
        tls=tls,
        systemd=systemd,
        packages=packages,
        renewal=renewal,
        health=health,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "on", "1"}:
            return True
        if lowered in {"false", "no", "off", "0"}:
            return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "CertbotConfig",
    "ConfigError",
    "HealthConfig",
    "NginxConfig",
    "PackagesConfig",
    "RenewalConfig",
    "SystemdConfig",
    "TLSConfig",
    "load_config",
]
