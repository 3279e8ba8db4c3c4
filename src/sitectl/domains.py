"""Domain validation and site option helpers."""
from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import InvalidDomainError

_LABEL = r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?"
_HOSTNAME_RE = re.compile(rf"{_LABEL}(?:\.{_LABEL})*")
_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)

MAX_DOMAIN_LENGTH = 253


def validate_domain(value: str) -> str:
    """Validate and normalise a domain name.

    Labels are 1-63 alphanumeric-or-hyphen characters separated by dots and may
    not start or end with a hyphen. The returned value is lower-cased.
    """
    normalised = value.strip().lower()
    if not normalised:
        raise InvalidDomainError(
            "Domain cannot be empty.",
            hint="Pass --domain example.com or enter a domain at the prompt.",
        )
    if len(normalised) > MAX_DOMAIN_LENGTH:
        raise InvalidDomainError(
            f"Domain must be {MAX_DOMAIN_LENGTH} characters or fewer.",
            hint="Use a shorter hostname.",
        )
    if not _HOSTNAME_RE.fullmatch(normalised):
        raise InvalidDomainError(
            f"Invalid domain format: {value.strip()}",
            hint="Use letters, digits, and hyphens in dot-separated labels (e.g. example.com).",
        )
    return normalised


def normalize_domain_input(raw: str) -> str:
    """Clean up an interactively entered domain.

    Strips an ``http://``/``https://`` prefix, a trailing slash, and a leading
    ``www.`` since the www variant is handled by ``--www``.
    """
    cleaned = _SCHEME_RE.sub("", raw.strip())
    if cleaned.endswith("/"):
        cleaned = cleaned[:-1]
    if cleaned.lower().startswith("www."):
        cleaned = cleaned[4:]
    return cleaned


@dataclass(frozen=True, slots=True)
class SiteOptions:
    """Per-invocation site settings."""

    domain: str
    www_redirect: bool = False

    @classmethod
    def build(cls, domain: str, *, www_redirect: bool = False) -> SiteOptions:
        """Return options for a validated *domain*."""
        return cls(domain=validate_domain(domain), www_redirect=www_redirect)

    @property
    def www_domain(self) -> str:
        """Return the ``www.`` host for the domain."""
        return f"www.{self.domain}"

    @property
    def artifact_name(self) -> str:
        """Return the configuration artifact file name."""
        return artifact_name(self.domain)

    def certificate_names(self) -> tuple[str, ...]:
        """Return the hostnames a certificate must cover."""
        if self.www_redirect:
            return (self.domain, self.www_domain)
        return (self.domain,)


def artifact_name(domain: str) -> str:
    """Return the configuration file name for *domain*."""
    return f"{domain}.conf"


__all__ = [
    "MAX_DOMAIN_LENGTH",
    "SiteOptions",
    "artifact_name",
    "normalize_domain_input",
    "validate_domain",
]
