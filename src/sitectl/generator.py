"""Nginx configuration artifact generation.

``ConfigGenerator.generate`` is pure: identical inputs always produce
byte-identical text. ``stage`` writes that text to the staging directory
(``<staging_dir>/<domain>.conf``), replacing any earlier staged artifact.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .config import AppConfig
from .domains import SiteOptions, artifact_name
from .templates import TemplateEngine, write_text_atomic
from .tls import CertificatePaths

_TEMPLATES: dict[tuple[bool, bool], str] = {
    (False, False): "nginx/http.conf.j2",
    (False, True): "nginx/https.conf.j2",
    (True, False): "nginx/http-www.conf.j2",
    (True, True): "nginx/https-www.conf.j2",
}


@dataclass(frozen=True, slots=True)
class StagedArtifact:
    """A generated artifact written to the staging directory."""

    domain: str
    path: Path
    https: bool
    changed: bool


class ConfigGenerator:
    """Render the per-domain nginx site configuration."""

    def __init__(self, config: AppConfig, templates: TemplateEngine) -> None:
        """Bind the generator to configured paths and templates."""
        self._config = config
        self._templates = templates

    @staticmethod
    def template_for(options: SiteOptions, https_available: bool) -> str:
        """Return the template name for the option/certificate combination."""
        return _TEMPLATES[(options.www_redirect, https_available)]

    def staged_path(self, domain: str) -> Path:
        """Return the staging location for *domain*."""
        return self._config.staging_dir / artifact_name(domain)

    def generate(self, options: SiteOptions, https_available: bool) -> str:
        """Return the artifact text for *options*."""
        certificate = CertificatePaths.for_domain(self._config.tls.live_dir, options.domain)
        context = {
            "domain": options.domain,
            "www_domain": options.www_domain,
            "content_dir": str(self._config.content_dir(options.domain)),
            "challenge_root": str(self._config.certbot.webroot),
            "certificate": str(certificate.fullchain),
            "certificate_key": str(certificate.private_key),
        }
        return self._templates.render_to_string(
            self.template_for(options, https_available), context
        )

    def stage(self, options: SiteOptions, https_available: bool) -> StagedArtifact:
        """Generate the artifact and write it to the staging directory."""
        text = self.generate(options, https_available)
        path = self.staged_path(options.domain)
        changed = write_text_atomic(path, text, mode=0o644)
        return StagedArtifact(
            domain=options.domain,
            path=path,
            https=https_available,
            changed=changed,
        )


__all__ = ["ConfigGenerator", "StagedArtifact"]
