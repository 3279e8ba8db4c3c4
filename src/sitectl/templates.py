"""Jinja2 template rendering with operator overrides.

Built-in templates live in ``sitectl/resources``. When a templates directory is
configured (``/etc/sitectl/templates`` by default) files there shadow the
built-in template with the same relative name.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateError,
)

BUILTIN_TEMPLATES_DIR = Path(__file__).resolve().parent / "resources"


class TemplateRenderError(RuntimeError):
    """Raised when a template cannot be loaded or rendered."""


@dataclass(slots=True)
class TemplateEngine:
    """Render templates from override and built-in search paths."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine that prefers templates under *override_dir*."""
        loaders = []
        if override_dir is not None and override_dir.is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(FileSystemLoader(str(BUILTIN_TEMPLATES_DIR)))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        return cls(environment=environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context* and return the text."""
        try:
            template = self.environment.get_template(template_name)
            return template.render(**context)
        except TemplateError as exc:
            raise TemplateRenderError(f"Failed to render {template_name}: {exc}") from exc

    def render_to_path(
        self,
        template_name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render *template_name* into *destination*.

        Returns ``True`` when the file content changed. Unchanged content leaves
        the file untouched apart from enforcing *mode*.
        """
        rendered = self.render_to_string(template_name, context)
        return write_text_atomic(destination, rendered, mode=mode)


def write_text_atomic(destination: Path, content: str, *, mode: int = 0o644) -> bool:
    """Atomically write *content* to *destination*; return ``True`` if it changed."""
    if destination.exists() and destination.read_text(encoding="utf-8") == content:
        destination.chmod(mode)
        return False
    destination.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_name = tempfile.mkstemp(
        dir=str(destination.parent), prefix=f".{destination.name}."
    )
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, destination)
    finally:
        tmp_path.unlink(missing_ok=True)
    return True


__all__ = ["BUILTIN_TEMPLATES_DIR", "TemplateEngine", "TemplateRenderError", "write_text_atomic"]
