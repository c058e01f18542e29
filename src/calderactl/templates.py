"""Jinja2 template rendering for generated configuration artifacts."""
from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    TemplateError as JinjaTemplateError,
)

from .runner import write_atomic


class TemplateError(RuntimeError):
    """Raised when a template cannot be located or rendered."""


def _quote(value: object) -> str:
    """Render *value* as a double-quoted scalar valid in both JSON and YAML."""
    return json.dumps(str(value))


class TemplateEngine:
    """Render built-in templates, optionally shadowed by an override directory."""

    def __init__(self, environment: Environment) -> None:
        """Wrap a pre-configured Jinja2 environment."""
        self._env = environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine that prefers templates found under *override_dir*."""
        loaders: list[FileSystemLoader | PackageLoader] = []
        if override_dir is not None and override_dir.is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(PackageLoader("calderactl", "resources"))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,  # noqa: S701 - renders YAML and unit files, not HTML
        )
        environment.filters["quote"] = _quote
        return cls(environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context* and return the text."""
        try:
            template = self._env.get_template(template_name)
            return template.render(**context)
        except JinjaTemplateError as exc:
            raise TemplateError(f"Failed to render template '{template_name}': {exc}") from exc

    def render_to_path(
        self,
        template_name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render into *destination* atomically.

        Returns ``True`` when the on-disk content changed; identical content
        is left alone.
        """
        content = self.render_to_string(template_name, context)
        changed = not _content_matches(destination, content)
        if changed:
            write_atomic(destination, content, mode=mode)
        return changed


def _content_matches(path: Path, content: str) -> bool:
    try:
        return path.read_text(encoding="utf-8") == content
    except FileNotFoundError:
        return False


__all__ = ["TemplateEngine", "TemplateError"]
