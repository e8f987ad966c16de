"""Jinja2 rendering for versioned email templates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from jinja2 import StrictUndefined, TemplateSyntaxError, UndefinedError, select_autoescape
from jinja2.sandbox import SandboxedEnvironment

from confession_service.core.exceptions import TemplateConfigurationError
from confession_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Mapping

    from confession_service.features.notifications.templates.registry import TemplateVersion

_lazy = get_lazy_logger(__name__)


@dataclass(frozen=True, slots=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


class TemplateRenderer:
    """Sandboxed Jinja2 renderer.

    HTML bodies are autoescaped; subject and plain text are not. Required
    variables are checked before rendering, and any other undefined variable
    fails the render as well.
    """

    def __init__(self) -> None:
        self._html_env = SandboxedEnvironment(
            autoescape=select_autoescape(
                enabled_extensions=("html", "xml"),
                default_for_string=True,
            ),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._text_env = SandboxedEnvironment(
            autoescape=False,
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    @staticmethod
    def missing_vars(template: TemplateVersion, context: Mapping[str, Any]) -> list[str]:
        return [var for var in template.required_vars if context.get(var) is None]

    def render(
        self,
        template_key: str,
        template: TemplateVersion,
        context: Mapping[str, Any],
    ) -> RenderedEmail:
        """Render subject, HTML and text for a template version.

        Raises:
            TemplateConfigurationError: On a missing variable or a broken template.
        """
        missing = self.missing_vars(template, context)
        if missing:
            raise TemplateConfigurationError(
                f"Missing required template variable: {missing[0]} (template: {template.version})",
                template_key=template_key,
                version=template.version,
            )

        try:
            rendered = RenderedEmail(
                subject=self._text_env.from_string(template.subject).render(**context).strip(),
                html=self._html_env.from_string(template.html).render(**context),
                text=self._text_env.from_string(template.text).render(**context),
            )
        except UndefinedError as exc:
            raise TemplateConfigurationError(
                f"Undefined template variable: {exc.message} (template: {template.version})",
                template_key=template_key,
                version=template.version,
            ) from exc
        except TemplateSyntaxError as exc:
            raise TemplateConfigurationError(
                f"Syntax error in template {template_key}@{template.version}: {exc}",
                template_key=template_key,
                version=template.version,
            ) from exc

        _lazy.debug(lambda: f"Rendered template {template_key}@{template.version}")
        return rendered


_renderer: TemplateRenderer | None = None


def get_template_renderer() -> TemplateRenderer:
    """Get or create the singleton TemplateRenderer instance."""
    global _renderer
    if _renderer is None:
        _renderer = TemplateRenderer()
    return _renderer
