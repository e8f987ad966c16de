"""Versioned email templates for notifications.

Provides the template registry (versions, lifecycle states, rollout
policies) and the sandboxed Jinja2 renderer.
"""

from __future__ import annotations

from confession_service.features.notifications.templates.registry import (
    StateTransition,
    TemplateLifecycleState,
    TemplateRegistry,
    TemplateVersion,
    default_template_versions,
    get_template_registry,
    reset_template_registry,
)
from confession_service.features.notifications.templates.renderer import (
    RenderedEmail,
    TemplateRenderer,
    get_template_renderer,
)

__all__ = [
    "RenderedEmail",
    "StateTransition",
    "TemplateLifecycleState",
    "TemplateRegistry",
    "TemplateRenderer",
    "TemplateVersion",
    "default_template_versions",
    "get_template_registry",
    "get_template_renderer",
    "reset_template_registry",
]
