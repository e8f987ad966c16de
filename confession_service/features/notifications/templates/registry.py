"""Versioned email template registry with lifecycle states and rollout policies.

Each template key (a notification kind) owns a list of versions. A version
moves through ``draft -> canary -> active -> deprecated -> archived``; every
transition is appended to its state history. The registry also holds the
rollout policy per key, seeded from ``NOTIFY_TEMPLATE_ROLLOUTS``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
import logging
from typing import TYPE_CHECKING

from confession_service.core.exceptions import TemplateConfigurationError
from confession_service.core.settings import TemplateRolloutPolicy, get_notification_settings

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

logger = logging.getLogger(__name__)


class TemplateLifecycleState(StrEnum):
    DRAFT = "draft"
    CANARY = "canary"
    ACTIVE = "active"
    DEPRECATED = "deprecated"
    ARCHIVED = "archived"


@dataclass(frozen=True, slots=True)
class StateTransition:
    """One entry of a template version's state history."""

    from_state: TemplateLifecycleState
    to_state: TemplateLifecycleState
    timestamp: datetime
    reason: str | None = None
    actor_id: str | None = None


@dataclass(slots=True)
class TemplateVersion:
    """A versioned email body. Bodies use Jinja2 ``{{ var }}`` syntax."""

    version: str
    subject: str
    html: str
    text: str
    required_vars: tuple[str, ...] = ()
    state: TemplateLifecycleState = TemplateLifecycleState.DRAFT
    state_history: list[StateTransition] = field(default_factory=list)

    def transition(
        self,
        to_state: TemplateLifecycleState,
        *,
        reason: str | None = None,
        actor_id: str | None = None,
    ) -> None:
        if to_state == self.state:
            return
        self.state_history.append(
            StateTransition(
                from_state=self.state,
                to_state=to_state,
                timestamp=datetime.now(UTC),
                reason=reason,
                actor_id=actor_id,
            ),
        )
        self.state = to_state


_FOOTER_HTML = """
<hr>
<p style="color: #888; font-size: 12px;">
  <a href="{{ app_url }}/settings/notifications">Manage notification preferences</a>
</p>
<p style="color: #888; font-size: 12px;">xConfess - Anonymous Confessions on the Blockchain</p>
<p style="color: #888; font-size: 12px;">&copy; {{ year }} xConfess. All rights reserved.</p>
"""

_FOOTER_TEXT = """

--
Manage notification preferences: {{ app_url }}/settings/notifications
xConfess - Anonymous Confessions on the Blockchain
(c) {{ year }} xConfess. All rights reserved.
"""


def default_template_versions() -> dict[str, list[TemplateVersion]]:
    """Built-in ``v1`` bodies for each notification kind."""
    return {
        "new_message": [
            TemplateVersion(
                version="v1",
                subject="New Message on xConfess",
                html=(
                    "<h2>&#128276; New Message</h2>\n"
                    "<p>{{ message }}</p>\n"
                    '<p><a href="{{ app_url }}/messages">View Message</a></p>\n' + _FOOTER_HTML
                ),
                text="You have a new message on xConfess: {{ message }}\n\nView it at {{ app_url }}/messages"
                + _FOOTER_TEXT,
                required_vars=("message", "app_url"),
                state=TemplateLifecycleState.ACTIVE,
            ),
        ],
        "message_batch": [
            TemplateVersion(
                version="v1",
                subject="{{ count_label }} New Messages on xConfess",
                html=(
                    "<h2>&#128276; {{ count_label }} New Messages</h2>\n"
                    "<p>You have {{ count_label | lower }} new messages waiting on xConfess.</p>\n"
                    '<p><a href="{{ app_url }}/messages">View All Messages</a></p>\n' + _FOOTER_HTML
                ),
                text="You have {{ count_label | lower }} new messages on xConfess.\n\n"
                "View them at {{ app_url }}/messages" + _FOOTER_TEXT,
                required_vars=("count_label", "app_url"),
                state=TemplateLifecycleState.ACTIVE,
            ),
        ],
        "system": [
            TemplateVersion(
                version="v1",
                subject="{{ title }}",
                html="<h2>{{ title }}</h2>\n<p>{{ message }}</p>\n" + _FOOTER_HTML,
                text="{{ message }}" + _FOOTER_TEXT,
                required_vars=("title", "message"),
                state=TemplateLifecycleState.ACTIVE,
            ),
        ],
    }


class TemplateRegistry:
    """In-process registry of template versions and rollout policies.

    Example:
        registry = get_template_registry()
        registry.register("new_message", TemplateVersion(version="v2", ...))
        registry.start_canary("new_message", "v2", percent=10)
        registry.set_active_version("new_message", "v2")
    """

    def __init__(
        self,
        templates: Mapping[str, Iterable[TemplateVersion]] | None = None,
        policies: Mapping[str, TemplateRolloutPolicy] | None = None,
    ) -> None:
        self._templates: dict[str, list[TemplateVersion]] = {
            key: list(versions) for key, versions in (templates or {}).items()
        }
        self._policies: dict[str, TemplateRolloutPolicy] = dict(policies or {})

    def keys(self) -> list[str]:
        return sorted(self._templates)

    def versions(self, template_key: str) -> list[TemplateVersion]:
        return list(self._templates.get(template_key, ()))

    def find(self, template_key: str, version: str) -> TemplateVersion | None:
        for candidate in self._templates.get(template_key, ()):
            if candidate.version == version:
                return candidate
        return None

    def register(self, template_key: str, template: TemplateVersion) -> None:
        """Add a version to a key. Registering an existing version replaces it."""
        versions = self._templates.setdefault(template_key, [])
        versions[:] = [v for v in versions if v.version != template.version]
        versions.append(template)
        logger.info(
            "Template version registered",
            extra={"template_key": template_key, "version": template.version, "state": template.state},
        )

    def policy_for(self, template_key: str) -> TemplateRolloutPolicy | None:
        return self._policies.get(template_key)

    def policies(self) -> dict[str, TemplateRolloutPolicy]:
        return dict(self._policies)

    def set_active_version(
        self,
        template_key: str,
        version: str,
        *,
        reason: str | None = None,
        actor_id: str | None = None,
    ) -> TemplateRolloutPolicy:
        """Promote a version to active and clear any canary for the key.

        The previously active version becomes deprecated.

        Raises:
            TemplateConfigurationError: If the key or version is not registered.
        """
        target = self._require(template_key, version)

        for candidate in self._templates[template_key]:
            if candidate is not target and candidate.state in (
                TemplateLifecycleState.ACTIVE,
                TemplateLifecycleState.CANARY,
            ):
                next_state = (
                    TemplateLifecycleState.DEPRECATED
                    if candidate.state == TemplateLifecycleState.ACTIVE
                    else TemplateLifecycleState.DRAFT
                )
                candidate.transition(next_state, reason=f"superseded by {version}", actor_id=actor_id)
        target.transition(TemplateLifecycleState.ACTIVE, reason=reason, actor_id=actor_id)

        policy = TemplateRolloutPolicy(active_version=version)
        self._policies[template_key] = policy
        logger.info("Switched template to version", extra={"template_key": template_key, "version": version})
        return policy

    def start_canary(
        self,
        template_key: str,
        version: str,
        percent: float,
        *,
        reason: str | None = None,
        actor_id: str | None = None,
    ) -> TemplateRolloutPolicy:
        """Serve ``version`` to ``percent`` of recipients alongside the active version.

        Raises:
            TemplateConfigurationError: If the key or version is not registered.
            ValueError: If percent is outside [0, 100].
        """
        target = self._require(template_key, version)
        current = self._policies.get(template_key)
        active_version = current.active_version if current else self._active_version(template_key)

        policy = TemplateRolloutPolicy(
            active_version=active_version,
            canary_version=version,
            canary_percent=percent,
        )
        target.transition(TemplateLifecycleState.CANARY, reason=reason, actor_id=actor_id)
        self._policies[template_key] = policy
        logger.info(
            "Started template canary",
            extra={"template_key": template_key, "version": version, "canary_percent": percent},
        )
        return policy

    def archive(self, template_key: str, version: str, *, actor_id: str | None = None) -> None:
        """Archive a deprecated or draft version.

        Raises:
            TemplateConfigurationError: If the version is unknown or still served.
        """
        target = self._require(template_key, version)
        if target.state in (TemplateLifecycleState.ACTIVE, TemplateLifecycleState.CANARY):
            raise TemplateConfigurationError(
                f"Cannot archive template version {version} while it is {target.state}",
                template_key=template_key,
                version=version,
            )
        target.transition(TemplateLifecycleState.ARCHIVED, actor_id=actor_id)

    def _active_version(self, template_key: str) -> str:
        for candidate in self._templates.get(template_key, ()):
            if candidate.state == TemplateLifecycleState.ACTIVE:
                return candidate.version
        return "v1"

    def _require(self, template_key: str, version: str) -> TemplateVersion:
        target = self.find(template_key, version)
        if target is None:
            raise TemplateConfigurationError(
                f"Template or version not found: {template_key} {version}",
                template_key=template_key,
                version=version,
            )
        return target


_registry: TemplateRegistry | None = None


def get_template_registry() -> TemplateRegistry:
    """Get the TemplateRegistry singleton, seeded with built-in templates and configured rollouts."""
    global _registry
    if _registry is None:
        _registry = TemplateRegistry(
            templates=default_template_versions(),
            policies=get_notification_settings().template_rollouts,
        )
    return _registry


def reset_template_registry() -> None:
    """Drop the registry singleton (for tests)."""
    global _registry
    _registry = None
