"""Deterministic template version selection for canary rollouts.

A recipient is assigned a bucket in ``[0, 100)`` by keying HMAC-SHA256 with
the template key and hashing the normalised recipient. The first four bytes
of the digest are read as a big-endian unsigned integer and reduced mod 100,
so the same recipient always lands in the same bucket for a given template,
in every process.
"""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import hmac
from typing import TYPE_CHECKING

from confession_service.core.exceptions import TemplateConfigurationError
from confession_service.features.notifications.metrics import notification_template_resolved_total

if TYPE_CHECKING:
    from confession_service.core.settings import TemplateRolloutPolicy
    from confession_service.features.notifications.templates.registry import (
        TemplateRegistry,
        TemplateVersion,
    )

DEFAULT_VERSION = "v1"


@dataclass(frozen=True, slots=True)
class CanaryResolution:
    version: str
    is_canary: bool


def recipient_bucket(recipient: str, template_key: str) -> int:
    """Bucket in [0, 100) for a recipient under a template key."""
    digest = hmac.new(
        template_key.encode("utf-8"),
        recipient.strip().lower().encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return int.from_bytes(digest[:4], "big") % 100


def resolve_version(
    template_key: str,
    recipient: str,
    policy: TemplateRolloutPolicy | None,
) -> CanaryResolution:
    """Pick the template version a recipient should receive.

    - No policy: ``v1``.
    - No canary version or a non-positive percentage: the active version.
    - A percentage of 100 or more is a full promotion: the canary version is
      served to everyone and is no longer reported as a canary.
    - Otherwise recipients whose bucket is below the percentage get the
      canary version.
    """
    if policy is None:
        resolution = CanaryResolution(version=DEFAULT_VERSION, is_canary=False)
    elif not policy.canary_version or policy.canary_percent <= 0:
        resolution = CanaryResolution(version=policy.active_version, is_canary=False)
    elif policy.canary_percent >= 100:
        resolution = CanaryResolution(version=policy.canary_version, is_canary=False)
    elif recipient_bucket(recipient, template_key) < policy.canary_percent:
        resolution = CanaryResolution(version=policy.canary_version, is_canary=True)
    else:
        resolution = CanaryResolution(version=policy.active_version, is_canary=False)

    notification_template_resolved_total.labels(
        template_key=template_key,
        version=resolution.version,
        is_canary=str(resolution.is_canary).lower(),
    ).inc()
    return resolution


def lookup(registry: TemplateRegistry, template_key: str, version: str) -> TemplateVersion:
    """Find a template version in the registry.

    Raises:
        TemplateConfigurationError: If the key is unregistered or the version is absent.
    """
    versions = registry.versions(template_key)
    if not versions:
        raise TemplateConfigurationError(
            f"Template key '{template_key}' is not registered",
            template_key=template_key,
        )
    template = registry.find(template_key, version)
    if template is None:
        raise TemplateConfigurationError(
            f"Template version '{version}' not found for key '{template_key}'",
            template_key=template_key,
            version=version,
        )
    return template
