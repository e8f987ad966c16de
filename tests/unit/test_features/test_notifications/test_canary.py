"""Tests for template version resolution during canary rollouts."""

from __future__ import annotations

import pytest

from confession_service.core.exceptions import TemplateConfigurationError
from confession_service.core.settings import TemplateRolloutPolicy
from confession_service.features.notifications.canary import (
    DEFAULT_VERSION,
    lookup,
    recipient_bucket,
    resolve_version,
)
from confession_service.features.notifications.templates import TemplateRegistry, default_template_versions


def _recipient_in_bucket(template_key: str, below: float) -> str:
    for i in range(1000):
        candidate = f"user{i}@example.com"
        if recipient_bucket(candidate, template_key) < below:
            return candidate
    raise AssertionError("no recipient found")


def _recipient_outside_bucket(template_key: str, at_least: float) -> str:
    for i in range(1000):
        candidate = f"user{i}@example.com"
        if recipient_bucket(candidate, template_key) >= at_least:
            return candidate
    raise AssertionError("no recipient found")


class TestRecipientBucket:
    def test_bucket_is_in_range(self):
        for i in range(200):
            assert 0 <= recipient_bucket(f"user{i}@example.com", "new_message") < 100

    def test_bucket_is_stable(self):
        first = recipient_bucket("alice@example.com", "new_message")
        assert all(recipient_bucket("alice@example.com", "new_message") == first for _ in range(10))

    def test_bucket_ignores_case_and_whitespace(self):
        assert recipient_bucket("  Alice@Example.com ", "new_message") == recipient_bucket(
            "alice@example.com", "new_message"
        )

    def test_buckets_spread_across_recipients(self):
        buckets = {recipient_bucket(f"user{i}@example.com", "new_message") for i in range(500)}
        assert len(buckets) > 50


class TestResolveVersion:
    def test_no_policy_uses_default_version(self):
        resolution = resolve_version("new_message", "a@example.com", None)

        assert resolution.version == DEFAULT_VERSION
        assert resolution.is_canary is False

    def test_policy_without_canary_uses_active_version(self):
        policy = TemplateRolloutPolicy(active_version="v3")

        resolution = resolve_version("new_message", "a@example.com", policy)

        assert resolution.version == "v3"
        assert resolution.is_canary is False

    def test_zero_percent_never_serves_canary(self):
        policy = TemplateRolloutPolicy(active_version="v1", canary_version="v2", canary_percent=0)

        for i in range(100):
            assert resolve_version("new_message", f"user{i}@example.com", policy).version == "v1"

    def test_full_percent_is_a_promotion(self):
        policy = TemplateRolloutPolicy(active_version="v1", canary_version="v2", canary_percent=100)

        resolution = resolve_version("new_message", "a@example.com", policy)

        assert resolution.version == "v2"
        assert resolution.is_canary is False

    def test_recipient_below_percent_gets_canary(self):
        policy = TemplateRolloutPolicy(active_version="v1", canary_version="v2", canary_percent=50)
        recipient = _recipient_in_bucket("new_message", 50)

        resolution = resolve_version("new_message", recipient, policy)

        assert resolution.version == "v2"
        assert resolution.is_canary is True

    def test_recipient_above_percent_gets_active(self):
        policy = TemplateRolloutPolicy(active_version="v1", canary_version="v2", canary_percent=50)
        recipient = _recipient_outside_bucket("new_message", 50)

        resolution = resolve_version("new_message", recipient, policy)

        assert resolution.version == "v1"
        assert resolution.is_canary is False

    def test_same_recipient_always_gets_same_version(self):
        policy = TemplateRolloutPolicy(active_version="v1", canary_version="v2", canary_percent=30)

        versions = {resolve_version("new_message", "stable@example.com", policy).version for _ in range(20)}

        assert len(versions) == 1


class TestLookup:
    @pytest.fixture
    def registry(self) -> TemplateRegistry:
        return TemplateRegistry(templates=default_template_versions())

    def test_finds_registered_version(self, registry):
        template = lookup(registry, "new_message", "v1")
        assert template.version == "v1"

    def test_unknown_key_raises(self, registry):
        with pytest.raises(TemplateConfigurationError) as exc_info:
            lookup(registry, "unknown_kind", "v1")
        assert exc_info.value.template_key == "unknown_kind"

    def test_unknown_version_raises(self, registry):
        with pytest.raises(TemplateConfigurationError) as exc_info:
            lookup(registry, "new_message", "v99")
        assert "v99" in exc_info.value.detail
        assert exc_info.value.version == "v99"
