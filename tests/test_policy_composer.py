"""Tests for tier composition and operation matching."""

import pytest

from gatekeeper.core.config import RateLimitSettings
from gatekeeper.core.context import RequestContext
from gatekeeper.core.errors import PolicyConfigurationError
from gatekeeper.core.policy import ByRemoteAddress, ByUserAndEndpoint, PolicyConfig
from gatekeeper.services.policy_composer import (
    OperationRule,
    PolicyComposer,
    StaticTier,
    SubscriptionTier,
    parse_rules,
)


@pytest.fixture
def composer() -> PolicyComposer:
    return PolicyComposer.from_settings(RateLimitSettings())


def _names(composer: PolicyComposer, request: RequestContext) -> list[str]:
    return [policy.name for policy, _ in composer.compose(request)]


class TestOperationRule:
    def test_parse_with_method(self) -> None:
        rule = OperationRule.parse("post /v1/auth/refresh")
        assert rule == OperationRule(pattern="/v1/auth/refresh", method="POST")
        assert str(rule) == "POST /v1/auth/refresh"

    def test_parse_without_method(self) -> None:
        assert OperationRule.parse("/V1/AI/*") == OperationRule(pattern="/v1/ai/*")

    @pytest.mark.parametrize("text", ["FETCH /x", "POST /x extra", "v1/no-slash"])
    def test_parse_rejects_malformed(self, text: str) -> None:
        with pytest.raises(PolicyConfigurationError):
            OperationRule.parse(text)

    def test_matches_method_and_glob(self) -> None:
        rule = OperationRule.parse("DELETE /v1/auth/account")
        assert rule.matches(RequestContext(method="DELETE", path="/v1/auth/account/"))
        assert not rule.matches(RequestContext(method="GET", path="/v1/auth/account"))

    def test_glob_matches_subpaths(self) -> None:
        rule = OperationRule.parse("/v1/ai/*")
        assert rule.matches(RequestContext(path="/v1/ai/chat"))
        assert rule.matches(RequestContext(path="/v1/ai/meal/analyze"))
        assert not rule.matches(RequestContext(path="/v1/activities"))

    def test_parse_rules_splits_csv(self) -> None:
        rules = parse_rules("POST /a, /b/* ,,")
        assert [str(r) for r in rules] == ["POST /a", "/b/*"]
        assert parse_rules("") == ()


class TestDefaultTiers:
    def test_anonymous_plain_request(self, composer: PolicyComposer) -> None:
        request = RequestContext(remote_address="1.2.3.4", user_agent="ua", path="/v1/activities")
        composed = composer.compose(request)

        assert [p.name for p, _ in composed] == ["flood", "global", "user"]
        keys = dict((p.name, k) for p, k in composed)
        assert keys["flood"] == "flood:1.2.3.4"
        assert keys["global"] == "global:1.2.3.4"
        assert keys["user"] == "user:1.2.3.4:ua"

    def test_authenticated_user_keyed_by_identity(self, composer: PolicyComposer) -> None:
        request = RequestContext(remote_address="1.2.3.4", identity="u1", path="/v1/activities")
        keys = dict((p.name, k) for p, k in composer.compose(request))

        assert keys["user"] == "user:user:u1"

    def test_sensitive_operation_adds_strict_tier(self, composer: PolicyComposer) -> None:
        request = RequestContext(identity="u1", method="POST", path="/v1/auth/refresh")
        composed = composer.compose(request)

        assert _names(composer, request) == ["flood", "global", "user", "sensitive"]
        policy, key = composed[-1]
        assert policy.window_seconds == 60
        assert policy.max_requests == 10
        assert isinstance(policy.key_strategy, ByUserAndEndpoint)
        assert key == "sensitive:user:u1:/v1/auth/refresh"

    def test_sensitive_requires_matching_method(self, composer: PolicyComposer) -> None:
        request = RequestContext(identity="u1", method="GET", path="/v1/auth/refresh")
        assert "sensitive" not in _names(composer, request)

    def test_upload_and_admin_tiers(self, composer: PolicyComposer) -> None:
        upload = RequestContext(identity="u1", method="POST", path="/v1/uploads/image")
        admin = RequestContext(identity="u1", method="GET", path="/v1/admin/users")

        assert _names(composer, upload)[-1] == "upload"
        assert _names(composer, admin)[-1] == "admin"

    def test_premium_identity_gets_higher_inference_ceiling(self, composer: PolicyComposer) -> None:
        premium = RequestContext(identity="p", subscription_tier="Premium", method="POST", path="/v1/ai/chat")
        free = RequestContext(identity="f", subscription_tier="free", method="POST", path="/v1/ai/chat")

        premium_policy = composer.compose(premium)[-1][0]
        free_policy = composer.compose(free)[-1][0]

        assert premium_policy.name == free_policy.name == "inference"
        assert premium_policy.window_seconds == free_policy.window_seconds == 3600
        assert premium_policy.max_requests == 1000
        assert free_policy.max_requests == 50
        assert premium_policy.max_requests > free_policy.max_requests

    def test_inference_key_is_per_identity(self, composer: PolicyComposer) -> None:
        first = RequestContext(identity="u1", path="/v1/ai/chat")
        second = RequestContext(identity="u1", path="/v1/ai/meal")

        assert composer.compose(first)[-1][1] == composer.compose(second)[-1][1] == "inference:user:u1"

    def test_describe_is_inspectable(self, composer: PolicyComposer) -> None:
        described = composer.describe(RequestContext(path="/v1/activities"))

        assert described[0] == {
            "name": "flood",
            "window_seconds": 60,
            "max_requests": 100,
            "key_strategy": "address",
        }


class TestConfiguration:
    def test_disabled_tiers_are_skipped(self) -> None:
        composer = PolicyComposer.from_settings(
            RateLimitSettings(flood_enabled=False, global_enabled=False, sensitive_operations="")
        )
        request = RequestContext(identity="u1", method="POST", path="/v1/auth/refresh")

        assert _names(composer, request) == ["user"]

    def test_invalid_operation_rule_fails_startup(self) -> None:
        with pytest.raises(PolicyConfigurationError):
            PolicyComposer.from_settings(RateLimitSettings(admin_operations="FETCH /v1/admin"))

    def test_duplicate_tier_names_rejected(self) -> None:
        policy = PolicyConfig(name="dup", window_seconds=1, max_requests=1)
        with pytest.raises(PolicyConfigurationError):
            PolicyComposer([StaticTier(policy), StaticTier(policy)])

    def test_custom_tier_set(self) -> None:
        tier = StaticTier(
            PolicyConfig(
                name="only",
                window_seconds=5,
                max_requests=1,
                key_strategy=ByRemoteAddress(include_user_agent=False),
            ),
            rules=parse_rules("/v1/only"),
        )
        composer = PolicyComposer([tier])

        assert composer.compose(RequestContext(path="/v1/other")) == []
        assert _names(composer, RequestContext(path="/v1/only")) == ["only"]

    def test_subscription_tier_validates_at_construction(self) -> None:
        with pytest.raises(PolicyConfigurationError):
            SubscriptionTier(
                name="inference",
                rules=parse_rules("/v1/ai/*"),
                window_seconds=3600,
                premium_max_requests=1000,
                free_max_requests=0,
            )
