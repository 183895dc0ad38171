"""Tests for policy construction and key strategies."""

import math

import pytest

from gatekeeper.core.context import RequestContext, normalize_path
from gatekeeper.core.errors import PolicyConfigurationError
from gatekeeper.core.policy import (
    ByAuthenticatedUser,
    ByRemoteAddress,
    ByUserAndEndpoint,
    Custom,
    PolicyConfig,
    describe_strategy,
)


class TestPolicyConfig:
    @pytest.mark.parametrize("max_requests", [0, -5, 1.5, True])
    def test_rejects_invalid_ceiling(self, max_requests) -> None:
        with pytest.raises(PolicyConfigurationError) as exc_info:
            PolicyConfig(name="p", window_seconds=60, max_requests=max_requests)
        assert exc_info.value.code == "invalid_policy"
        assert exc_info.value.details["field"] == "max_requests"

    @pytest.mark.parametrize("window", [0, -1, math.inf, math.nan])
    def test_rejects_invalid_window(self, window: float) -> None:
        with pytest.raises(PolicyConfigurationError) as exc_info:
            PolicyConfig(name="p", window_seconds=window, max_requests=1)
        assert exc_info.value.details["field"] == "window_seconds"

    def test_rejects_empty_name(self) -> None:
        with pytest.raises(PolicyConfigurationError):
            PolicyConfig(name="", window_seconds=60, max_requests=1)

    def test_is_immutable(self) -> None:
        policy = PolicyConfig(name="p", window_seconds=60, max_requests=1)
        with pytest.raises(AttributeError):
            policy.max_requests = 10  # type: ignore[misc]

    def test_derive_key_is_namespaced_by_policy(self) -> None:
        request = RequestContext(identity="u1")
        a = PolicyConfig(name="user", window_seconds=60, max_requests=1, key_strategy=ByAuthenticatedUser())
        b = PolicyConfig(name="inference", window_seconds=60, max_requests=1, key_strategy=ByAuthenticatedUser())

        assert a.derive_key(request) == "user:user:u1"
        assert a.derive_key(request) != b.derive_key(request)


class TestKeyStrategies:
    def test_remote_address_includes_truncated_user_agent(self) -> None:
        request = RequestContext(remote_address="10.0.0.1", user_agent="A" * 500)
        key = ByRemoteAddress().derive(request)

        assert key == "10.0.0.1:" + "A" * 50

    def test_remote_address_custom_prefix(self) -> None:
        request = RequestContext(remote_address="10.0.0.1", user_agent="Mozilla/5.0")
        assert ByRemoteAddress(user_agent_prefix=3).derive(request) == "10.0.0.1:Moz"

    def test_remote_address_only(self) -> None:
        request = RequestContext(remote_address="10.0.0.1", user_agent="Mozilla/5.0")
        assert ByRemoteAddress(include_user_agent=False).derive(request) == "10.0.0.1"

    def test_remote_address_missing_values(self) -> None:
        assert ByRemoteAddress().derive(RequestContext()) == "unknown:unknown"

    def test_authenticated_user_prefers_identity(self) -> None:
        request = RequestContext(remote_address="10.0.0.1", identity="u-42")
        assert ByAuthenticatedUser().derive(request) == "user:u-42"

    def test_authenticated_user_falls_back_to_address(self) -> None:
        request = RequestContext(remote_address="10.0.0.1", user_agent="curl/8")
        assert ByAuthenticatedUser().derive(request) == "10.0.0.1:curl/8"

    def test_user_and_endpoint_normalizes_path(self) -> None:
        request = RequestContext(identity="u-1", path="//V1/Auth/Refresh/")
        assert ByUserAndEndpoint().derive(request) == "user:u-1:/v1/auth/refresh"

    def test_user_and_endpoint_anonymous_falls_back_to_address(self) -> None:
        request = RequestContext(remote_address="10.0.0.1", user_agent="curl/8", path="/v1/auth/refresh")
        assert ByUserAndEndpoint().derive(request) == "10.0.0.1:curl/8:/v1/auth/refresh"

    def test_user_and_endpoint_anonymous_addresses_are_distinct(self) -> None:
        strategy = ByUserAndEndpoint(fallback=ByRemoteAddress(include_user_agent=False))
        first = RequestContext(remote_address="6.6.6.6", path="/v1/auth/refresh")
        second = RequestContext(remote_address="1.2.3.4", path="/v1/auth/refresh")

        assert strategy.derive(first) != strategy.derive(second)

    def test_identity_named_like_address_does_not_collide(self) -> None:
        strategy = ByUserAndEndpoint(fallback=ByRemoteAddress(include_user_agent=False))
        user = RequestContext(identity="1.2.3.4", path="/x")
        anonymous = RequestContext(remote_address="1.2.3.4", path="/x")

        assert strategy.derive(user) != strategy.derive(anonymous)

    def test_custom_strategy(self) -> None:
        strategy = Custom(fn=lambda r: f"tenant:{r.method}", label="tenant")
        assert strategy.derive(RequestContext(method="POST")) == "tenant:POST"
        assert describe_strategy(strategy) == "custom:tenant"

    @pytest.mark.parametrize(
        "strategy, label",
        [
            (ByRemoteAddress(), "address+user_agent"),
            (ByRemoteAddress(include_user_agent=False), "address"),
            (ByAuthenticatedUser(), "user"),
            (ByUserAndEndpoint(), "user+endpoint"),
        ],
    )
    def test_describe_strategy(self, strategy, label: str) -> None:
        assert describe_strategy(strategy) == label

    def test_strategies_compare_by_value(self) -> None:
        assert ByRemoteAddress() == ByRemoteAddress()
        assert ByRemoteAddress() != ByRemoteAddress(include_user_agent=False)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("/", "/"),
        ("", "/"),
        ("/v1/ai/", "/v1/ai"),
        ("v1/ai", "/v1/ai"),
        ("//a///b", "/a/b"),
    ],
)
def test_normalize_path(raw: str, expected: str) -> None:
    assert normalize_path(raw) == expected
