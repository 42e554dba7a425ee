"""Tests for tier resolution and limiting key derivation."""

import pytest

from admitgate.app.core.config import Settings, TierSettings
from admitgate.app.exceptions import ConfigurationError
from admitgate.app.services.models import RequestDescriptor
from admitgate.app.services.quota_ledger import KeyScope
from admitgate.app.services.tier_resolver import QuotaTier, TierResolver, endpoint_name


@pytest.fixture
def resolver():
    return TierResolver(
        tiers={
            "free": QuotaTier(name="free", budget=30, window=60),
            "pro": QuotaTier(name="pro", budget=600, window=60),
        },
        default_tier="free",
        caller_tiers={"svc-billing": "pro"},
    )


class TestResolve:
    def test_mapped_caller(self, resolver):
        assert resolver.resolve("svc-billing").name == "pro"

    def test_unmapped_caller_gets_default(self, resolver):
        assert resolver.resolve("someone-else").name == "free"

    def test_anonymous_caller_gets_default(self, resolver):
        assert resolver.resolve(None) is resolver.default_tier


class TestLimitingKeys:
    def test_global_then_endpoint(self, resolver):
        descriptor = RequestDescriptor(address="10.0.0.1", method="get", path="/items", caller_id="svc-billing")
        tier = resolver.resolve(descriptor.caller_id)

        global_req, endpoint_req = resolver.limiting_keys(descriptor, tier)

        assert global_req.key.scope is KeyScope.GLOBAL
        assert global_req.key.discriminator == "svc-billing"
        assert global_req.budget == 600
        assert endpoint_req.key.scope is KeyScope.ENDPOINT
        assert endpoint_req.key.endpoint == "GET /items"
        assert endpoint_req.budget == 60
        assert endpoint_req.window == global_req.window == 60

    def test_endpoint_budget_never_below_one(self, resolver):
        tier = QuotaTier(name="tiny", budget=3, window=10)
        assert resolver.endpoint_budget(tier) == 1

    def test_anonymous_callers_keyed_by_address(self, resolver):
        descriptor = RequestDescriptor(address="192.0.2.8", method="POST", path="/login")
        requests = resolver.limiting_keys(descriptor, resolver.resolve(None))
        assert {r.key.discriminator for r in requests} == {"anon:192.0.2.8"}

    def test_endpoint_name_ignores_query(self):
        descriptor = RequestDescriptor(address="::1", method="get", path="/search", fields=[("q", "x")])
        assert endpoint_name(descriptor) == "GET /search"


class TestConfiguration:
    def test_undefined_default_tier(self):
        with pytest.raises(ConfigurationError):
            TierResolver(tiers={"a": QuotaTier("a", 1, 1)}, default_tier="b")

    def test_caller_mapped_to_undefined_tier(self):
        with pytest.raises(ConfigurationError):
            TierResolver(tiers={"a": QuotaTier("a", 1, 1)}, default_tier="a", caller_tiers={"x": "b"})

    def test_non_positive_budget(self):
        with pytest.raises(ConfigurationError):
            QuotaTier(name="bad", budget=0, window=60)

    def test_non_positive_window(self):
        with pytest.raises(ConfigurationError):
            QuotaTier(name="bad", budget=1, window=0)

    def test_bad_fraction(self):
        with pytest.raises(ConfigurationError):
            TierResolver(tiers={"a": QuotaTier("a", 1, 1)}, default_tier="a", endpoint_fraction=0)

    def test_from_settings(self, monkeypatch):
        monkeypatch.setenv("TIERS", '{"basic": {"budget": 100, "window": 30}, "gold": {"budget": 1000, "window": 30}}')
        monkeypatch.setenv("CALLER_TIERS", '{"partner-1": "gold"}')
        monkeypatch.setenv("DEFAULT_TIER", "basic")
        monkeypatch.setenv("ENDPOINT_BUDGET_FRACTION", "0.2")

        resolver = TierResolver.from_settings(Settings(_env_file=None))

        assert resolver.resolve("partner-1") == QuotaTier("gold", 1000, 30)
        assert resolver.resolve("nobody") == QuotaTier("basic", 100, 30)
        assert resolver.endpoint_budget(resolver.resolve("partner-1")) == 200

    def test_settings_reject_undefined_mapping(self):
        with pytest.raises(ValueError):
            Settings(
                _env_file=None,
                tiers={"basic": TierSettings(budget=1, window=1)},
                default_tier="basic",
                caller_tiers={"x": "missing"},
            )
