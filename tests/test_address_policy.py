"""Tests for the network address policy."""

import pytest

from admitgate.app.core.config import Settings
from admitgate.app.exceptions import ConfigurationError, InvalidAddress
from admitgate.app.services.address_policy import AddressPolicy, PolicyVerdict, parse_address


class TestEvaluate:
    """Allow/deny evaluation."""

    def test_empty_policy_allows(self):
        policy = AddressPolicy.from_ranges()
        assert policy.evaluate("203.0.113.9") is PolicyVerdict.ALLOW

    def test_outside_allow_list_is_denied(self):
        """Allow=[10.0.0.0/8], address 192.168.1.1 -> deny."""
        policy = AddressPolicy.from_ranges(allow=["10.0.0.0/8"])
        assert policy.evaluate("192.168.1.1") is PolicyVerdict.DENY

    def test_inside_allow_list_is_allowed(self):
        policy = AddressPolicy.from_ranges(allow=["10.0.0.0/8"])
        assert policy.evaluate("10.20.30.40") is PolicyVerdict.ALLOW

    def test_deny_range(self):
        policy = AddressPolicy.from_ranges(deny=["198.51.100.0/24"])
        assert policy.evaluate("198.51.100.7") is PolicyVerdict.DENY
        assert policy.evaluate("198.51.101.7") is PolicyVerdict.ALLOW

    def test_deny_wins_over_allow(self):
        """An address in both lists is denied."""
        policy = AddressPolicy.from_ranges(allow=["10.0.0.0/8"], deny=["10.1.0.0/16"])
        assert policy.evaluate("10.1.2.3") is PolicyVerdict.DENY
        assert policy.evaluate("10.2.2.3") is PolicyVerdict.ALLOW

    def test_bare_address_range(self):
        policy = AddressPolicy.from_ranges(deny=["192.0.2.1"])
        assert policy.evaluate("192.0.2.1") is PolicyVerdict.DENY
        assert policy.evaluate("192.0.2.2") is PolicyVerdict.ALLOW

    def test_ipv6(self):
        policy = AddressPolicy.from_ranges(allow=["2001:db8::/32"])
        assert policy.evaluate("2001:db8::1") is PolicyVerdict.ALLOW
        assert policy.evaluate("2001:db9::1") is PolicyVerdict.DENY

    def test_ipv4_mapped_ipv6_uses_ipv4_ranges(self):
        policy = AddressPolicy.from_ranges(deny=["192.0.2.0/24"])
        assert policy.evaluate("::ffff:192.0.2.10") is PolicyVerdict.DENY

    def test_other_family_is_not_covered(self):
        policy = AddressPolicy.from_ranges(allow=["10.0.0.0/8"])
        assert policy.evaluate("2001:db8::1") is PolicyVerdict.DENY

    @pytest.mark.parametrize("address", ["", "not-an-ip", "999.1.1.1", "10.0.0", "testclient"])
    def test_malformed_address_fails_closed(self, address):
        policy = AddressPolicy.from_ranges()
        assert policy.evaluate(address) is PolicyVerdict.DENY

    def test_evaluate_is_idempotent(self):
        policy = AddressPolicy.from_ranges(allow=["10.0.0.0/8"], deny=["10.9.0.0/16"])
        for address in ("10.1.1.1", "10.9.1.1", "172.16.0.1", "bogus"):
            first = policy.evaluate(address)
            assert all(policy.evaluate(address) is first for _ in range(5))


class TestParsing:
    """Address and range parsing."""

    def test_parse_address_rejects_garbage(self):
        with pytest.raises(InvalidAddress):
            parse_address("garbage")

    def test_parse_address_strips_zone(self):
        assert str(parse_address("fe80::1%eth0")) == "fe80::1"

    def test_invalid_range_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            AddressPolicy.from_ranges(allow=["10.0.0.0/33"])

    def test_from_settings_accepts_delimited_strings(self, monkeypatch):
        monkeypatch.setenv("ADDRESS_ALLOW", "10.0.0.0/8, 172.16.0.0/12")
        monkeypatch.setenv("ADDRESS_DENY", '["10.66.0.0/16"]')
        policy = AddressPolicy.from_settings(Settings(_env_file=None))
        assert len(policy.allow) == 2
        assert len(policy.deny) == 1
        assert policy.evaluate("10.66.0.1") is PolicyVerdict.DENY
        assert policy.evaluate("172.16.5.5") is PolicyVerdict.ALLOW
