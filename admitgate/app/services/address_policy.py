"""Network address allow/deny policy.

Deny ranges always win. A non-empty allow list turns the policy into an
allow-list: addresses outside it are denied. Unparseable addresses are
denied rather than raised.
"""
from __future__ import annotations

import ipaddress
from enum import Enum
from typing import Iterable, Tuple, Union

from admitgate.app.core.logging import get_logger
from admitgate.app.exceptions import ConfigurationError, InvalidAddress

logger = get_logger(__name__)

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class PolicyVerdict(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


def parse_address(address: str) -> IPAddress:
    """Parse a caller address, unwrapping IPv4-mapped IPv6 addresses.

    Raises:
        InvalidAddress: If the address is empty or malformed
    """
    if not address:
        raise InvalidAddress(address)
    candidate = address.strip()
    # Zone ids ("fe80::1%eth0") are link-local only and never match a range
    if "%" in candidate:
        candidate = candidate.split("%", 1)[0]
    try:
        parsed = ipaddress.ip_address(candidate)
    except ValueError as e:
        raise InvalidAddress(address) from e
    if isinstance(parsed, ipaddress.IPv6Address) and parsed.ipv4_mapped is not None:
        return parsed.ipv4_mapped
    return parsed


def _parse_ranges(ranges: Iterable[str], setting: str) -> Tuple[IPNetwork, ...]:
    networks = []
    for value in ranges:
        try:
            networks.append(ipaddress.ip_network(value.strip(), strict=False))
        except ValueError as e:
            raise ConfigurationError(f"invalid address range {value!r}", setting=setting) from e
    return tuple(networks)


class AddressPolicy:
    """Immutable allow/deny range evaluation."""

    def __init__(
        self,
        allow: Iterable[IPNetwork] = (),
        deny: Iterable[IPNetwork] = (),
    ) -> None:
        self._allow: Tuple[IPNetwork, ...] = tuple(allow)
        self._deny: Tuple[IPNetwork, ...] = tuple(deny)

    @classmethod
    def from_ranges(cls, allow: Iterable[str] = (), deny: Iterable[str] = ()) -> "AddressPolicy":
        """Build a policy from CIDR strings or bare addresses.

        Raises:
            ConfigurationError: If any range is malformed
        """
        return cls(
            allow=_parse_ranges(allow, "address_allow"),
            deny=_parse_ranges(deny, "address_deny"),
        )

    @classmethod
    def from_settings(cls, settings) -> "AddressPolicy":
        policy = cls.from_ranges(settings.address_allow, settings.address_deny)
        logger.info(
            "Address policy loaded",
            extra={"allow_ranges": len(policy.allow), "deny_ranges": len(policy.deny)},
        )
        return policy

    @property
    def allow(self) -> Tuple[IPNetwork, ...]:
        return self._allow

    @property
    def deny(self) -> Tuple[IPNetwork, ...]:
        return self._deny

    @staticmethod
    def _covered(address: IPAddress, networks: Tuple[IPNetwork, ...]) -> bool:
        # Membership across address families is simply False
        return any(address.version == net.version and address in net for net in networks)

    def evaluate(self, address: str) -> PolicyVerdict:
        """Evaluate a caller address against the policy."""
        try:
            parsed = parse_address(address)
        except InvalidAddress:
            return PolicyVerdict.DENY
        if self._covered(parsed, self._deny):
            return PolicyVerdict.DENY
        if self._allow and not self._covered(parsed, self._allow):
            return PolicyVerdict.DENY
        return PolicyVerdict.ALLOW
