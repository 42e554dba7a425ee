"""Quota tier resolution and limiting key derivation."""

import math
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from admitgate.app.core.logging import get_logger
from admitgate.app.exceptions import ConfigurationError
from admitgate.app.services.models import RequestDescriptor
from admitgate.app.services.quota_ledger.models import KeyScope, LimitingKey, QuotaRequest

logger = get_logger(__name__)

DEFAULT_ENDPOINT_FRACTION = 0.1


@dataclass(frozen=True)
class QuotaTier:
    """Named admission budget per window (seconds)."""
    name: str
    budget: int
    window: float

    def __post_init__(self) -> None:
        if self.budget < 1:
            raise ConfigurationError(f"tier '{self.name}' budget must be at least 1", setting="tiers")
        if self.window <= 0:
            raise ConfigurationError(f"tier '{self.name}' window must be positive", setting="tiers")


def endpoint_name(descriptor: RequestDescriptor) -> str:
    """Endpoint an ENDPOINT key counts: method plus path, query excluded."""
    return f"{descriptor.method.upper()} {descriptor.path}"


def caller_discriminator(descriptor: RequestDescriptor) -> str:
    """Quota identity of the caller; anonymous callers count per address."""
    if descriptor.caller_id:
        return descriptor.caller_id
    return f"anon:{descriptor.address}"


class TierResolver:
    """Maps callers to quota tiers.

    Every request gets one GLOBAL key for the caller and one ENDPOINT key for
    the endpoint it hits. The ENDPOINT budget is a fraction of the tier
    budget so a single expensive endpoint cannot consume the whole budget.
    """

    def __init__(
        self,
        tiers: Mapping[str, QuotaTier],
        default_tier: str,
        caller_tiers: Optional[Mapping[str, str]] = None,
        endpoint_fraction: float = DEFAULT_ENDPOINT_FRACTION,
    ) -> None:
        caller_tiers = dict(caller_tiers or {})
        if default_tier not in tiers:
            raise ConfigurationError(f"default tier '{default_tier}' is not defined", setting="default_tier")
        for caller, tier in caller_tiers.items():
            if tier not in tiers:
                raise ConfigurationError(
                    f"caller '{caller}' mapped to undefined tier '{tier}'",
                    setting="caller_tiers",
                )
        if not 0 < endpoint_fraction <= 1:
            raise ConfigurationError("must be in (0, 1]", setting="endpoint_budget_fraction")

        self._tiers: Dict[str, QuotaTier] = dict(tiers)
        self._default = self._tiers[default_tier]
        self._caller_tiers = caller_tiers
        self._endpoint_fraction = endpoint_fraction

    @classmethod
    def from_settings(cls, settings) -> "TierResolver":
        tiers = {
            name: QuotaTier(name=name, budget=tier.budget, window=tier.window)
            for name, tier in settings.tiers.items()
        }
        resolver = cls(
            tiers=tiers,
            default_tier=settings.default_tier,
            caller_tiers=settings.caller_tiers,
            endpoint_fraction=settings.endpoint_budget_fraction,
        )
        logger.info(
            "Quota tiers loaded",
            extra={"tiers": sorted(tiers), "mapped_callers": len(settings.caller_tiers)},
        )
        return resolver

    @property
    def default_tier(self) -> QuotaTier:
        return self._default

    def resolve(self, caller_id: Optional[str]) -> QuotaTier:
        """Tier for a caller; unmapped and anonymous callers get the default."""
        if caller_id is None:
            return self._default
        name = self._caller_tiers.get(caller_id)
        if name is None:
            return self._default
        return self._tiers[name]

    def endpoint_budget(self, tier: QuotaTier) -> int:
        return max(1, math.floor(tier.budget * self._endpoint_fraction))

    def limiting_keys(self, descriptor: RequestDescriptor, tier: QuotaTier) -> List[QuotaRequest]:
        """Quota requests for one descriptor, GLOBAL first then ENDPOINT."""
        discriminator = caller_discriminator(descriptor)
        return [
            QuotaRequest(
                key=LimitingKey(scope=KeyScope.GLOBAL, discriminator=discriminator),
                budget=tier.budget,
                window=tier.window,
            ),
            QuotaRequest(
                key=LimitingKey(
                    scope=KeyScope.ENDPOINT,
                    discriminator=discriminator,
                    endpoint=endpoint_name(descriptor),
                ),
                budget=self.endpoint_budget(tier),
                window=tier.window,
            ),
        ]
