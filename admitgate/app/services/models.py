"""Admission request and decision models."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterator, Optional, Sequence, Tuple

if TYPE_CHECKING:
    from admitgate.app.services.quota_ledger.models import LimitingKey
    from admitgate.app.services.threat_detector.models import ThreatCategory


ADDRESS_DENIED = "address_denied"


@dataclass(frozen=True)
class RequestDescriptor:
    """Immutable view of one inbound request.

    Attributes:
        address: Caller network address
        method: HTTP method
        path: Request path, already percent-decoded
        caller_id: Authenticated caller identity, None for anonymous callers
        fields: Ordered (name, value) pairs from query and form fields
        headers: Ordered (name, value) header pairs
    """
    address: str
    method: str
    path: str
    caller_id: Optional[str] = None
    fields: Tuple[Tuple[str, str], ...] = ()
    headers: Tuple[Tuple[str, str], ...] = ()

    def __post_init__(self) -> None:
        # Accept lists from callers but store tuples so the descriptor stays hashable
        object.__setattr__(self, "fields", tuple((str(k), str(v)) for k, v in self.fields))
        object.__setattr__(self, "headers", tuple((str(k), str(v)) for k, v in self.headers))

    def text_fragments(self) -> Iterator[Tuple[str, str]]:
        """Yield (source, text) for every inspected textual field.

        Order: path, then field values, then header values.
        """
        yield "path", self.path
        for name, value in self.fields:
            yield f"field:{name}", value
        for name, value in self.headers:
            yield f"header:{name.lower()}", value


@dataclass(frozen=True)
class Violation:
    """One reason a request was rejected."""
    source: str
    reason: str
    category: Optional["ThreatCategory"] = None

    @classmethod
    def address_denied(cls) -> "Violation":
        return cls(source="address", reason=ADDRESS_DENIED)

    @classmethod
    def threat(cls, source: str, category: "ThreatCategory") -> "Violation":
        return cls(source=source, reason=category.value, category=category)

    def to_dict(self) -> dict:
        return {"source": self.source, "reason": self.reason}


class DecisionOutcome(str, Enum):
    """Terminal state of the admission pipeline."""
    ALLOW = "allow"
    THROTTLED = "throttled"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Decision:
    """Admission decision produced once per request.

    Attributes:
        outcome: allow, throttled or rejected
        retry_after: Seconds until the blocking quota frees up (throttled only)
        violations: Every violation found (rejected only), in detection order
        limiting_key: Key that throttled the request
        tier: Name of the quota tier applied, if the tier check ran
        reason: Short machine-readable reason, e.g. ``quota_exceeded``
    """
    outcome: DecisionOutcome
    retry_after: Optional[float] = None
    violations: Tuple[Violation, ...] = field(default_factory=tuple)
    limiting_key: Optional["LimitingKey"] = None
    tier: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def allow(cls, tier: Optional[str] = None, reason: Optional[str] = None) -> "Decision":
        return cls(outcome=DecisionOutcome.ALLOW, tier=tier, reason=reason)

    @classmethod
    def throttled(
        cls,
        retry_after: float,
        limiting_key: Optional["LimitingKey"] = None,
        tier: Optional[str] = None,
        reason: str = "quota_exceeded",
    ) -> "Decision":
        return cls(
            outcome=DecisionOutcome.THROTTLED,
            retry_after=retry_after,
            limiting_key=limiting_key,
            tier=tier,
            reason=reason,
        )

    @classmethod
    def rejected(cls, violations: Sequence[Violation]) -> "Decision":
        return cls(
            outcome=DecisionOutcome.REJECTED,
            violations=tuple(violations),
            reason="threat_detected" if any(v.category for v in violations) else ADDRESS_DENIED,
        )

    @property
    def allowed(self) -> bool:
        return self.outcome is DecisionOutcome.ALLOW

    @property
    def categories(self) -> Tuple["ThreatCategory", ...]:
        """Distinct threat categories among the violations, first-seen order."""
        seen = []
        for violation in self.violations:
            if violation.category is not None and violation.category not in seen:
                seen.append(violation.category)
        return tuple(seen)
