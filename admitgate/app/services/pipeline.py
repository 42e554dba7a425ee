"""Admission pipeline.

One decision per request:

    Start -> Validating -> Rejected
    Start -> Validating -> TierCheck -> Throttled | Allow

Validation collects every violation before rejecting. The tier check runs
all limiting keys through one atomic ledger call, so a throttle on one key
never consumes budget on another.
"""

import time
from enum import Enum
from typing import Callable, List, Optional

from admitgate.app.core.config import settings as default_settings
from admitgate.app.core.logging import get_logger
from admitgate.app.exceptions import LedgerUnavailable
from admitgate.app.services.address_policy import AddressPolicy, PolicyVerdict
from admitgate.app.services.events import DecisionEvent, EventSink, LoggingEventSink
from admitgate.app.services.models import Decision, RequestDescriptor, Violation
from admitgate.app.services.quota_ledger import LedgerBackend, QuotaLedger, create_ledger_backend
from admitgate.app.services.threat_detector import ThreatDetector
from admitgate.app.services.tier_resolver import TierResolver

logger = get_logger(__name__)

LEDGER_UNAVAILABLE = "ledger_unavailable"


class LedgerFailureMode(str, Enum):
    """What to decide when the ledger backend is unreachable."""
    FAIL_CLOSED = "fail_closed"
    FAIL_OPEN = "fail_open"


class AdmissionPipeline:
    """Orchestrates policy filter, threat detector, tier resolver and ledger."""

    def __init__(
        self,
        detector: ThreatDetector,
        address_policy: AddressPolicy,
        tier_resolver: TierResolver,
        ledger: QuotaLedger,
        sink: Optional[EventSink] = None,
        failure_mode: LedgerFailureMode = LedgerFailureMode.FAIL_CLOSED,
        unavailable_retry_after: float = 1.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.detector = detector
        self.address_policy = address_policy
        self.tier_resolver = tier_resolver
        self.ledger = ledger
        self.sink = sink or LoggingEventSink()
        self.failure_mode = LedgerFailureMode(failure_mode)
        self.unavailable_retry_after = unavailable_retry_after
        self._clock = clock

    def validate(self, descriptor: RequestDescriptor) -> List[Violation]:
        """Run the address policy and the threat detector; return all violations."""
        violations: List[Violation] = []
        if self.address_policy.evaluate(descriptor.address) is PolicyVerdict.DENY:
            violations.append(Violation.address_denied())
        violations.extend(self.detector.scan(descriptor.text_fragments()))
        return violations

    async def _check_quota(self, descriptor: RequestDescriptor, now: float) -> Decision:
        tier = self.tier_resolver.resolve(descriptor.caller_id)
        requests = self.tier_resolver.limiting_keys(descriptor, tier)
        try:
            outcome = await self.ledger.check_and_record(requests, now)
        except LedgerUnavailable as e:
            return self._on_ledger_unavailable(descriptor, tier.name, e)

        if not outcome.admitted:
            return Decision.throttled(
                retry_after=outcome.retry_after,
                limiting_key=outcome.blocked_key,
                tier=tier.name,
            )
        return Decision.allow(tier=tier.name)

    def _on_ledger_unavailable(
        self,
        descriptor: RequestDescriptor,
        tier: str,
        error: LedgerUnavailable,
    ) -> Decision:
        logger.warning(
            f"Quota ledger unavailable, applying {self.failure_mode.value}: {error.message}",
            extra={"caller_id": descriptor.caller_id, "tier": tier},
        )
        if self.failure_mode is LedgerFailureMode.FAIL_OPEN:
            return Decision.allow(tier=tier, reason=LEDGER_UNAVAILABLE)
        return Decision.throttled(
            retry_after=self.unavailable_retry_after,
            tier=tier,
            reason=LEDGER_UNAVAILABLE,
        )

    def _emit(self, descriptor: RequestDescriptor, decision: Decision, now: float) -> None:
        try:
            self.sink.emit(DecisionEvent.from_decision(descriptor, decision, now))
        except Exception as e:
            # A broken sink must not change or lose the decision
            logger.error(f"Decision event sink failed: {e}", exc_info=True)

    async def decide(self, descriptor: RequestDescriptor) -> Decision:
        """Produce the admission decision for one request."""
        now = self._clock()

        violations = self.validate(descriptor)
        if violations:
            decision = Decision.rejected(violations)
        else:
            decision = await self._check_quota(descriptor, now)

        self._emit(descriptor, decision, now)
        return decision

    async def close(self) -> None:
        await self.ledger.close()


def build_pipeline(
    settings=None,
    backend: Optional[LedgerBackend] = None,
    sink: Optional[EventSink] = None,
    clock: Callable[[], float] = time.time,
) -> AdmissionPipeline:
    """Assemble a pipeline from configuration.

    Raises:
        ConfigurationError: If tiers, address ranges or pattern rules are invalid
    """
    settings = settings or default_settings
    pipeline = AdmissionPipeline(
        detector=ThreatDetector.from_settings(settings),
        address_policy=AddressPolicy.from_settings(settings),
        tier_resolver=TierResolver.from_settings(settings),
        ledger=QuotaLedger(backend if backend is not None else create_ledger_backend(settings)),
        sink=sink,
        failure_mode=LedgerFailureMode(settings.ledger_failure_mode),
        unavailable_retry_after=settings.ledger_unavailable_retry_after,
        clock=clock,
    )
    logger.info(
        "Admission pipeline ready",
        extra={
            "ledger_backend": pipeline.ledger.backend.name,
            "failure_mode": pipeline.failure_mode.value,
        },
    )
    return pipeline
