"""Decision events and the sinks that receive them.

The pipeline hands one DecisionEvent per request to a sink; persistence,
dashboards and alerting live behind the sink.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from admitgate.app.core.logging import get_log_context, get_logger
from admitgate.app.services.models import Decision, DecisionOutcome, RequestDescriptor, Violation


@dataclass(frozen=True)
class DecisionEvent:
    """Structured record of one admission decision."""
    outcome: DecisionOutcome
    timestamp: float
    caller_id: Optional[str]
    address: str
    method: str
    path: str
    violations: Tuple[Violation, ...] = field(default_factory=tuple)
    reason: Optional[str] = None
    limiting_key: Optional[str] = None
    tier: Optional[str] = None
    retry_after: Optional[float] = None

    @classmethod
    def from_decision(
        cls,
        descriptor: RequestDescriptor,
        decision: Decision,
        timestamp: float,
    ) -> "DecisionEvent":
        return cls(
            outcome=decision.outcome,
            timestamp=timestamp,
            caller_id=descriptor.caller_id,
            address=descriptor.address,
            method=descriptor.method,
            path=descriptor.path,
            violations=decision.violations,
            reason=decision.reason,
            limiting_key=str(decision.limiting_key) if decision.limiting_key else None,
            tier=decision.tier,
            retry_after=decision.retry_after,
        )

    @property
    def categories(self) -> List[str]:
        seen: List[str] = []
        for violation in self.violations:
            if violation.category is not None and violation.category.value not in seen:
                seen.append(violation.category.value)
        return seen

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "outcome": self.outcome.value,
            "timestamp": datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
            "caller_id": self.caller_id,
            "address": self.address,
            "method": self.method,
            "path": self.path,
            "categories": self.categories,
            "violations": [v.to_dict() for v in self.violations],
            "reason": self.reason,
            "limiting_key": self.limiting_key,
            "tier": self.tier,
            "retry_after": self.retry_after,
        }


class EventSink(ABC):
    """Receiver of decision events."""

    @abstractmethod
    def emit(self, event: DecisionEvent) -> None:
        """Deliver one event. Must not block on slow I/O."""


class NullEventSink(EventSink):
    def emit(self, event: DecisionEvent) -> None:
        return None


class CollectingEventSink(EventSink):
    """Keeps every event in memory, newest last."""

    def __init__(self) -> None:
        self.events: List[DecisionEvent] = []

    def emit(self, event: DecisionEvent) -> None:
        self.events.append(event)

    def clear(self) -> None:
        self.events.clear()


class LoggingEventSink(EventSink):
    """Writes each decision as one structured log line.

    Rejections and throttles log at WARNING, admissions at DEBUG.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or get_logger("admitgate.decisions")

    def emit(self, event: DecisionEvent) -> None:
        level = logging.DEBUG if event.outcome is DecisionOutcome.ALLOW else logging.WARNING
        if not self._logger.isEnabledFor(level):
            return
        context = get_log_context(
            caller_id=event.caller_id,
            client_address=event.address,
            decision=event.outcome.value,
            method=event.method,
            path=event.path,
            limiting_key=event.limiting_key,
            tier=event.tier,
            retry_after=event.retry_after,
            categories=event.categories or None,
            reason=event.reason,
        )
        self._logger.log(level, f"Request {event.outcome.value}: {event.reason or 'ok'}", extra=context)
