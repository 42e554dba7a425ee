"""Data models for the quota ledger."""
from __future__ import annotations

from bisect import bisect_right, insort
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class KeyScope(str, Enum):
    """What a limiting key counts: all of a caller's traffic or one endpoint."""
    GLOBAL = "global"
    ENDPOINT = "endpoint"


@dataclass(frozen=True)
class LimitingKey:
    """Composite identity indexing quota state.

    Attributes:
        scope: GLOBAL or ENDPOINT
        discriminator: Caller identity (``anon:<address>`` for anonymous callers)
        endpoint: Endpoint name, set for ENDPOINT keys only
    """
    scope: KeyScope
    discriminator: str
    endpoint: Optional[str] = None

    def __post_init__(self) -> None:
        if self.scope is KeyScope.ENDPOINT and not self.endpoint:
            raise ValueError("endpoint keys require an endpoint name")
        if self.scope is KeyScope.GLOBAL and self.endpoint is not None:
            raise ValueError("global keys cannot carry an endpoint name")

    def storage_key(self, prefix: str) -> str:
        """Render the backend key.

        The discriminator is wrapped in a Redis hash tag so every key of one
        caller lands in the same cluster slot and can be updated by one script.
        """
        key = f"{prefix}:{{{self.discriminator}}}:{self.scope.value}"
        if self.endpoint is not None:
            key += f":{self.endpoint}"
        return key

    def __str__(self) -> str:
        if self.endpoint is not None:
            return f"{self.scope.value}:{self.discriminator}:{self.endpoint}"
        return f"{self.scope.value}:{self.discriminator}"


@dataclass(frozen=True)
class QuotaRequest:
    """A limiting key paired with the budget and window that apply to it."""
    key: LimitingKey
    budget: int
    window: float

    def __post_init__(self) -> None:
        if self.budget < 1:
            raise ValueError("budget must be at least 1")
        if self.window <= 0:
            raise ValueError("window must be positive")


@dataclass(frozen=True)
class LedgerOutcome:
    """Result of one atomic check-and-record across a set of keys.

    Attributes:
        admitted: True when every key had room and all were recorded
        blocked_key: First key (in request order) without room
        retry_after: Seconds until that key's window frees one slot
    """
    admitted: bool
    blocked_key: Optional[LimitingKey] = None
    retry_after: float = 0.0

    @classmethod
    def admit(cls) -> "LedgerOutcome":
        return cls(admitted=True)

    @classmethod
    def block(cls, key: LimitingKey, retry_after: float) -> "LedgerOutcome":
        return cls(admitted=False, blocked_key=key, retry_after=max(0.0, retry_after))


@dataclass
class QuotaLedgerEntry:
    """Sorted admission timestamps for one storage key.

    A read at ``now`` counts timestamps in ``(now - window, now]``. Entries at
    or before ``now - window`` can be pruned without changing that count for
    any later ``now``.
    """
    timestamps: List[float] = field(default_factory=list)
    window: float = 0.0

    def _bounds(self, now: float, window: float) -> tuple[int, int]:
        return bisect_right(self.timestamps, now - window), bisect_right(self.timestamps, now)

    def count(self, now: float, window: float) -> int:
        lo, hi = self._bounds(now, window)
        return hi - lo

    def prune(self, now: float, window: float) -> int:
        """Drop entries that left the window; returns how many were dropped."""
        lo = bisect_right(self.timestamps, now - window)
        if lo:
            del self.timestamps[:lo]
        return lo

    def retry_after(self, now: float, budget: int, window: float) -> float:
        """Seconds until the count at ``now`` drops below ``budget``.

        With the count equal to the budget this is the time until the oldest
        in-window entry exits.
        """
        lo, hi = self._bounds(now, window)
        count = hi - lo
        if count < budget:
            return 0.0
        blocking = self.timestamps[lo + count - budget]
        return blocking + window - now

    def record(self, now: float, window: float) -> None:
        insort(self.timestamps, now)
        self.window = window

    def is_idle(self, now: float) -> bool:
        return not self.timestamps or self.timestamps[-1] <= now - self.window
