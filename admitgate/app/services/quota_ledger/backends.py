"""Quota ledger backends.

Both backends implement the sliding-window-log algorithm behind one atomic
``check_and_record`` operation: every request in a call is checked first and
the admission is recorded against all of them only if all have room.
"""

import math
import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections import OrderedDict
from contextlib import ExitStack
from typing import Any, Dict, List, Optional, Sequence

import redis

from admitgate.app.core.config import settings
from admitgate.app.core.logging import get_logger
from admitgate.app.exceptions import LedgerUnavailable
from admitgate.app.services.quota_ledger.models import (
    LedgerOutcome,
    QuotaLedgerEntry,
    QuotaRequest,
)
from admitgate.app.services.quota_ledger.redis_lua import CHECK_AND_RECORD_SCRIPT

logger = get_logger(__name__)

REDIS_EXCEPTIONS = (redis.RedisError, OSError)


class LedgerBackend(ABC):
    """Abstract base class for ledger backends."""

    name = "abstract"

    @abstractmethod
    async def check_and_record(
        self,
        requests: Sequence[QuotaRequest],
        now: float,
    ) -> LedgerOutcome:
        """Atomically check every request and record ``now`` against all of them.

        Args:
            requests: Keys with their budgets and windows, in check order
            now: Admission timestamp in seconds

        Returns:
            LedgerOutcome; when not admitted, nothing was recorded

        Raises:
            LedgerUnavailable: If the backing store cannot be reached
        """

    @abstractmethod
    async def cleanup(self, now: Optional[float] = None) -> int:
        """Drop state for keys with no entries left in their window."""

    async def close(self) -> None:
        """Release backend resources."""


class _KeyState:
    """Lock and timestamp log for one storage key."""

    __slots__ = ("lock", "entry")

    def __init__(self) -> None:
        # Never held across an await, so a thread lock is safe in coroutines
        self.lock = threading.Lock()
        self.entry = QuotaLedgerEntry()


class InMemoryLedgerBackend(LedgerBackend):
    """Single-instance ledger keeping timestamp logs in process memory.

    Each key has its own lock, so callers sharing a key are serialized while
    callers on different keys never wait on each other. Locks for a
    multi-key call are taken in sorted key order.

    Memory optimization:
    - Uses OrderedDict for LRU behavior
    - Limits tracked keys to prevent unbounded memory growth
    - Only idle keys are evicted, least recently used first
    """

    name = "memory"

    def __init__(
        self,
        key_prefix: Optional[str] = None,
        max_keys: Optional[int] = None,
    ) -> None:
        """Initialize the in-memory ledger.

        Args:
            key_prefix: Storage key prefix (defaults to settings)
            max_keys: Maximum number of keys to track (defaults to settings)
        """
        self._prefix = key_prefix or settings.ledger_key_prefix
        self._max_keys = max_keys or settings.ledger_max_keys
        self._states: "OrderedDict[str, _KeyState]" = OrderedDict()
        # Guards the registry only, never held while a key is being checked
        self._registry_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._states)

    def _enforce_key_limit(self, protect: Sequence[str], now: float) -> None:
        """Evict idle keys, least recently used first, once the bound is hit.

        Only keys with no entries left in their window are dropped; a live
        key still counts against its budget. When every key is live the
        bound is exceeded rather than lose admissions. Keys in ``protect``
        belong to the call in progress and are kept.
        """
        if len(self._states) < self._max_keys:
            return
        for key in [k for k, s in self._states.items() if s.entry.is_idle(now)]:
            if key not in protect and not self._states[key].lock.locked():
                del self._states[key]
        if len(self._states) >= self._max_keys:
            logger.warning(
                f"Ledger holds {len(self._states)} live keys, above max_keys={self._max_keys}"
            )

    def _states_for(self, storage_keys: Sequence[str], now: float) -> Dict[str, _KeyState]:
        with self._registry_lock:
            states = {}
            for key in storage_keys:
                state = self._states.get(key)
                if state is None:
                    self._enforce_key_limit(storage_keys, now)
                    state = _KeyState()
                    self._states[key] = state
                else:
                    self._states.move_to_end(key)
                states[key] = state
            return states

    def entry(self, request: QuotaRequest) -> Optional[QuotaLedgerEntry]:
        """Return the live entry for a key (for inspection and tests)."""
        state = self._states.get(request.key.storage_key(self._prefix))
        return state.entry if state else None

    async def check_and_record(
        self,
        requests: Sequence[QuotaRequest],
        now: float,
    ) -> LedgerOutcome:
        storage_keys = [r.key.storage_key(self._prefix) for r in requests]
        states = self._states_for(storage_keys, now)

        with ExitStack() as stack:
            for key in sorted(states):
                stack.enter_context(states[key].lock)

            for request, key in zip(requests, storage_keys):
                entry = states[key].entry
                entry.prune(now, request.window)
                if entry.count(now, request.window) >= request.budget:
                    return LedgerOutcome.block(
                        request.key,
                        entry.retry_after(now, request.budget, request.window),
                    )

            for request, key in zip(requests, storage_keys):
                states[key].entry.record(now, request.window)

        return LedgerOutcome.admit()

    async def cleanup(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        with self._registry_lock:
            expired = [
                key for key, state in self._states.items()
                if state.entry.is_idle(now) and not state.lock.locked()
            ]
            for key in expired:
                del self._states[key]
        if expired:
            logger.debug(f"Dropped {len(expired)} idle ledger keys")
        return len(expired)


class RedisLedgerBackend(LedgerBackend):
    """Redis-based ledger shared by every gateway instance.

    One sorted set per limiting key, scored by admission timestamp. The
    check and the append for all keys of a request run in a single Lua
    script, i.e. one atomic round trip.

    Redis key format:
    - {prefix}:{<caller>}:global
    - {prefix}:{<caller>}:endpoint:<endpoint>
    """

    name = "redis"

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        key_prefix: Optional[str] = None,
    ) -> None:
        """Initialize Redis ledger.

        Args:
            redis_client: Optional ``redis.asyncio`` client instance
            redis_url: Redis connection URL (defaults to settings)
            key_prefix: Storage key prefix (defaults to settings)
        """
        self._redis = redis_client
        self._redis_url = redis_url or settings.redis_url
        self._prefix = key_prefix or settings.ledger_key_prefix

    def _get_redis(self) -> Any:
        """Get or create Redis client."""
        if self._redis is None:
            import redis.asyncio as aioredis
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    def _script_args(
        self,
        requests: Sequence[QuotaRequest],
        now: float,
    ) -> tuple[List[str], List[Any]]:
        keys = [r.key.storage_key(self._prefix) for r in requests]
        args: List[Any] = [repr(now), f"{now!r}:{uuid.uuid4().hex}"]
        for request in requests:
            args.extend([
                request.budget,
                repr(now - request.window),
                math.ceil(request.window * 1000),
            ])
        return keys, args

    async def check_and_record(
        self,
        requests: Sequence[QuotaRequest],
        now: float,
    ) -> LedgerOutcome:
        keys, args = self._script_args(requests, now)
        try:
            redis_client = self._get_redis()
            result = await redis_client.eval(CHECK_AND_RECORD_SCRIPT, len(keys), *keys, *args)
        except REDIS_EXCEPTIONS as e:
            logger.error(f"Redis ledger call failed: {e}")
            raise LedgerUnavailable(backend=self.name, detail=str(e)) from e

        if int(result[0]) == 1:
            return LedgerOutcome.admit()

        request = requests[int(result[1]) - 1]
        score = result[2]
        if isinstance(score, bytes):
            score = score.decode()
        return LedgerOutcome.block(request.key, float(score) + request.window - now)

    async def cleanup(self, now: Optional[float] = None) -> int:
        """No-op for Redis (keys expire automatically)."""
        return 0

    async def close(self) -> None:
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except REDIS_EXCEPTIONS as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._redis = None
