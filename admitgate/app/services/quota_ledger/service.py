"""Quota ledger facade and backend selection."""

import time
from typing import Any, Optional, Sequence

from admitgate.app.core.config import settings as default_settings
from admitgate.app.core.logging import get_logger
from admitgate.app.services.quota_ledger.backends import (
    InMemoryLedgerBackend,
    LedgerBackend,
    RedisLedgerBackend,
)
from admitgate.app.services.quota_ledger.models import (
    LedgerOutcome,
    LimitingKey,
    QuotaRequest,
)

logger = get_logger(__name__)


def create_ledger_backend(
    settings=None,
    use_redis: Optional[bool] = None,
    redis_client: Optional[Any] = None,
) -> LedgerBackend:
    """Select the ledger backend.

    Args:
        settings: Settings instance (defaults to the global settings)
        use_redis: Force Redis usage (None = auto-detect from settings)
        redis_client: Optional pre-built ``redis.asyncio`` client

    Returns:
        RedisLedgerBackend when Redis is enabled, otherwise InMemoryLedgerBackend
    """
    settings = settings or default_settings
    should_use_redis = use_redis if use_redis is not None else settings.redis_enabled
    if should_use_redis:
        logger.info("Using Redis quota ledger backend")
        return RedisLedgerBackend(
            redis_client=redis_client,
            redis_url=settings.redis_url,
            key_prefix=settings.ledger_key_prefix,
        )
    logger.info("Using in-memory quota ledger backend")
    return InMemoryLedgerBackend(
        key_prefix=settings.ledger_key_prefix,
        max_keys=settings.ledger_max_keys,
    )


class QuotaLedger:
    """Sliding-window-log quota accounting over a pluggable backend.

    Failures of the backend surface as LedgerUnavailable; the ledger never
    turns them into an admit or a refusal.
    """

    def __init__(self, backend: Optional[LedgerBackend] = None) -> None:
        self._backend = backend if backend is not None else create_ledger_backend()

    @property
    def backend(self) -> LedgerBackend:
        return self._backend

    async def try_admit(
        self,
        key: LimitingKey,
        budget: int,
        window: float,
        now: Optional[float] = None,
    ) -> bool:
        """Admit one request against a single key.

        Counts entries in ``(now - window, now]``; below ``budget`` the
        timestamp is appended and True returned, otherwise state is unchanged.
        """
        outcome = await self.check_and_record(
            [QuotaRequest(key=key, budget=budget, window=window)],
            now,
        )
        return outcome.admitted

    async def check_and_record(
        self,
        requests: Sequence[QuotaRequest],
        now: Optional[float] = None,
    ) -> LedgerOutcome:
        """Check all keys and record against all of them only if all pass."""
        if not requests:
            return LedgerOutcome.admit()
        now = time.time() if now is None else now
        return await self._backend.check_and_record(requests, now)

    async def cleanup(self, now: Optional[float] = None) -> int:
        return await self._backend.cleanup(now)

    async def close(self) -> None:
        await self._backend.close()
