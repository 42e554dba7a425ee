"""Quota ledger package.

Sliding-window-log quota accounting with an in-memory backend for single
instances and a Redis backend (one Lua script per admission) for clusters.
"""

from admitgate.app.services.quota_ledger.backends import (
    InMemoryLedgerBackend,
    LedgerBackend,
    RedisLedgerBackend,
)
from admitgate.app.services.quota_ledger.models import (
    KeyScope,
    LedgerOutcome,
    LimitingKey,
    QuotaLedgerEntry,
    QuotaRequest,
)
from admitgate.app.services.quota_ledger.redis_lua import CHECK_AND_RECORD_SCRIPT
from admitgate.app.services.quota_ledger.service import QuotaLedger, create_ledger_backend

__all__ = [
    "KeyScope",
    "LimitingKey",
    "QuotaRequest",
    "LedgerOutcome",
    "QuotaLedgerEntry",
    "CHECK_AND_RECORD_SCRIPT",
    "LedgerBackend",
    "InMemoryLedgerBackend",
    "RedisLedgerBackend",
    "QuotaLedger",
    "create_ledger_backend",
]
