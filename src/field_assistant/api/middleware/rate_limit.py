"""
Per-tenant daily AI query quota.

Each tenant gets a daily allowance by subscription tier, counted per UTC day:

  trial 10, starter 25, growth 50, professional 200, enterprise unlimited

Counters live in a QuotaStore, never in process memory, so every replica
sees the same count. increment_and_check() is a single atomic step: it only
increments while the counter is below the limit. Unknown tiers fall back to
trial. There is no queuing; an exhausted quota is a hard 429 until reset.
"""

import logging
import threading
from datetime import datetime, time, timedelta, timezone
from pathlib import Path
from typing import Protocol, runtime_checkable

from ...audit.schema import get_connection, initialize_schema
from ...config import DEFAULT_DB_PATH
from ...errors import QuotaState, RateLimitExceeded

logger = logging.getLogger(__name__)

TIER_DAILY_LIMITS: dict[str, int | None] = {
    "trial": 10,
    "starter": 25,
    "growth": 50,
    "professional": 200,
    "enterprise": None,
}
DEFAULT_TIER = "trial"


def daily_limit(tier: str) -> int | None:
    """Daily query limit for a tier; None means unlimited."""
    if tier not in TIER_DAILY_LIMITS:
        logger.warning(f"[Quota] Unknown tier {tier!r}, applying {DEFAULT_TIER} limits")
        tier = DEFAULT_TIER
    return TIER_DAILY_LIMITS[tier]


def utc_day(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.date().isoformat()


def next_reset(now: datetime | None = None) -> str:
    """ISO timestamp of the next UTC midnight."""
    now = now or datetime.now(timezone.utc)
    tomorrow = now.date() + timedelta(days=1)
    return datetime.combine(tomorrow, time.min, tzinfo=timezone.utc).isoformat()


@runtime_checkable
class QuotaStore(Protocol):
    """Atomic per-tenant, per-day counters."""

    def increment_and_check(self, tenant_id: str, day: str, limit: int) -> tuple[bool, int]:
        """Increment if below limit. Returns (allowed, used after this call)."""
        ...


class InMemoryQuotaStore:
    """Counters in a dict guarded by a lock (single process only: tests, CLI)."""

    def __init__(self):
        self._counts: dict[tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def increment_and_check(self, tenant_id: str, day: str, limit: int) -> tuple[bool, int]:
        with self._lock:
            used = self._counts.get((tenant_id, day), 0)
            if used >= limit:
                return False, used
            self._counts[(tenant_id, day)] = used + 1
            return True, used + 1


class SQLiteQuotaStore:
    """Counters in the quota_counters table, incremented with a guarded UPSERT."""

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self._db_path = db_path
        initialize_schema(db_path)

    def increment_and_check(self, tenant_id: str, day: str, limit: int) -> tuple[bool, int]:
        conn = get_connection(self._db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.execute(
                """INSERT INTO quota_counters (tenant_id, day, used)
                   VALUES (?, ?, 1)
                   ON CONFLICT(tenant_id, day)
                   DO UPDATE SET used = used + 1 WHERE used < ?""",
                (tenant_id, day, limit),
            )
            allowed = cursor.rowcount > 0
            row = conn.execute(
                "SELECT used FROM quota_counters WHERE tenant_id = ? AND day = ?",
                (tenant_id, day),
            ).fetchone()
            conn.commit()
            return allowed, row["used"] if row else 0
        finally:
            conn.close()


def enforce_quota(store: QuotaStore, tenant_id: str, tier: str) -> QuotaState:
    """
    Count one AI query against the tenant's daily quota.

    Returns the quota state for response headers.

    Raises:
        RateLimitExceeded: the daily limit is already reached.
    """
    limit = daily_limit(tier)
    resets_at = next_reset()
    if limit is None:
        return QuotaState(tier=tier, limit=None, used=0, resets_at=resets_at)

    allowed, used = store.increment_and_check(tenant_id, utc_day(), limit)
    state = QuotaState(tier=tier, limit=limit, used=used, resets_at=resets_at)
    if not allowed:
        logger.warning(f"[Quota] Limit reached for tenant {tenant_id}: {used}/{limit} ({tier})")
        raise RateLimitExceeded(state)
    return state


def quota_headers(state: QuotaState) -> dict[str, str]:
    """X-RateLimit-* headers; empty for unlimited tiers."""
    if state.unlimited:
        return {}
    return {
        "X-RateLimit-Limit": str(state.limit),
        "X-RateLimit-Used": str(state.used),
        "X-RateLimit-Tier": state.tier,
    }
