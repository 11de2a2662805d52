"""Per-user daily usage ledger with lazy reset.

A row holds ``daily_count`` and ``reset_date``. When today is later than
``reset_date`` the effective count is zero; nothing ever sweeps the table, the
next write on a later date resets the counter and advances the date in the
same statement.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Callable

from .schemas import PlanTier
from .store import QueueStore

logger = logging.getLogger(__name__)

PLAN_LIMITS: dict[str, int] = {"free": 5, "pro": 100}


def limit_for_plan(plan: PlanTier | str) -> int:
    return PLAN_LIMITS.get(plan, PLAN_LIMITS["free"])


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class UsageLedger:
    def __init__(self, store: QueueStore, today: Callable[[], date] = _utc_today) -> None:
        self.store = store
        self.today = today

    def check_and_increment(self, user_id: str, limit: int) -> bool:
        """Consume one slot if the user is under ``limit``. Atomic."""
        if limit <= 0:
            return False
        today = self.today().isoformat()
        with self.store.connect() as conn:
            cur = conn.execute(
                """INSERT INTO usage_ledger (user_id, daily_count, reset_date)
                   VALUES (?, 1, ?)
                   ON CONFLICT(user_id) DO UPDATE SET
                       daily_count = CASE WHEN reset_date < excluded.reset_date
                                          THEN 1 ELSE daily_count + 1 END,
                       reset_date = MAX(reset_date, excluded.reset_date)
                   WHERE reset_date < excluded.reset_date OR daily_count < ?""",
                (user_id, today, limit),
            )
            granted = cur.rowcount > 0
        if not granted:
            logger.info("User %s hit daily limit %d", user_id, limit)
        return granted

    def reserve(self, user_id: str, limit: int, count: int) -> int:
        """Grant up to ``count`` slots without exceeding ``limit``. Returns the grant."""
        if count <= 0 or limit <= 0:
            return 0
        today = self.today().isoformat()
        with self.store.connect(immediate=True) as conn:
            row = conn.execute(
                "SELECT daily_count, reset_date FROM usage_ledger WHERE user_id = ?",
                (user_id,),
            ).fetchone()
            used = row["daily_count"] if row and row["reset_date"] >= today else 0
            granted = max(0, min(count, limit - used))
            if granted:
                conn.execute(
                    """INSERT INTO usage_ledger (user_id, daily_count, reset_date)
                       VALUES (?, ?, ?)
                       ON CONFLICT(user_id) DO UPDATE SET
                           daily_count = excluded.daily_count,
                           reset_date = excluded.reset_date""",
                    (user_id, used + granted, today),
                )
        logger.debug("Reserved %d/%d slots for %s", granted, count, user_id)
        return granted

    def release(self, user_id: str, count: int) -> None:
        """Return unused slots; the counter never goes below zero."""
        if count <= 0:
            return
        today = self.today().isoformat()
        with self.store.connect() as conn:
            conn.execute(
                """UPDATE usage_ledger SET daily_count = MAX(daily_count - ?, 0)
                   WHERE user_id = ? AND reset_date >= ?""",
                (count, user_id, today),
            )
        logger.info("Released %d slot(s) for %s", count, user_id)

    def usage(self, user_id: str) -> tuple[int, date]:
        """Effective (used, reset_date) for today."""
        today = self.today()
        with self.store.connect() as conn:
            row = conn.execute(
                "SELECT daily_count, reset_date FROM usage_ledger WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if not row or row["reset_date"] < today.isoformat():
            return 0, today
        return int(row["daily_count"]), date.fromisoformat(row["reset_date"])
