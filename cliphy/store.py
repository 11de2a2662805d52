"""Cliphy store — SQLite tables behind the queue, ledger and step runner.

Tables:
  queue_items    one row per queued video; partial unique index keeps at most
                 one live (non-failed, non-deleted) row per (user, video)
  users          plan tier per user; unknown users are "free"
  usage_ledger   daily summary counter per user (see ledger.py)
  step_markers   completed workflow steps and their JSON output

Every status transition is a conditional UPDATE, so a stale writer simply
matches zero rows. ``updated_at`` is written as MAX(old, now) and never
moves backwards.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from .errors import DuplicateError
from .schemas import PlanTier, QueueItem, Status, SummaryJson

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS queue_items (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    video_id TEXT NOT NULL,
    video_url TEXT NOT NULL,
    video_title TEXT,
    video_channel TEXT,
    video_duration_seconds INTEGER,
    status TEXT NOT NULL DEFAULT 'pending',
    error_message TEXT,
    transcript TEXT,
    summary_json TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_queue_items_live
    ON queue_items(user_id, video_id)
    WHERE status != 'failed' AND deleted_at IS NULL;

CREATE INDEX IF NOT EXISTS idx_queue_items_user_created
    ON queue_items(user_id, created_at);

CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    plan TEXT NOT NULL DEFAULT 'free'
);

CREATE TABLE IF NOT EXISTS usage_ledger (
    user_id TEXT PRIMARY KEY,
    daily_count INTEGER NOT NULL DEFAULT 0,
    reset_date TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS step_markers (
    item_key TEXT NOT NULL,
    step TEXT NOT NULL,
    output TEXT,
    created_at TEXT NOT NULL,
    PRIMARY KEY (item_key, step)
);
"""

_ITEM_COLUMNS = (
    "id, user_id, video_id, video_url, video_title, video_channel, "
    "video_duration_seconds, status, error_message, transcript, summary_json, "
    "created_at, updated_at, deleted_at"
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueueStore:
    def __init__(
        self,
        db_path: str | Path,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = str(path)
        self.clock = clock
        self._ensure_schema()

    @contextmanager
    def connect(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """One connection per operation; commits on success, rolls back on error."""
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                if immediate:
                    conn.execute("BEGIN IMMEDIATE")
                yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self.connect() as conn:
            conn.executescript(_SCHEMA)

    def now(self) -> str:
        return self.clock().isoformat(timespec="microseconds")

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> QueueItem:
        data = dict(row)
        raw_summary = data.pop("summary_json")
        summary = SummaryJson.model_validate_json(raw_summary) if raw_summary else None
        return QueueItem(**data, summary_json=summary)

    # ── Queue items ───────────────────────────────────────────────

    def insert_item(
        self,
        user_id: str,
        video_id: str,
        video_url: str,
        video_title: str | None = None,
        video_channel: str | None = None,
        video_duration_seconds: int | None = None,
    ) -> QueueItem:
        """Insert a pending item. Raises DuplicateError if a live one exists."""
        now = self.now()
        item = QueueItem(
            id=uuid.uuid4().hex,
            user_id=user_id,
            video_id=video_id,
            video_url=video_url,
            video_title=video_title,
            video_channel=video_channel,
            video_duration_seconds=video_duration_seconds,
            status=Status.PENDING,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.connect() as conn:
                conn.execute(
                    """INSERT INTO queue_items
                       (id, user_id, video_id, video_url, video_title, video_channel,
                        video_duration_seconds, status, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (item.id, user_id, video_id, video_url, video_title, video_channel,
                     video_duration_seconds, item.status, now, now),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateError("Video already in queue", videoId=video_id) from exc

        logger.info("Queued %s for user %s as %s", video_id, user_id, item.id)
        return item

    def get_item(self, item_id: str, user_id: str | None = None) -> Optional[QueueItem]:
        """Fetch a live item, optionally scoped to its owner."""
        sql = f"SELECT {_ITEM_COLUMNS} FROM queue_items WHERE id = ? AND deleted_at IS NULL"
        params: list[Any] = [item_id]
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        with self.connect() as conn:
            row = conn.execute(sql, params).fetchone()
        return self._row_to_item(row) if row else None

    def find_active(self, user_id: str, video_id: str) -> Optional[QueueItem]:
        with self.connect() as conn:
            row = conn.execute(
                f"""SELECT {_ITEM_COLUMNS} FROM queue_items
                    WHERE user_id = ? AND video_id = ?
                      AND status != 'failed' AND deleted_at IS NULL""",
                (user_id, video_id),
            ).fetchone()
        return self._row_to_item(row) if row else None

    def active_video_ids(self, user_id: str, video_ids: list[str]) -> set[str]:
        if not video_ids:
            return set()
        marks = ", ".join("?" for _ in video_ids)
        with self.connect() as conn:
            rows = conn.execute(
                f"""SELECT video_id FROM queue_items
                    WHERE user_id = ? AND video_id IN ({marks})
                      AND status != 'failed' AND deleted_at IS NULL""",
                (user_id, *video_ids),
            ).fetchall()
        return {r["video_id"] for r in rows}

    def list_items(self, user_id: str, status: str | None = None) -> list[QueueItem]:
        sql = f"SELECT {_ITEM_COLUMNS} FROM queue_items WHERE user_id = ? AND deleted_at IS NULL"
        params: list[Any] = [user_id]
        if status:
            sql += " AND status = ?"
            params.append(status)
        sql += " ORDER BY created_at DESC"
        with self.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_item(r) for r in rows]

    def list_pending(self) -> list[QueueItem]:
        """All pending items across users, oldest first."""
        with self.connect() as conn:
            rows = conn.execute(
                f"""SELECT {_ITEM_COLUMNS} FROM queue_items
                    WHERE status = 'pending' AND deleted_at IS NULL
                    ORDER BY created_at ASC""",
            ).fetchall()
        return [self._row_to_item(r) for r in rows]

    def queue_position(self, item: QueueItem) -> int:
        """1-based position among the owner's pending items."""
        with self.connect() as conn:
            row = conn.execute(
                """SELECT COUNT(*) FROM queue_items
                   WHERE user_id = ? AND status = 'pending' AND deleted_at IS NULL
                     AND created_at <= ?""",
                (item.user_id, item.created_at),
            ).fetchone()
        return max(int(row[0]), 1)

    def total_time_saved(self, user_id: str) -> int:
        with self.connect() as conn:
            row = conn.execute(
                """SELECT COALESCE(SUM(video_duration_seconds), 0) FROM queue_items
                   WHERE user_id = ? AND status = 'completed' AND deleted_at IS NULL""",
                (user_id,),
            ).fetchone()
        return int(row[0])

    # ── Conditional transitions ───────────────────────────────────

    def _transition(self, sql: str, params: tuple[Any, ...]) -> bool:
        with self.connect() as conn:
            cur = conn.execute(sql, params)
            return cur.rowcount > 0

    def mark_processing(self, item_id: str) -> bool:
        """Claim an item. Only pending or processing, non-deleted rows qualify."""
        claimed = self._transition(
            """UPDATE queue_items SET status = 'processing', updated_at = MAX(updated_at, ?)
               WHERE id = ? AND status IN ('pending', 'processing') AND deleted_at IS NULL""",
            (self.now(), item_id),
        )
        if claimed:
            logger.info("Item %s processing", item_id)
        return claimed

    def save_transcript(self, item_id: str, transcript: str) -> bool:
        return self._transition(
            """UPDATE queue_items SET transcript = ?, updated_at = MAX(updated_at, ?)
               WHERE id = ? AND status = 'processing'""",
            (transcript, self.now(), item_id),
        )

    def get_transcript(self, item_id: str) -> Optional[str]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT transcript FROM queue_items WHERE id = ?", (item_id,)
            ).fetchone()
        return row["transcript"] if row else None

    def mark_completed(self, item_id: str, summary: SummaryJson) -> bool:
        done = self._transition(
            """UPDATE queue_items
               SET status = 'completed', summary_json = ?, transcript = NULL,
                   error_message = NULL, updated_at = MAX(updated_at, ?)
               WHERE id = ? AND status IN ('processing', 'completed')""",
            (summary.model_dump_json(by_alias=True), self.now(), item_id),
        )
        if done:
            logger.info("Item %s completed", item_id)
        return done

    def mark_failed(self, item_id: str, message: str) -> bool:
        failed = self._transition(
            """UPDATE queue_items
               SET status = 'failed', error_message = ?, transcript = NULL,
                   summary_json = NULL, updated_at = MAX(updated_at, ?)
               WHERE id = ? AND status IN ('pending', 'processing', 'failed')""",
            (message, self.now(), item_id),
        )
        if failed:
            logger.info("Item %s failed: %s", item_id, message)
        return failed

    def reset_for_retry(self, item_id: str) -> bool:
        """failed/pending → pending with the error cleared."""
        try:
            return self._transition(
                """UPDATE queue_items
                   SET status = 'pending', error_message = NULL,
                       updated_at = MAX(updated_at, ?)
                   WHERE id = ? AND status IN ('pending', 'failed') AND deleted_at IS NULL""",
                (self.now(), item_id),
            )
        except sqlite3.IntegrityError as exc:
            # Another live item for the same video was queued since this one failed
            raise DuplicateError("Video already in queue") from exc

    def soft_delete(self, item_id: str, allowed: tuple[str, ...]) -> bool:
        marks = ", ".join("?" for _ in allowed)
        now = self.now()
        return self._transition(
            f"""UPDATE queue_items SET deleted_at = ?, updated_at = MAX(updated_at, ?)
                WHERE id = ? AND deleted_at IS NULL AND status IN ({marks})""",
            (now, now, item_id, *allowed),
        )

    # ── Summaries (completed items) ───────────────────────────────

    def list_completed(
        self,
        user_id: str,
        limit: int,
        offset: int = 0,
        since: str | None = None,
    ) -> tuple[list[QueueItem], int]:
        where = "user_id = ? AND status = 'completed' AND deleted_at IS NULL"
        params: list[Any] = [user_id]
        if since:
            where += " AND created_at >= ?"
            params.append(since)
        with self.connect() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM queue_items WHERE {where}", params
            ).fetchone()[0]
            rows = conn.execute(
                f"""SELECT {_ITEM_COLUMNS} FROM queue_items WHERE {where}
                    ORDER BY created_at DESC LIMIT ? OFFSET ?""",
                (*params, limit, offset),
            ).fetchall()
        return [self._row_to_item(r) for r in rows], int(total)

    def search_completed(
        self,
        user_id: str,
        query: str,
        limit: int,
        since: str | None = None,
    ) -> list[QueueItem]:
        """Substring match over title, channel and summary text."""
        escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        like = f"%{escaped}%"
        sql = (
            f"SELECT {_ITEM_COLUMNS} FROM queue_items "
            "WHERE user_id = ? AND status = 'completed' AND deleted_at IS NULL "
            "AND (video_title LIKE ? ESCAPE '\\' OR video_channel LIKE ? ESCAPE '\\' "
            "OR summary_json LIKE ? ESCAPE '\\')"
        )
        params: list[Any] = [user_id, like, like, like]
        if since:
            sql += " AND created_at >= ?"
            params.append(since)
        sql += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        with self.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_item(r) for r in rows]

    # ── Plans ─────────────────────────────────────────────────────

    def plan_for(self, user_id: str) -> PlanTier:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT plan FROM users WHERE user_id = ?", (user_id,)
            ).fetchone()
        return "pro" if row and row["plan"] == "pro" else "free"

    def set_plan(self, user_id: str, plan: PlanTier) -> None:
        with self.connect() as conn:
            conn.execute(
                """INSERT INTO users (user_id, plan) VALUES (?, ?)
                   ON CONFLICT(user_id) DO UPDATE SET plan = excluded.plan""",
                (user_id, plan),
            )
        logger.info("User %s plan set to %s", user_id, plan)

    # ── Step markers ──────────────────────────────────────────────

    def load_markers(self, item_key: str) -> dict[str, Any]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT step, output FROM step_markers WHERE item_key = ?", (item_key,)
            ).fetchall()
        return {r["step"]: json.loads(r["output"]) if r["output"] else None for r in rows}

    def save_marker(self, item_key: str, step: str, output: Any) -> None:
        with self.connect() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO step_markers (item_key, step, output, created_at)
                   VALUES (?, ?, ?, ?)""",
                (item_key, step, json.dumps(output), self.now()),
            )

    def clear_markers(self, item_key: str) -> None:
        with self.connect() as conn:
            conn.execute("DELETE FROM step_markers WHERE item_key = ?", (item_key,))
