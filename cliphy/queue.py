"""Queue state machine — enqueue, batch enqueue, retry, delete and reads.

States: pending → processing → completed | failed. Retry (failed or pending
→ pending) is the only way back. Validation, duplicate and rate-limit
rejections happen before any write, so a rejected request leaves no trace.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Optional, Protocol

from .dispatch import Dispatcher
from .errors import (
    DuplicateError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    ProRequiredError,
    RateLimitedError,
)
from .ledger import UsageLedger, limit_for_plan
from .pipeline import SUMMARIZE_EVENT, summarize_event
from .schemas import ALL_STATUSES, PlanTier, QueueAddRequest, QueueItem, Status, UsageInfo
from .store import QueueStore
from .video_id import canonical_url, extract_video_id

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 10
FREE_HISTORY_DAYS = 7
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

MAX_TITLE_LENGTH = 500
MAX_CHANNEL_LENGTH = 200
MAX_SEARCH_LENGTH = 200

_SEARCH_STRIP = str.maketrans("", "", ",.()\"'\\")


def sanitize_search_query(q: str) -> str:
    """Drop filter-syntax characters and cap the length."""
    return q.translate(_SEARCH_STRIP).strip()[:MAX_SEARCH_LENGTH]


def _clip(value: str | None, limit: int) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value[:limit] or None


class PlanLookup(Protocol):
    def plan_for(self, user_id: str) -> PlanTier: ...


@dataclass
class EnqueueResult:
    item: QueueItem
    position: int


@dataclass
class BatchResult:
    items: list[QueueItem] = field(default_factory=list)
    rate_limited: bool = False
    skipped: list[tuple[str, str]] = field(default_factory=list)  # (video_id, reason)


class QueueService:
    def __init__(
        self,
        store: QueueStore,
        ledger: UsageLedger,
        dispatcher: Dispatcher,
        plans: Optional[PlanLookup] = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.plans: PlanLookup = plans or store

    def _dispatch(self, item: QueueItem) -> None:
        self.dispatcher.send(
            SUMMARIZE_EVENT, summarize_event(item.id, item.video_id, item.video_title)
        )

    def _require_item(self, user_id: str, item_id: str) -> QueueItem:
        item = self.store.get_item(item_id, user_id)
        if item is None:
            raise NotFoundError("Queue item not found")
        return item

    # ── Enqueue ───────────────────────────────────────────────────

    def enqueue(
        self,
        user_id: str,
        video_url: str,
        video_title: str | None = None,
        video_channel: str | None = None,
        video_duration_seconds: int | None = None,
    ) -> EnqueueResult:
        video_id = extract_video_id(video_url)
        if not video_id:
            raise InvalidInputError("Invalid YouTube URL")

        if self.store.find_active(user_id, video_id):
            raise DuplicateError("Video already in queue", videoId=video_id)

        plan = self.plans.plan_for(user_id)
        limit = limit_for_plan(plan)
        if not self.ledger.check_and_increment(user_id, limit):
            raise RateLimitedError("Daily summary limit reached", limit=limit, plan=plan)

        try:
            item = self.store.insert_item(
                user_id,
                video_id,
                canonical_url(video_id),
                _clip(video_title, MAX_TITLE_LENGTH),
                _clip(video_channel, MAX_CHANNEL_LENGTH),
                video_duration_seconds,
            )
        except DuplicateError:
            # Lost a race with a concurrent enqueue of the same video
            logger.warning("Duplicate insert for %s/%s, refunding slot", user_id, video_id)
            self.ledger.release(user_id, 1)
            raise

        position = self.store.queue_position(item)
        self._dispatch(item)
        return EnqueueResult(self.store.get_item(item.id) or item, position)

    def enqueue_batch(self, user_id: str, videos: list[QueueAddRequest]) -> BatchResult:
        """Pro-only. Inserts as many new videos as the daily capacity allows."""
        if not videos:
            raise InvalidInputError("videos must contain at least one video")
        if len(videos) > MAX_BATCH_SIZE:
            raise InvalidInputError(f"Maximum {MAX_BATCH_SIZE} videos per batch")

        parsed = [(extract_video_id(v.video_url), v) for v in videos]
        invalid = [v.video_url for vid, v in parsed if not vid]
        if invalid:
            raise InvalidInputError("Invalid YouTube URL in batch", invalid=invalid)

        plan = self.plans.plan_for(user_id)
        if plan != "pro":
            raise ProRequiredError("This feature requires a Pro subscription", plan=plan)

        result = BatchResult()
        seen: set[str] = set()
        unique: list[tuple[str, QueueAddRequest]] = []
        for video_id, video in parsed:
            if video_id in seen:
                result.skipped.append((video_id, "duplicate"))
                continue
            seen.add(video_id)
            unique.append((video_id, video))

        active = self.store.active_video_ids(user_id, [vid for vid, _ in unique])
        candidates = []
        for video_id, video in unique:
            if video_id in active:
                result.skipped.append((video_id, "duplicate"))
            else:
                candidates.append((video_id, video))

        granted = self.ledger.reserve(user_id, limit_for_plan(plan), len(candidates))
        if granted < len(candidates):
            result.rate_limited = True
            for video_id, _ in candidates[granted:]:
                result.skipped.append((video_id, "rate_limited"))

        unused = 0
        for video_id, video in candidates[:granted]:
            try:
                item = self.store.insert_item(
                    user_id,
                    video_id,
                    canonical_url(video_id),
                    _clip(video.video_title, MAX_TITLE_LENGTH),
                    _clip(video.video_channel, MAX_CHANNEL_LENGTH),
                    video.video_duration_seconds,
                )
            except DuplicateError:
                unused += 1
                result.skipped.append((video_id, "duplicate"))
                continue
            result.items.append(item)

        if unused:
            self.ledger.release(user_id, unused)

        logger.info(
            "Batch for %s: %d queued, %d skipped (rate_limited=%s)",
            user_id, len(result.items), len(result.skipped), result.rate_limited,
        )
        for item in result.items:
            self._dispatch(item)
        return result

    # ── Transitions ───────────────────────────────────────────────

    def retry(self, user_id: str, item_id: str) -> QueueItem:
        """Reset a failed (or stuck pending) item and dispatch it again."""
        item = self._require_item(user_id, item_id)
        if item.status not in (Status.PENDING, Status.FAILED):
            raise InvalidStateError(f"Cannot retry a {item.status} item")

        if not self.store.reset_for_retry(item_id):
            raise InvalidStateError("Item changed state, try again")

        self.store.clear_markers(item_id)
        logger.info("Retrying item %s", item_id)
        self._dispatch(item)
        return self.store.get_item(item_id) or item

    def delete(self, user_id: str, item_id: str) -> None:
        item = self._require_item(user_id, item_id)
        if item.status not in (Status.PENDING, Status.FAILED):
            raise InvalidStateError(f"Cannot delete a {item.status} item")

        # The worker may have claimed the item since we read it
        if not self.store.soft_delete(item_id, (Status.PENDING, Status.FAILED)):
            raise InvalidStateError("Item is being processed")
        logger.info("Deleted queue item %s", item_id)

    def redispatch_pending(self) -> int:
        """Dispatch every pending item again, e.g. after a restart."""
        pending = self.store.list_pending()
        for item in pending:
            self._dispatch(item)
        if pending:
            logger.info("Re-dispatched %d pending item(s)", len(pending))
        return len(pending)

    # ── Reads ─────────────────────────────────────────────────────

    def get(self, user_id: str, item_id: str) -> QueueItem:
        return self._require_item(user_id, item_id)

    def list_items(self, user_id: str, status: str | None = None) -> list[QueueItem]:
        if status is not None and status not in ALL_STATUSES:
            raise InvalidInputError(f"Unknown status {status!r}")
        return self.store.list_items(user_id, status)

    def usage(self, user_id: str) -> UsageInfo:
        plan = self.plans.plan_for(user_id)
        used, reset_date = self.ledger.usage(user_id)
        reset_at = datetime.combine(reset_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
        return UsageInfo(
            used=used,
            limit=limit_for_plan(plan),
            plan=plan,
            reset_at=reset_at.isoformat(),
            total_time_saved_seconds=self.store.total_time_saved(user_id),
        )

    # ── Summaries ─────────────────────────────────────────────────

    def _history_since(self, user_id: str) -> str | None:
        """Free plans only see the last week of summaries."""
        if self.plans.plan_for(user_id) == "pro":
            return None
        cutoff = self.store.clock() - timedelta(days=FREE_HISTORY_DAYS)
        return cutoff.isoformat(timespec="microseconds")

    def list_summaries(
        self,
        user_id: str,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> tuple[list[QueueItem], int, int]:
        """Returns (summaries, total, effective limit)."""
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)
        items, total = self.store.list_completed(
            user_id, limit, offset, since=self._history_since(user_id)
        )
        return items, total, limit

    def search_summaries(self, user_id: str, q: str | None) -> list[QueueItem]:
        query = sanitize_search_query(q or "")
        if not query:
            raise InvalidInputError("Query parameter 'q' is required")
        return self.store.search_completed(
            user_id, query, MAX_PAGE_SIZE, since=self._history_since(user_id)
        )

    def get_summary(self, user_id: str, item_id: str) -> QueueItem:
        item = self.store.get_item(item_id, user_id)
        if item is None or item.status != Status.COMPLETED:
            raise NotFoundError("Summary not found")
        return item

    def delete_summary(self, user_id: str, item_id: str) -> None:
        self.get_summary(user_id, item_id)
        if not self.store.soft_delete(item_id, (Status.COMPLETED,)):
            raise NotFoundError("Summary not found")
        logger.info("Deleted summary %s", item_id)
