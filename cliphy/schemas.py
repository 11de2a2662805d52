"""Cliphy schemas — queue items, summaries, usage and API request bodies."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PlanTier = Literal["free", "pro"]


class Status:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ALL_STATUSES = (Status.PENDING, Status.PROCESSING, Status.COMPLETED, Status.FAILED)


class _CamelModel(BaseModel):
    """Snake-case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SummaryJson(_CamelModel):
    summary: str
    key_points: list[str] = Field(default_factory=list)
    action_items: list[str] = Field(default_factory=list)
    timestamps: list[str] = Field(default_factory=list)


class QueueItem(_CamelModel):
    id: str
    user_id: str
    video_id: str
    video_url: str = ""
    video_title: Optional[str] = None
    video_channel: Optional[str] = None
    video_duration_seconds: Optional[int] = None
    status: str = Status.PENDING
    error_message: Optional[str] = None
    transcript: Optional[str] = None
    summary_json: Optional[SummaryJson] = None
    created_at: str = ""
    updated_at: str = ""
    deleted_at: Optional[str] = None

    def to_api(self) -> dict[str, Any]:
        """Wire representation; the transcript never leaves the server."""
        return self.model_dump(by_alias=True, exclude={"transcript", "deleted_at"})


class UsageInfo(_CamelModel):
    used: int
    limit: int
    plan: PlanTier
    reset_at: str
    total_time_saved_seconds: int = 0


# ── API request bodies ───────────────────────────────────────────

class QueueAddRequest(_CamelModel):
    video_url: str
    video_title: Optional[str] = None
    video_channel: Optional[str] = None
    video_duration_seconds: Optional[int] = Field(default=None, ge=0)


class BatchQueueRequest(_CamelModel):
    videos: list[QueueAddRequest]


class SummarizeRequest(_CamelModel):
    video_id: str
    video_title: Optional[str] = None
