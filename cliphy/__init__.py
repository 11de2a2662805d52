"""
Cliphy — queue YouTube videos and get structured AI summaries.

Usage:
    from cliphy import build_services

    services = build_services(dispatcher="inline")
    result = services.queue.enqueue("user-1", "https://youtu.be/dQw4w9WgXcQ")
    print(result.item.status, result.item.summary_json)

    # One-off summary, nothing stored
    summary = services.summarize_video("dQw4w9WgXcQ", "Some title")
"""

from .errors import CliphyError
from .schemas import QueueItem, SummaryJson, UsageInfo
from .service import Services, build_services
from .video_id import extract_video_id

__all__ = [
    "CliphyError",
    "QueueItem",
    "Services",
    "SummaryJson",
    "UsageInfo",
    "build_services",
    "extract_video_id",
]
