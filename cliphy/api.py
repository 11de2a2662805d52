"""Cliphy HTTP API — FastAPI routes over the queue service.

Usage:
    uvicorn cliphy.api:app --port 8080

The caller is identified by the ``X-User-Id`` header. Errors come back as
``{"error": message, "code": CODE, ...}`` with the matching status.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

from .errors import AuthRequiredError, CliphyError
from .renderer import render_summary
from .schemas import BatchQueueRequest, QueueAddRequest, SummarizeRequest
from .service import Services, build_services

logger = logging.getLogger(__name__)

app = FastAPI(title="Cliphy", version="0.1.0")


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services()


def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise AuthRequiredError("Unauthorized")
    return x_user_id.strip()


@app.exception_handler(CliphyError)
def handle_cliphy_error(request: Request, exc: CliphyError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        {
            "error": "Invalid request",
            "code": "VALIDATION_ERROR",
            "details": jsonable_encoder(exc.errors()),
        },
        status_code=400,
    )


@app.get("/health")
def health():
    return {"status": "ok"}


# ── Queue ────────────────────────────────────────────────────────

@app.post("/api/queue", status_code=201)
def add_to_queue(
    req: QueueAddRequest,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    result = services.queue.enqueue(
        user_id,
        req.video_url,
        req.video_title,
        req.video_channel,
        req.video_duration_seconds,
    )
    return {"summary": result.item.to_api(), "position": result.position}


@app.post("/api/queue/batch", status_code=201)
def add_batch(
    req: BatchQueueRequest,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    result = services.queue.enqueue_batch(user_id, req.videos)
    return {
        "summaries": [item.to_api() for item in result.items],
        "rateLimited": result.rate_limited,
        "skipped": [{"videoId": vid, "reason": reason} for vid, reason in result.skipped],
    }


@app.get("/api/queue")
def list_queue(
    status: Optional[str] = None,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    items = services.queue.list_items(user_id, status)
    return {"items": [item.to_api() for item in items]}


@app.get("/api/queue/{item_id}")
def get_queue_item(
    item_id: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    return {"item": services.queue.get(user_id, item_id).to_api()}


@app.post("/api/queue/{item_id}/retry")
def retry_queue_item(
    item_id: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    return {"summary": services.queue.retry(user_id, item_id).to_api()}


@app.delete("/api/queue/{item_id}")
def delete_queue_item(
    item_id: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    services.queue.delete(user_id, item_id)
    return {"deleted": True, "id": item_id}


# ── Summaries ────────────────────────────────────────────────────

@app.get("/api/summaries")
def list_summaries(
    limit: int = 20,
    offset: int = 0,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    items, total, limit = services.queue.list_summaries(user_id, limit, offset)
    return {
        "summaries": [item.to_api() for item in items],
        "total": total,
        "limit": limit,
        "offset": max(0, offset),
    }


@app.get("/api/summaries/search")
def search_summaries(
    q: Optional[str] = None,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    items = services.queue.search_summaries(user_id, q)
    return {"summaries": [item.to_api() for item in items], "total": len(items)}


@app.get("/api/summaries/{item_id}")
def get_summary(
    item_id: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    return {"summary": services.queue.get_summary(user_id, item_id).to_api()}


@app.get("/api/summaries/{item_id}/export", response_class=PlainTextResponse)
def export_summary(
    item_id: str,
    fmt: Literal["markdown", "text"] = Query("markdown", alias="format"),
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    item = services.queue.get_summary(user_id, item_id)
    media_type = "text/markdown" if fmt == "markdown" else "text/plain"
    return PlainTextResponse(render_summary(item, fmt), media_type=media_type)


@app.delete("/api/summaries/{item_id}")
def delete_summary(
    item_id: str,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    services.queue.delete_summary(user_id, item_id)
    return {"deleted": True, "id": item_id}


# ── Usage & one-off summaries ────────────────────────────────────

@app.get("/api/usage")
def get_usage(
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    return {"usage": services.queue.usage(user_id).model_dump(by_alias=True)}


@app.post("/api/summarize")
def summarize(
    req: SummarizeRequest,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    try:
        summary = services.summarize_video(req.video_id, req.video_title)
    except CliphyError:
        raise
    except Exception as exc:
        logger.exception("Summarize error for %s", req.video_id)
        raise CliphyError("Failed to generate summary") from exc
    return summary.model_dump(by_alias=True)
