"""Cliphy service — wires store, ledger, worker and dispatcher together.

Everything is built here from config so the API, the CLI and tests share one
construction path. Pass collaborators explicitly to override them:

    services = build_services(db_path=tmp_path / "db.sqlite3",
                              dispatcher="inline", chat_model=FakeModel())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Literal, Optional

import httpx

from . import config
from .dispatch import Dispatcher, InlineDispatcher, StepRunner, ThreadPoolDispatcher
from .errors import InvalidInputError
from .ledger import UsageLedger
from .pipeline import DEFAULT_TITLE, SummarizeWorker
from .queue import QueueService
from .schemas import SummaryJson
from .store import QueueStore
from .summarizer import ChatModel, OpenAIChatModel, Summarizer
from .transcript import TranscriptAcquirer, build_http_client

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: QueueStore
    ledger: UsageLedger
    acquirer: TranscriptAcquirer
    summarizer: Summarizer
    dispatcher: Dispatcher
    queue: QueueService

    def summarize_video(self, video_id: str, video_title: str | None = None) -> SummaryJson:
        """One-off summary outside the queue. Nothing is persisted."""
        if not video_id:
            raise InvalidInputError("videoId is required")
        transcript = self.acquirer.acquire(video_id)
        return self.summarizer.summarize(transcript, video_title or DEFAULT_TITLE)

    def close(self) -> None:
        self.dispatcher.shutdown(wait=False)
        self.acquirer.http.close()


def _default_chat_model() -> OpenAIChatModel:
    api_key, base_url, model = config.llm_settings()
    if not api_key:
        logger.warning("No LLM API key configured; summaries will fail until one is set")
    return OpenAIChatModel.from_settings(
        api_key or "missing",
        base_url,
        model,
        timeout=config.get_float("CLIPHY_LLM_TIMEOUT", 60.0),
    )


def build_services(
    db_path: str | Path | None = None,
    dispatcher: Literal["inline", "threads"] = "threads",
    chat_model: Optional[ChatModel] = None,
    http_client: Optional[httpx.Client] = None,
    step_sleep: Optional[Callable[[float], None]] = None,
) -> Services:
    store = QueueStore(db_path or config.db_path())
    ledger = UsageLedger(store)

    http = http_client or build_http_client(
        config.proxy_url(), timeout=config.get_float("CLIPHY_HTTP_TIMEOUT", 15.0)
    )
    acquirer = TranscriptAcquirer(http, language=config.get("CLIPHY_TRANSCRIPT_LANGUAGE", "en"))
    summarizer = Summarizer(chat_model or _default_chat_model())

    runner_kwargs: dict[str, Any] = {}
    if step_sleep is not None:
        runner_kwargs["sleep"] = step_sleep
    runner = StepRunner(
        store,
        max_attempts=config.get_int("CLIPHY_STEP_MAX_ATTEMPTS", 4),
        backoff=config.get_float("CLIPHY_STEP_BACKOFF", 1.0),
        **runner_kwargs,
    )
    if dispatcher == "inline":
        events: Dispatcher = InlineDispatcher(runner)
    else:
        events = ThreadPoolDispatcher(runner, max_workers=config.get_int("CLIPHY_WORKERS", 4))

    worker = SummarizeWorker(store, acquirer, summarizer)
    events.register(worker.workflow())

    queue = QueueService(store, ledger, events)
    logger.debug("Services ready (db=%s, dispatcher=%s)", db_path or config.db_path(), dispatcher)
    return Services(store, ledger, acquirer, summarizer, events, queue)
