"""Summarize worker — the three steps behind ``video/summarize.requested``.

Event payload: ``{"itemId": ..., "videoId": ..., "videoTitle": ...}``.

  fetch-transcript   claim the item (pending/processing only), fetch captions,
                     keep the transcript on the row while processing
  generate-summary   model call with one corrective retry
  save-result        write completed, clearing transcript and error

Any step may run more than once; each write is conditional on the item's
current status.
"""

from __future__ import annotations

import logging
from typing import Any

from .dispatch import Step, Workflow, WorkflowCancelled
from .errors import NonRetriableError
from .schemas import SummaryJson
from .store import QueueStore
from .summarizer import Summarizer
from .transcript import TranscriptAcquirer

logger = logging.getLogger(__name__)

SUMMARIZE_EVENT = "video/summarize.requested"
DEFAULT_TITLE = "Untitled Video"
DEFAULT_FAILURE_MESSAGE = "Failed to generate summary"


def summarize_event(item_id: str, video_id: str, video_title: str | None) -> dict[str, Any]:
    return {"itemId": item_id, "videoId": video_id, "videoTitle": video_title}


class SummarizeWorker:
    def __init__(
        self,
        store: QueueStore,
        acquirer: TranscriptAcquirer,
        summarizer: Summarizer,
    ) -> None:
        self.store = store
        self.acquirer = acquirer
        self.summarizer = summarizer

    def fetch_transcript(self, data: dict[str, Any], outputs: dict[str, Any]) -> dict[str, Any]:
        item_id = data["itemId"]
        if not self.store.mark_processing(item_id):
            raise WorkflowCancelled(f"item {item_id} is no longer pending")

        try:
            transcript = self.acquirer.acquire(data["videoId"])
        except NonRetriableError as exc:
            # No point retrying a video without captions
            self.store.mark_failed(item_id, exc.message)
            raise

        self.store.save_transcript(item_id, transcript)
        return {"transcript": transcript}

    def generate_summary(self, data: dict[str, Any], outputs: dict[str, Any]) -> dict[str, Any]:
        transcript = outputs["fetch-transcript"]["transcript"]
        outcome = self.summarizer.generate(transcript, data.get("videoTitle") or DEFAULT_TITLE)
        logger.info(
            "Summary for %s ready (retried=%s)", data["itemId"], outcome.retried,
        )
        return {
            "summary": outcome.summary.model_dump(by_alias=True),
            "retried": outcome.retried,
        }

    def save_result(self, data: dict[str, Any], outputs: dict[str, Any]) -> dict[str, Any]:
        summary = SummaryJson.model_validate(outputs["generate-summary"]["summary"])
        if not self.store.mark_completed(data["itemId"], summary):
            raise WorkflowCancelled(f"item {data['itemId']} left processing before save")
        return {"itemId": data["itemId"], "status": "completed"}

    def on_failure(self, data: dict[str, Any], exc: BaseException) -> None:
        message = getattr(exc, "message", None) or str(exc) or DEFAULT_FAILURE_MESSAGE
        self.store.mark_failed(data["itemId"], message)

    def workflow(self) -> Workflow:
        return Workflow(
            event=SUMMARIZE_EVENT,
            steps=[
                Step("fetch-transcript", self.fetch_transcript),
                Step("generate-summary", self.generate_summary),
                Step("save-result", self.save_result),
            ],
            key=lambda data: data["itemId"],
            on_failure=self.on_failure,
        )
