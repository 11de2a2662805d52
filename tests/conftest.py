"""Shared fakes: a scripted chat model and a mocked YouTube upstream."""

from __future__ import annotations

import json
from typing import Any, Callable, Iterator

import httpx
import pytest

from cliphy.service import Services, build_services

GOOD_SUMMARY = {
    "summary": "A short walkthrough of installing the CLI and running a first workflow.",
    "keyPoints": ["Install the CLI", "Authenticate", "Add a workflow", "Run it", "Check logs"],
    "actionItems": ["Install the CLI"],
    "timestamps": ["0:05 - Intro", "1:30 - Install"],
}

TIMED_TEXT_NESTED = (
    '<?xml version="1.0" encoding="utf-8" ?><timedtext format="3"><body>'
    '<p t="0" d="1500"><s>Hello</s><s> world</s></p>'
    '<p t="1500" d="2000"><s>[Music]</s></p>'
    '<p t="3500" d="2000">Install the &amp;#39;gh&amp;#39; tool</p>'
    "</body></timedtext>"
)

TIMED_TEXT_FLAT = (
    '<?xml version="1.0" encoding="utf-8" ?><transcript>'
    '<text start="0.0" dur="1.5">Hello &amp;amp; welcome</text>'
    '<text start="1.5" dur="2.0">to the show</text>'
    "</transcript>"
)


def player_json(tracks: list[dict[str, str]] | None = None, status: str = "OK",
                reason: str = "") -> dict[str, Any]:
    data: dict[str, Any] = {"playabilityStatus": {"status": status, "reason": reason}}
    if tracks is not None:
        data["captions"] = {"playerCaptionsTracklistRenderer": {"captionTracks": tracks}}
    return data


EN_TRACK = {"baseUrl": "https://www.youtube.com/api/timedtext?v=abc&lang=en", "languageCode": "en"}


class FakeChatModel:
    """Replies from a script; an Exception entry is raised instead."""

    def __init__(self, replies: list[Any] | None = None, default: Any = None) -> None:
        self.replies = list(replies or [])
        self.default = json.dumps(GOOD_SUMMARY) if default is None else default
        self.calls: list[dict[str, Any]] = []

    def complete(self, system, messages, *, max_tokens, temperature) -> str:
        self.calls.append({"system": system, "messages": list(messages), "temperature": temperature})
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeYouTube:
    """httpx.MockTransport handler for the player and timedtext endpoints."""

    def __init__(
        self,
        player: dict[str, Any] | None = None,
        timedtext: str = TIMED_TEXT_NESTED,
        player_status: int = 200,
        timedtext_status: int = 200,
    ) -> None:
        self.player = player if player is not None else player_json([EN_TRACK])
        self.timedtext = timedtext
        self.player_status = player_status
        self.timedtext_status = timedtext_status
        self.requests: list[httpx.Request] = []
        self.fail_next: list[Exception] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_next:
            raise self.fail_next.pop(0)
        if request.url.path.endswith("/youtubei/v1/player"):
            return httpx.Response(self.player_status, json=self.player)
        if request.url.path.endswith("/timedtext"):
            return httpx.Response(self.timedtext_status, text=self.timedtext)
        return httpx.Response(404)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


@pytest.fixture
def youtube() -> FakeYouTube:
    return FakeYouTube()


@pytest.fixture
def chat_model() -> FakeChatModel:
    return FakeChatModel()


@pytest.fixture
def make_services(tmp_path, youtube, chat_model) -> Iterator[Callable[..., Services]]:
    """Inline services on a fresh database; no sleeping between step retries."""
    built: list[Services] = []

    def _make(**overrides: Any) -> Services:
        kwargs: dict[str, Any] = {
            "db_path": tmp_path / "cliphy.sqlite3",
            "dispatcher": "inline",
            "chat_model": chat_model,
            "http_client": youtube.client(),
            "step_sleep": lambda _: None,
        }
        kwargs.update(overrides)
        services = build_services(**kwargs)
        built.append(services)
        return services

    yield _make
    for services in built:
        services.close()


@pytest.fixture
def services(make_services) -> Services:
    return make_services()
