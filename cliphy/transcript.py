"""Transcript acquirer — fetch and clean YouTube captions for a video id.

Two-phase upstream contract:
  1. POST the InnerTube player endpoint (ANDROID client, no auth) to discover
     caption tracks and the video's playability status.
  2. GET the chosen track's timed-text XML and pull out spoken segments.

Timed-text comes back in one of two shapes; we try the nested one first:
  nested:  <p t="ms" d="ms"><s>text</s><s>text</s></p>
  flat:    <text start="s" dur="s">text</text>

Caption text is untrusted. Before it reaches the model it is entity-decoded,
stripped of non-speech markers, invisible characters and known
prompt-injection phrases, and whitespace-collapsed.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from .errors import InvalidVideoIdError, TranscriptNotAvailableError, UpstreamError
from .video_id import is_valid_video_id

logger = logging.getLogger(__name__)

INNERTUBE_PLAYER_URL = "https://www.youtube.com/youtubei/v1/player"
ANDROID_CLIENT_CONTEXT = {
    "client": {
        "clientName": "ANDROID",
        "clientVersion": "20.10.38",
        "hl": "en",
    },
}

DEFAULT_LANGUAGE = "en"
MAX_TRANSCRIPT_LENGTH = 100_000
DEFAULT_TIMEOUT = 15.0

_HEADERS = {
    "User-Agent": "com.google.android.youtube/20.10.38 (Linux; U; Android 14)",
}

_UNAVAILABLE_STATUSES = {"ERROR", "UNPLAYABLE"}


# ── Player response (validated at the boundary) ──────────────

class _PlayabilityStatus(BaseModel):
    status: str = ""
    reason: str = ""


class CaptionTrack(BaseModel):
    base_url: str = Field(alias="baseUrl")
    language_code: str = Field(default="", alias="languageCode")


class _TracklistRenderer(BaseModel):
    caption_tracks: list[CaptionTrack] = Field(default_factory=list, alias="captionTracks")


class _Captions(BaseModel):
    tracklist: Optional[_TracklistRenderer] = Field(
        default=None, alias="playerCaptionsTracklistRenderer"
    )


class PlayerResponse(BaseModel):
    playability_status: Optional[_PlayabilityStatus] = Field(default=None, alias="playabilityStatus")
    captions: Optional[_Captions] = None

    @property
    def tracks(self) -> list[CaptionTrack]:
        if self.captions and self.captions.tracklist:
            return self.captions.tracklist.caption_tracks
        return []


@dataclass(slots=True)
class TimedText:
    segments: list[str]
    shape: str  # "nested", "flat" or "none"


# ── Timed-text parsing ───────────────────────────────────────

_P_RE = re.compile(r"<p\b[^>]*(?<!/)>(.*?)</p>", re.DOTALL)
_S_RE = re.compile(r"<s\b[^>]*>(.*?)</s>", re.DOTALL)
_TEXT_RE = re.compile(r"<text\b[^>]*>(.*?)</text>", re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")


def _parse_nested(xml: str) -> list[str]:
    segments: list[str] = []
    for p_body in _P_RE.findall(xml):
        s_bodies = _S_RE.findall(p_body)
        if s_bodies:
            text = "".join(s_bodies)
        else:
            text = p_body
        text = _TAG_RE.sub("", text).strip()
        if text:
            segments.append(text)
    return segments


def _parse_flat(xml: str) -> list[str]:
    segments: list[str] = []
    for body in _TEXT_RE.findall(xml):
        text = _TAG_RE.sub("", body).strip()
        if text:
            segments.append(text)
    return segments


def parse_timed_text(xml: str) -> TimedText:
    """Extract raw segments, falling back to the flat shape if nested finds none."""
    segments = _parse_nested(xml)
    if segments:
        return TimedText(segments=segments, shape="nested")
    segments = _parse_flat(xml)
    if segments:
        return TimedText(segments=segments, shape="flat")
    return TimedText(segments=[], shape="none")


# ── Sanitization ─────────────────────────────────────────────

_NON_SPEECH_RE = re.compile(r"\[[^\]]*\]")
_INVISIBLE_RE = re.compile("[\u00ad\u200b-\u200f\u202a-\u202e\u2060-\u2064\ufeff]")
_ROLE_LABEL_RE = re.compile(r"^\s*(?:system|assistant|user)\s*:", re.IGNORECASE | re.MULTILINE)
# Phrases and chat-template tokens can straddle segment boundaries
_SPANNING_INJECTION_RES = [
    re.compile(r"ignore\s+(?:all\s+)?(?:the\s+)?previous\s+instructions", re.IGNORECASE),
    re.compile(
        r"<\|\s*(?:im_start|im_end|system|user|assistant|endoftext|eot_id)\s*\|>"
        r"|\[/?INST\]|<</?SYS>>",
        re.IGNORECASE,
    ),
]
_WHITESPACE_RE = re.compile(r"\s+")


def decode_entities(text: str) -> str:
    # Twice: "&amp;#39;" → "&#39;" → "'"
    return html.unescape(html.unescape(text))


def sanitize_segment(text: str) -> str:
    text = decode_entities(text)
    text = _NON_SPEECH_RE.sub("", text)
    text = _INVISIBLE_RE.sub("", text)
    text = _ROLE_LABEL_RE.sub("", text)
    return _strip_spanning_injections(text)


def _strip_spanning_injections(text: str) -> str:
    for pattern in _SPANNING_INJECTION_RES:
        text = pattern.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def clean_transcript(segments: list[str], max_length: int = MAX_TRANSCRIPT_LENGTH) -> str:
    """Sanitize and join segments. Raises if nothing speakable is left."""
    cleaned = [s for s in (sanitize_segment(seg) for seg in segments) if s]
    transcript = _WHITESPACE_RE.sub(" ", " ".join(cleaned)).strip()
    transcript = _strip_spanning_injections(transcript)

    if not transcript:
        raise TranscriptNotAvailableError("Transcript is empty after cleaning.")

    if len(transcript) > max_length:
        logger.info("Transcript truncated from %d to %d chars", len(transcript), max_length)
        return transcript[:max_length]
    return transcript


def pick_track(tracks: list[CaptionTrack], language: str = DEFAULT_LANGUAGE) -> CaptionTrack:
    """Prefer the working language, otherwise the first available track."""
    for track in tracks:
        if track.language_code == language:
            return track
    return tracks[0]


# ── HTTP ─────────────────────────────────────────────────────

def build_http_client(proxy_url: str | None = None, timeout: float = DEFAULT_TIMEOUT) -> httpx.Client:
    """Upstream client, optionally routed through a rotating proxy."""
    if proxy_url:
        logger.info("Routing caption requests through proxy")
    return httpx.Client(
        proxy=proxy_url or None,
        timeout=timeout,
        headers=_HEADERS,
        follow_redirects=True,
    )


class TranscriptAcquirer:
    """Fetch a plain-text transcript for a validated video id."""

    def __init__(
        self,
        http: httpx.Client,
        language: str = DEFAULT_LANGUAGE,
        max_length: int = MAX_TRANSCRIPT_LENGTH,
    ) -> None:
        self.http = http
        self.language = language
        self.max_length = max_length

    def fetch_caption_tracks(self, video_id: str) -> list[CaptionTrack]:
        try:
            resp = self.http.post(
                INNERTUBE_PLAYER_URL,
                json={"context": ANDROID_CLIENT_CONTEXT, "videoId": video_id},
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(f"InnerTube player request failed: {exc}") from exc

        if resp.status_code != 200:
            raise UpstreamError(f"InnerTube player API returned {resp.status_code}")

        try:
            player = PlayerResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise UpstreamError(f"Unexpected InnerTube player response: {exc}") from exc

        status = player.playability_status
        if status and (
            status.status in _UNAVAILABLE_STATUSES
            or (status.status == "LOGIN_REQUIRED" and "private" in status.reason.lower())
        ):
            raise TranscriptNotAvailableError("This video is unavailable or private.")

        if not player.tracks:
            raise TranscriptNotAvailableError("This video doesn't have captions available.")

        return player.tracks

    def fetch_segments(self, track: CaptionTrack) -> list[str]:
        url = f"{track.base_url}&fmt=srv1"
        try:
            resp = self.http.get(url)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Timedtext request failed: {exc}") from exc

        if resp.status_code != 200:
            raise UpstreamError(f"Timedtext fetch failed: {resp.status_code}")

        timed = parse_timed_text(resp.text)
        logger.debug("Timed text: %d segments (%s shape)", len(timed.segments), timed.shape)
        return timed.segments

    def acquire(self, video_id: str) -> str:
        if not is_valid_video_id(video_id):
            raise InvalidVideoIdError(f"Invalid video id: {video_id!r}")

        tracks = self.fetch_caption_tracks(video_id)
        track = pick_track(tracks, self.language)
        segments = self.fetch_segments(track)
        transcript = clean_transcript(segments, self.max_length)

        logger.info(
            "Transcript for %s: %d chars (track lang=%s)",
            video_id, len(transcript), track.language_code or "?",
        )
        return transcript
