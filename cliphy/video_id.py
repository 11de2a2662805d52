"""YouTube video id extraction — routes arbitrary input URLs to an 11-char id.

Accepted forms:
  https://www.youtube.com/watch?v=VIDEO_ID
  https://m.youtube.com/watch?v=VIDEO_ID
  https://youtu.be/VIDEO_ID
  https://youtube.com/embed/VIDEO_ID
  https://youtube.com/shorts/VIDEO_ID
  https://youtube.com/v/VIDEO_ID
"""

from __future__ import annotations

import re
from urllib.parse import parse_qs, urlparse

from .errors import InvalidInputError

VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")
YOUTUBE_HOSTS = {"youtube.com", "www.youtube.com", "m.youtube.com"}
SHORT_HOSTS = {"youtu.be", "www.youtu.be"}

_PATH_RE = re.compile(r"^/(?:embed|v|shorts)/([A-Za-z0-9_-]{11})(?:/|$)")


def is_valid_video_id(value: object) -> bool:
    return isinstance(value, str) and VIDEO_ID_RE.match(value) is not None


def extract_video_id(url: object) -> str | None:
    """Extract the video id from a YouTube URL. Returns None, never raises."""
    if not isinstance(url, str):
        return None
    url = url.strip()
    if not url:
        return None
    if "://" not in url:
        url = "https://" + url

    try:
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
    except ValueError:
        return None

    if parsed.scheme not in ("http", "https"):
        return None

    if host in YOUTUBE_HOSTS:
        if parsed.path in ("/watch", "/watch/"):
            video_id = parse_qs(parsed.query).get("v", [""])[0]
            return video_id if is_valid_video_id(video_id) else None
        m = _PATH_RE.match(parsed.path)
        return m.group(1) if m else None

    if host in SHORT_HOSTS:
        video_id = parsed.path.lstrip("/").rstrip("/")
        return video_id if is_valid_video_id(video_id) else None

    return None


def require_video_id(url: object) -> str:
    """Like extract_video_id, but rejects unusable input with a 400."""
    video_id = extract_video_id(url)
    if not video_id:
        raise InvalidInputError(f"Invalid YouTube URL: {url!r}")
    return video_id


def canonical_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"
