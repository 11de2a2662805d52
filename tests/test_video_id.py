"""Tests for YouTube URL → video id extraction."""

import pytest

from cliphy.errors import InvalidInputError
from cliphy.video_id import canonical_url, extract_video_id, require_video_id


@pytest.mark.parametrize(
    "url",
    [
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://youtu.be/dQw4w9WgXcQ",
        "https://www.youtube.com/embed/dQw4w9WgXcQ",
        "https://youtube.com/shorts/dQw4w9WgXcQ",
        "https://www.youtube.com/v/dQw4w9WgXcQ",
        "https://m.youtube.com/watch?v=dQw4w9WgXcQ",
        "youtube.com/watch?v=dQw4w9WgXcQ",
        "https://www.youtube.com/watch?list=PL123&v=dQw4w9WgXcQ&t=42s",
    ],
)
def test_extracts_supported_forms(url) -> None:
    assert extract_video_id(url) == "dQw4w9WgXcQ"


@pytest.mark.parametrize(
    "url",
    [
        "https://vimeo.com/123456789",
        "https://notyoutube.com/watch?v=dQw4w9WgXcQ",
        "not a url",
        "",
        "https://www.youtube.com/watch",
        "https://www.youtube.com/watch?v=short",
        "https://youtu.be/",
        "ftp://youtube.com/watch?v=dQw4w9WgXcQ",
        "https://[::1/watch?v=dQw4w9WgXcQ",
    ],
)
def test_rejects_other_input(url) -> None:
    assert extract_video_id(url) is None


def test_non_string_input_returns_none() -> None:
    assert extract_video_id(None) is None
    assert extract_video_id(12345) is None


def test_require_video_id_raises_400() -> None:
    with pytest.raises(InvalidInputError) as exc_info:
        require_video_id("https://example.com")
    assert exc_info.value.status_code == 400
    assert "invalid" in exc_info.value.message.lower()


def test_canonical_url() -> None:
    assert canonical_url("dQw4w9WgXcQ") == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
