"""Cliphy error taxonomy.

Every error carries a stable ``code``, the HTTP status the API answers with,
and whether the step runner may retry it. Extra keyword arguments become
``details`` and are echoed in API error bodies (e.g. ``limit`` and ``plan``
on a rate-limit rejection).
"""

from __future__ import annotations

from typing import Any


class CliphyError(Exception):
    """Base class for all known error conditions."""

    code = "INTERNAL"
    status_code = 500
    retryable = False

    def __init__(self, message: str, **details: Any) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.details}


# ── Synchronous rejections (never retried) ───────────────────────

class InvalidInputError(CliphyError):
    code = "INVALID_INPUT"
    status_code = 400


class AuthRequiredError(CliphyError):
    code = "UNAUTHORIZED"
    status_code = 401


class ProRequiredError(CliphyError):
    code = "PRO_REQUIRED"
    status_code = 403


class NotFoundError(CliphyError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(CliphyError):
    code = "CONFLICT"
    status_code = 409


class DuplicateError(ConflictError):
    code = "DUPLICATE"


class InvalidStateError(ConflictError):
    code = "INVALID_STATE"


class RateLimitedError(CliphyError):
    code = "RATE_LIMITED"
    status_code = 429


# ── Pipeline failures ────────────────────────────────────────────

class NonRetriableError(CliphyError):
    """A terminal domain failure. The step runner must not retry it."""

    code = "NON_RETRIABLE"
    status_code = 422


class TranscriptNotAvailableError(NonRetriableError):
    code = "TRANSCRIPT_NOT_AVAILABLE"


class InvalidVideoIdError(NonRetriableError):
    code = "INVALID_VIDEO_ID"


class SummaryParseError(CliphyError):
    code = "SUMMARY_PARSE_FAILED"
    status_code = 502
    retryable = True


class UpstreamError(CliphyError):
    """Transient failure talking to the captions upstream."""

    code = "UPSTREAM_ERROR"
    status_code = 502
    retryable = True
