"""Quality checks for generated summaries.

Used by ``cliphy summarize --check`` to spot-check model output. The
``retried`` flag comes from the summarizer's attempt count.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .schemas import SummaryJson

SUMMARY_WORDS = (30, 250)
KEY_POINTS = (5, 10)
MIN_TIMESTAMPS = 2


@dataclass(frozen=True)
class CheckResult:
    name: str
    passed: bool
    value: Union[int, str]
    expected: str


def _word_count(text: str) -> int:
    return len(text.split())


def run_checks(summary: SummaryJson, retried: bool) -> list[CheckResult]:
    words = _word_count(summary.summary)
    lo_words, hi_words = SUMMARY_WORDS
    lo_kp, hi_kp = KEY_POINTS
    return [
        CheckResult("summaryWords", lo_words <= words <= hi_words, words, f"{lo_words}-{hi_words}"),
        CheckResult(
            "keyPoints",
            lo_kp <= len(summary.key_points) <= hi_kp,
            len(summary.key_points),
            f"{lo_kp}-{hi_kp}",
        ),
        CheckResult(
            "timestamps",
            len(summary.timestamps) >= MIN_TIMESTAMPS,
            len(summary.timestamps),
            f">={MIN_TIMESTAMPS}",
        ),
        CheckResult("parseFirstTry", not retried, "retried" if retried else "first try", "first try"),
    ]


def all_passed(results: list[CheckResult]) -> bool:
    return all(r.passed for r in results)
