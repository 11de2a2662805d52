"""Tests for the step runner: markers, retries and the failure hook."""

from __future__ import annotations

from typing import Any

import pytest

from cliphy.dispatch import (
    InlineDispatcher,
    Step,
    StepRunner,
    ThreadPoolDispatcher,
    Workflow,
    WorkflowCancelled,
)
from cliphy.errors import InvalidInputError, NonRetriableError, UpstreamError


class MemoryMarkers:
    def __init__(self) -> None:
        self.data: dict[str, dict[str, Any]] = {}
        self.cleared: list[str] = []

    def load_markers(self, item_key: str) -> dict[str, Any]:
        return dict(self.data.get(item_key, {}))

    def save_marker(self, item_key: str, step: str, output: Any) -> None:
        self.data.setdefault(item_key, {})[step] = output

    def clear_markers(self, item_key: str) -> None:
        self.cleared.append(item_key)
        self.data.pop(item_key, None)


def _workflow(steps: list[Step], failures: list | None = None) -> Workflow:
    def on_failure(data, exc) -> None:
        if failures is not None:
            failures.append(exc)

    return Workflow("test/event", steps, key=lambda d: d["id"], on_failure=on_failure)


def test_runs_steps_in_order_and_passes_outputs() -> None:
    seen: list[str] = []

    def first(data, outputs):
        seen.append("first")
        return {"n": data["n"] + 1}

    def second(data, outputs):
        seen.append("second")
        return outputs["first"]["n"] * 2

    markers = MemoryMarkers()
    report = StepRunner(markers).run(
        _workflow([Step("first", first), Step("second", second)]), {"id": "a", "n": 1}
    )
    assert report.status == "completed"
    assert seen == ["first", "second"]
    assert report.outputs["second"] == 4
    assert markers.cleared == ["a"]


def test_transient_errors_retry_with_backoff() -> None:
    delays: list[float] = []
    calls = {"n": 0}

    def flaky(data, outputs):
        calls["n"] += 1
        if calls["n"] < 3:
            raise ConnectionError("try again")
        return "ok"

    runner = StepRunner(MemoryMarkers(), max_attempts=4, backoff=1.0, sleep=delays.append)
    report = runner.run(_workflow([Step("flaky", flaky)]), {"id": "a"})
    assert report.status == "completed"
    assert report.attempts["flaky"] == 3
    assert report.retries("flaky") == 2
    assert len(delays) == 2
    assert 0.9 <= delays[0] <= 1.1
    assert 1.8 <= delays[1] <= 2.2


def test_exhausted_retries_call_failure_hook() -> None:
    failures: list[BaseException] = []

    def broken(data, outputs):
        raise ConnectionError("down")

    runner = StepRunner(MemoryMarkers(), max_attempts=3, sleep=lambda _: None)
    report = runner.run(_workflow([Step("broken", broken)], failures), {"id": "a"})
    assert report.status == "failed"
    assert report.attempts["broken"] == 3
    assert [str(e) for e in failures] == ["down"]


def test_non_retriable_short_circuits() -> None:
    failures: list[BaseException] = []

    def terminal(data, outputs):
        raise NonRetriableError("no captions")

    runner = StepRunner(MemoryMarkers(), max_attempts=4, sleep=lambda _: pytest.fail("slept"))
    report = runner.run(_workflow([Step("terminal", terminal)], failures), {"id": "a"})
    assert report.status == "failed"
    assert report.retries("terminal") == 0
    assert len(failures) == 1


def test_errors_flagged_not_retryable_fail_on_first_attempt() -> None:
    failures: list[BaseException] = []

    def rejected(data, outputs):
        raise InvalidInputError("bad payload")

    runner = StepRunner(MemoryMarkers(), max_attempts=4, sleep=lambda _: pytest.fail("slept"))
    report = runner.run(_workflow([Step("rejected", rejected)], failures), {"id": "a"})
    assert report.status == "failed"
    assert report.attempts["rejected"] == 1
    assert [e.message for e in failures] == ["bad payload"]


def test_retryable_domain_errors_are_retried() -> None:
    calls = {"n": 0}

    def upstream(data, outputs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise UpstreamError("502 from upstream")
        return "ok"

    runner = StepRunner(MemoryMarkers(), max_attempts=4, sleep=lambda _: None)
    report = runner.run(_workflow([Step("upstream", upstream)]), {"id": "a"})
    assert report.status == "completed"
    assert report.retries("upstream") == 1


def test_redelivery_skips_completed_steps() -> None:
    markers = MemoryMarkers()
    markers.save_marker("a", "first", {"n": 10})

    def first(data, outputs):
        pytest.fail("first step should be skipped")

    def second(data, outputs):
        return outputs["first"]["n"]

    report = StepRunner(markers).run(
        _workflow([Step("first", first), Step("second", second)]), {"id": "a"}
    )
    assert report.status == "completed"
    assert report.outputs["second"] == 10
    assert "first" not in report.attempts


def test_markers_persist_between_failed_steps_until_terminal() -> None:
    markers = MemoryMarkers()
    saved: list[str] = []

    def first(data, outputs):
        return "done"

    def second(data, outputs):
        saved.extend(markers.data.get("a", {}))
        raise WorkflowCancelled("gone")

    report = StepRunner(markers).run(
        _workflow([Step("first", first), Step("second", second)]), {"id": "a"}
    )
    assert report.status == "cancelled"
    assert saved == ["first"]
    assert "a" not in markers.data


def test_unknown_event_is_rejected() -> None:
    dispatcher = InlineDispatcher(StepRunner(MemoryMarkers()))
    with pytest.raises(ValueError):
        dispatcher.send("nope", {})


def test_thread_pool_dispatcher_runs_in_background() -> None:
    dispatcher = ThreadPoolDispatcher(StepRunner(MemoryMarkers()), max_workers=2)
    dispatcher.register(_workflow([Step("only", lambda data, outputs: data["id"])]))
    try:
        report = dispatcher.send("test/event", {"id": "a"}).result(timeout=5)
    finally:
        dispatcher.shutdown()
    assert report.status == "completed"
    assert report.outputs["only"] == "a"
