"""Step runner and event dispatchers.

A workflow is an explicit list of named steps keyed by an item id. After each
successful step its JSON output is persisted as a marker; when an event is
delivered again the runner skips every step that already has one. Each step
is retried independently with exponential backoff and jitter, except for
errors whose ``retryable`` flag is False (NonRetriableError, InvalidInputError
and friends), which fail the workflow on the spot. Once retries are exhausted
the workflow's failure hook sees the last error.

Delivery is at least once. Steps must tolerate being run again.
"""

from __future__ import annotations

import logging
import random
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from .errors import NonRetriableError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 4
DEFAULT_BACKOFF = 1.0


class WorkflowCancelled(Exception):
    """Raised by a step to end the run quietly (e.g. the item was deleted)."""


class MarkerStore(Protocol):
    def load_markers(self, item_key: str) -> dict[str, Any]: ...
    def save_marker(self, item_key: str, step: str, output: Any) -> None: ...
    def clear_markers(self, item_key: str) -> None: ...


@dataclass(frozen=True)
class Step:
    name: str
    run: Callable[[dict[str, Any], dict[str, Any]], Any]


@dataclass
class Workflow:
    event: str
    steps: list[Step]
    key: Callable[[dict[str, Any]], str]
    on_failure: Optional[Callable[[dict[str, Any], BaseException], None]] = None


@dataclass
class RunReport:
    event: str
    key: str
    status: str = "running"  # completed | failed | cancelled
    attempts: dict[str, int] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)
    error: Optional[BaseException] = None

    def retries(self, step: str) -> int:
        return max(self.attempts.get(step, 0) - 1, 0)


class StepRunner:
    def __init__(
        self,
        markers: MarkerStore,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff: float = DEFAULT_BACKOFF,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.markers = markers
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self.sleep = sleep

    def _delay(self, attempt: int) -> float:
        # 1s, 2s, 4s, ... (+/- 10%)
        delay = self.backoff * (2 ** (attempt - 1))
        return delay * (1 + random.uniform(-0.1, 0.1))

    def _run_step(self, step: Step, data: dict[str, Any], outputs: dict[str, Any],
                  report: RunReport) -> Any:
        attempt = 0
        while True:
            attempt += 1
            report.attempts[step.name] = attempt
            try:
                return step.run(data, outputs)
            except (WorkflowCancelled, NonRetriableError):
                raise
            except Exception as exc:
                if not getattr(exc, "retryable", True):
                    logger.warning("Step %s for %s failed without retry: %s", step.name, report.key, exc)
                    raise
                if attempt >= self.max_attempts:
                    logger.warning(
                        "Step %s for %s failed after %d attempts: %s",
                        step.name, report.key, attempt, exc,
                    )
                    raise
                delay = self._delay(attempt)
                logger.warning(
                    "Step %s for %s failed (attempt %d/%d): %s. Retrying in %.1fs",
                    step.name, report.key, attempt, self.max_attempts, exc, delay,
                )
                self.sleep(delay)

    def run(self, workflow: Workflow, data: dict[str, Any]) -> RunReport:
        key = workflow.key(data)
        report = RunReport(event=workflow.event, key=key)
        outputs = self.markers.load_markers(key)

        for step in workflow.steps:
            if step.name in outputs:
                logger.debug("Step %s for %s already done, skipping", step.name, key)
                continue
            try:
                outputs[step.name] = self._run_step(step, data, outputs, report)
            except WorkflowCancelled as exc:
                logger.info("Workflow %s for %s cancelled: %s", workflow.event, key, exc)
                report.status = "cancelled"
                self.markers.clear_markers(key)
                return report
            except Exception as exc:
                report.status = "failed"
                report.error = exc
                if workflow.on_failure is not None:
                    workflow.on_failure(data, exc)
                self.markers.clear_markers(key)
                return report
            self.markers.save_marker(key, step.name, outputs[step.name])

        report.status = "completed"
        report.outputs = outputs
        self.markers.clear_markers(key)
        return report


# ── Dispatchers ──────────────────────────────────────────────

class Dispatcher:
    """Routes named events to registered workflows."""

    def __init__(self, runner: StepRunner) -> None:
        self.runner = runner
        self._workflows: dict[str, Workflow] = {}

    def register(self, workflow: Workflow) -> None:
        self._workflows[workflow.event] = workflow

    def _workflow(self, event: str) -> Workflow:
        try:
            return self._workflows[event]
        except KeyError:
            raise ValueError(f"No workflow registered for event {event!r}") from None

    def send(self, event: str, data: dict[str, Any]) -> Any:
        raise NotImplementedError

    def shutdown(self, wait: bool = True) -> None:
        pass


class InlineDispatcher(Dispatcher):
    """Runs the workflow in the caller's thread and returns its report."""

    def send(self, event: str, data: dict[str, Any]) -> RunReport:
        logger.debug("Dispatching %s inline", event)
        return self.runner.run(self._workflow(event), data)


class ThreadPoolDispatcher(Dispatcher):
    """Runs workflows on a background thread pool."""

    def __init__(self, runner: StepRunner, max_workers: int = 4) -> None:
        super().__init__(runner)
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="cliphy-worker"
        )

    def send(self, event: str, data: dict[str, Any]) -> Future[RunReport]:
        workflow = self._workflow(event)
        future = self._pool.submit(self.runner.run, workflow, data)
        future.add_done_callback(self._log_crash)
        return future

    @staticmethod
    def _log_crash(future: Future[RunReport]) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Workflow crashed: %s", exc, exc_info=exc)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
