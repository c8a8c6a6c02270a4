"""Outcome recording and result sinks.

``OutcomeRecorder`` brackets one test: ``start()`` notifies the sink and
stamps the start time, ``finalize()`` builds the immutable ``TestOutcome``
and hands it to the sink exactly once. Two sinks ship with the package:
``LoggingResultSink`` and ``CollectingResultSink``.
"""

from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import Protocol

from testlaunch.models import (
    MessageCategory,
    MessageLevel,
    OutcomeStatus,
    ResultMessage,
    TestIdentifier,
    TestOutcome,
)

logger = logging.getLogger(__name__)


class ResultSink(Protocol):
    """Receives per-test notifications from the executor.

    Each completed test gets one ``record_start`` followed by one
    ``record_result`` and one ``record_end``. A test abandoned because the
    batch was cancelled only gets ``record_start``.
    """

    def record_start(self, test: TestIdentifier) -> None: ...

    def record_result(self, outcome: TestOutcome) -> None: ...

    def record_end(self, test: TestIdentifier, status: OutcomeStatus) -> None: ...

    def send_message(self, level: MessageLevel, text: str) -> None: ...


def derive_status(exit_code: int | None, failed: bool = False) -> OutcomeStatus:
    """Passed iff the process exited with code 0 and nothing forced a failure."""
    if exit_code == 0 and not failed:
        return OutcomeStatus.PASSED
    return OutcomeStatus.FAILED


def _now() -> datetime:
    return datetime.now(UTC)


class OutcomeRecorder:
    """Tracks one test from start to its single finalized outcome."""

    def __init__(self, test: TestIdentifier, sink: ResultSink) -> None:
        self.test = test
        self._sink = sink
        self.start_time: datetime | None = None
        self.outcome: TestOutcome | None = None

    @property
    def finalized(self) -> bool:
        return self.outcome is not None

    def start(self) -> None:
        self._sink.record_start(self.test)
        self.start_time = _now()

    def finalize(
        self,
        status: OutcomeStatus,
        stdout: str = "",
        stderr: str = "",
    ) -> TestOutcome:
        """Stamp the end time and report the outcome to the sink.

        Args:
            status: Final status of the test.
            stdout: Captured standard output.
            stderr: Captured standard error.

        Returns:
            The finalized outcome.

        Raises:
            RuntimeError: If the recorder was not started or was already
                finalized.
        """
        if self.start_time is None:
            msg = f"Outcome of {self.test} finalized before start()"
            raise RuntimeError(msg)
        if self.outcome is not None:
            msg = f"Outcome of {self.test} already finalized"
            raise RuntimeError(msg)

        end_time = _now()
        self.outcome = TestOutcome(
            test=self.test,
            status=status,
            start_time=self.start_time,
            end_time=end_time,
            duration=end_time - self.start_time,
            messages=[
                ResultMessage(category=MessageCategory.STDOUT, text=stdout),
                ResultMessage(category=MessageCategory.STDERR, text=stderr),
                ResultMessage(category=MessageCategory.ADDITIONAL_INFO, text=stderr),
            ],
        )
        self._sink.record_result(self.outcome)
        self._sink.record_end(self.test, status)
        return self.outcome


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------

_LEVEL_MAP: dict[MessageLevel, int] = {
    MessageLevel.INFORMATIONAL: logging.INFO,
    MessageLevel.WARNING: logging.WARNING,
    MessageLevel.ERROR: logging.ERROR,
}


class LoggingResultSink:
    """Writes every notification to a logger."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def record_start(self, test: TestIdentifier) -> None:
        self._log.info("START  %s", test)

    def record_result(self, outcome: TestOutcome) -> None:
        self._log.debug(
            "RESULT %s %s (%.3fs)",
            outcome.test,
            outcome.status,
            outcome.duration.total_seconds(),
        )

    def record_end(self, test: TestIdentifier, status: OutcomeStatus) -> None:
        self._log.info("%-6s %s", status.upper(), test)

    def send_message(self, level: MessageLevel, text: str) -> None:
        self._log.log(_LEVEL_MAP[level], "%s", text)


class CollectingResultSink:
    """Keeps every notification in memory, optionally forwarding to another sink.

    Attributes:
        started: Tests passed to ``record_start`` in order.
        outcomes: Outcomes passed to ``record_result`` in order.
        ended: ``(test, status)`` pairs passed to ``record_end`` in order.
        messages: ``(level, text)`` pairs passed to ``send_message``.
    """

    def __init__(self, forward: ResultSink | None = None) -> None:
        self._forward = forward
        self.started: list[TestIdentifier] = []
        self.outcomes: list[TestOutcome] = []
        self.ended: list[tuple[TestIdentifier, OutcomeStatus]] = []
        self.messages: list[tuple[MessageLevel, str]] = []

    def record_start(self, test: TestIdentifier) -> None:
        self.started.append(test)
        if self._forward is not None:
            self._forward.record_start(test)

    def record_result(self, outcome: TestOutcome) -> None:
        self.outcomes.append(outcome)
        if self._forward is not None:
            self._forward.record_result(outcome)

    def record_end(self, test: TestIdentifier, status: OutcomeStatus) -> None:
        self.ended.append((test, status))
        if self._forward is not None:
            self._forward.record_end(test, status)

    def send_message(self, level: MessageLevel, text: str) -> None:
        self.messages.append((level, text))
        if self._forward is not None:
            self._forward.send_message(level, text)

    def outcome_for(self, test: TestIdentifier) -> TestOutcome | None:
        """Return the recorded outcome of *test*, if any."""
        for outcome in self.outcomes:
            if outcome.test == test:
                return outcome
        return None

    @property
    def not_run(self) -> list[TestIdentifier]:
        """Started tests that never received an outcome."""
        finished = {outcome.test for outcome in self.outcomes}
        return [test for test in self.started if test not in finished]

    def errors(self) -> list[str]:
        return [text for level, text in self.messages if level is MessageLevel.ERROR]
