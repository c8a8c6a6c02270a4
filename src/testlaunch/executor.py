"""Test executor: runs a batch of tests, one interpreter process per test.

Provides ``TestExecutor`` with ``run_tests()`` / ``run_sources()`` (async)
and their ``*_sync`` wrappers as the top-level entry points, plus the
environment-variable configuration overrides and logging setup shared with
the command line tool.

Tests run strictly one after another. Each test is isolated: a failure while
running one test is reported to the sink and the batch moves on. The batch
stops early only when its ``CancellationToken`` is cancelled.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
import logging
import os
from pathlib import Path
import sys
import traceback
from typing import TYPE_CHECKING, Any, Protocol

from testlaunch.cancellation import CancellationToken, WaitResult, wait_for_exit_or_cancel
from testlaunch.debug import AttachState, DebugAttachCoordinator
from testlaunch.launch import build_launch_spec
from testlaunch.models import (
    ExecutorConfig,
    LaunchSpec,
    MessageLevel,
    OutcomeStatus,
    RunContext,
    TestIdentifier,
    TestOutcome,
)
from testlaunch.ports import NoFreePortError, allocate_handshake
from testlaunch.process import LaunchError, start_process
from testlaunch.recorder import OutcomeRecorder, derive_status
from testlaunch.settings import SettingsCache, SettingsResolver

if TYPE_CHECKING:
    from testlaunch.recorder import ResultSink

logger = logging.getLogger(__name__)


class Discoverer(Protocol):
    """Enumerates the tests contained in a set of sources."""

    def discover(self, sources: Iterable[str]) -> list[TestIdentifier]: ...


# ---------------------------------------------------------------------------
# Environment variable support
# ---------------------------------------------------------------------------

_ENV_FIELD_MAP: dict[str, str] = {
    "TESTLAUNCH_LOG_LEVEL": "log_level",
    "TESTLAUNCH_LAUNCHER": "launcher_path",
    "TESTLAUNCH_POLL_INTERVAL": "poll_interval_seconds",
}
"""Maps environment variable names to ExecutorConfig field names."""


def apply_env_overrides(config: ExecutorConfig) -> ExecutorConfig:
    """Apply ``TESTLAUNCH_*`` env var overrides to a config.

    Environment variables override **default** field values only; a field
    whose value differs from the ``ExecutorConfig`` default is left alone.
    Unparseable values are ignored.

    Args:
        config: The executor configuration to apply overrides to.

    Returns:
        A new ``ExecutorConfig`` with env var overrides applied.
    """
    defaults = ExecutorConfig()
    overrides: dict[str, Any] = {}

    for env_var, field_name in _ENV_FIELD_MAP.items():
        env_value = os.environ.get(env_var)
        if env_value is None:
            continue

        if getattr(config, field_name) != getattr(defaults, field_name):
            continue

        parsed = _parse_env_value(field_name, env_value)
        if parsed is not None:
            overrides[field_name] = parsed

    if not overrides:
        return config

    return config.model_copy(update=overrides)


def _parse_env_value(field_name: str, raw: str) -> Any:
    """Parse a raw env var string for *field_name*, or ``None`` if invalid."""
    if field_name in ("log_level", "launcher_path"):
        return raw or None

    if field_name == "poll_interval_seconds":
        try:
            value = float(raw)
        except ValueError:
            return None
        if value <= 0:
            return None
        return value

    return None


# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"
_CONSOLE_HANDLER_NAME = "testlaunch-console"
_FILE_HANDLER_PREFIX = "testlaunch-file:"


def _named_handler(pkg_logger: logging.Logger, name: str) -> logging.Handler | None:
    return next((h for h in pkg_logger.handlers if h.get_name() == name), None)


def configure_logging(config: ExecutorConfig) -> logging.Logger:
    """Configure the ``"testlaunch"`` logger.

    The console handler writes to stderr at ``config.log_level`` so that
    stdout stays free for the run summary. When ``config.log_file`` is set,
    a file handler additionally records everything down to DEBUG, which
    includes the launch details of every test. Handlers are identified by
    name, so repeated calls only adjust levels.

    Args:
        config: Configuration providing ``log_level`` and ``log_file``.

    Returns:
        The configured package logger.
    """
    level = logging.getLevelName(config.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    pkg_logger = logging.getLogger("testlaunch")
    formatter = logging.Formatter(_LOG_FORMAT)

    console = _named_handler(pkg_logger, _CONSOLE_HANDLER_NAME)
    if console is None:
        console = logging.StreamHandler(sys.stderr)
        console.set_name(_CONSOLE_HANDLER_NAME)
        console.setFormatter(formatter)
        pkg_logger.addHandler(console)
    console.setLevel(level)
    pkg_logger.setLevel(level)

    if config.log_file is not None:
        path = str(Path(config.log_file).resolve())
        name = f"{_FILE_HANDLER_PREFIX}{path}"
        if _named_handler(pkg_logger, name) is None:
            file_handler = logging.FileHandler(path, encoding="utf-8")
            file_handler.set_name(name)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            pkg_logger.addHandler(file_handler)
        pkg_logger.setLevel(logging.DEBUG)

    return pkg_logger


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


def _unresolved_message(source: str) -> str:
    return f"Unable to determine interpreter to use for {source}"


class TestExecutor:
    """Runs tests in isolated interpreter processes.

    One executor may run many batches, one at a time. Each batch gets its
    own ``CancellationToken`` and its own ``SettingsCache``.

    Usage::

        executor = TestExecutor(ExecutorConfig())
        sink = CollectingResultSink()
        executor.run_tests_sync(tests, RunContext(), sink)
    """

    __test__ = False

    def __init__(
        self,
        config: ExecutorConfig | None = None,
        *,
        resolver: SettingsResolver | None = None,
    ) -> None:
        self.config = config if config is not None else ExecutorConfig()
        self._resolver = resolver if resolver is not None else SettingsResolver()
        self._token: CancellationToken | None = None

    @property
    def token(self) -> CancellationToken | None:
        """Cancellation token of the current (or last) batch."""
        return self._token

    def cancel(self) -> None:
        """Request cancellation of the running batch. Thread-safe."""
        if self._token is not None:
            logger.info("Cancellation requested")
            self._token.cancel()

    def _begin(self, token: CancellationToken | None) -> CancellationToken:
        self._token = token if token is not None else CancellationToken()
        return self._token

    async def run_sources(
        self,
        sources: Iterable[str],
        discoverer: Discoverer,
        context: RunContext,
        sink: ResultSink,
        token: CancellationToken | None = None,
    ) -> None:
        """Discover the tests in *sources* once, then run them.

        Args:
            sources: Source paths handed to the discoverer.
            discoverer: Discovery collaborator.
            context: Run flags for the batch.
            sink: Receives results and messages.
            token: Cancellation token for the batch. A fresh one is created
                when ``None``.
        """
        token = self._begin(token)
        tests = discoverer.discover(sources)
        logger.info("Discovered %d test(s)", len(tests))
        if token.cancelled:
            return
        await self._run_test_cases(tests, context, sink, token)

    async def run_tests(
        self,
        tests: Iterable[TestIdentifier],
        context: RunContext,
        sink: ResultSink,
        token: CancellationToken | None = None,
    ) -> None:
        """Run *tests* sequentially, reporting each outcome to *sink*.

        Args:
            tests: Tests to run, in order.
            context: Run flags for the batch.
            sink: Receives results and messages.
            token: Cancellation token for the batch. A fresh one is created
                when ``None``.
        """
        token = self._begin(token)
        await self._run_test_cases(tests, context, sink, token)

    def run_tests_sync(
        self,
        tests: Iterable[TestIdentifier],
        context: RunContext,
        sink: ResultSink,
        token: CancellationToken | None = None,
    ) -> None:
        """Synchronous wrapper for :meth:`run_tests` via ``asyncio.run()``."""
        asyncio.run(self.run_tests(tests, context, sink, token))

    def run_sources_sync(
        self,
        sources: Iterable[str],
        discoverer: Discoverer,
        context: RunContext,
        sink: ResultSink,
        token: CancellationToken | None = None,
    ) -> None:
        """Synchronous wrapper for :meth:`run_sources` via ``asyncio.run()``."""
        asyncio.run(self.run_sources(sources, discoverer, context, sink, token))

    async def _run_test_cases(
        self,
        tests: Iterable[TestIdentifier],
        context: RunContext,
        sink: ResultSink,
        token: CancellationToken,
    ) -> None:
        settings_cache = SettingsCache(self._resolver)
        coordinator: DebugAttachCoordinator | None = None
        if context.debugging:
            coordinator = DebugAttachCoordinator(
                context.debugger_host,
                sink,
                transport_id=self.config.debug_transport_id,
                poll_interval=self.config.poll_interval_seconds,
            )

        for test in tests:
            if token.cancelled:
                logger.info("Batch cancelled before %s", test)
                break

            try:
                await self._run_test_case(test, sink, token, settings_cache, coordinator)
            except Exception as exc:
                logger.exception("Unexpected error while running %s", test)
                sink.send_message(MessageLevel.ERROR, "".join(traceback.format_exception(exc)))

    def _fail(self, recorder: OutcomeRecorder, sink: ResultSink, message: str) -> None:
        sink.send_message(MessageLevel.ERROR, message)
        recorder.finalize(OutcomeStatus.FAILED, stderr=message)

    def _report_launch(self, spec: LaunchSpec, sink: ResultSink) -> None:
        lines = [f"cd {spec.working_directory}"]
        lines.extend(f"set {name}={value}" for name, value in spec.environment.items())
        lines.append(f"{spec.executable_path} {spec.command_line}")
        for line in lines:
            logger.debug("%s", line)
            if self.config.verbose_launch:
                sink.send_message(MessageLevel.INFORMATIONAL, line)

    async def _run_test_case(
        self,
        test: TestIdentifier,
        sink: ResultSink,
        token: CancellationToken,
        settings_cache: SettingsCache,
        coordinator: DebugAttachCoordinator | None,
    ) -> None:
        recorder = OutcomeRecorder(test, sink)
        recorder.start()

        resolution = settings_cache.get(test.source)
        if not resolution.ok or resolution.settings is None:
            self._fail(recorder, sink, _unresolved_message(test.source))
            return

        handshake = None
        if coordinator is not None:
            await coordinator.prepare()
            try:
                handshake = allocate_handshake(
                    range_start=self.config.port_range_start,
                    range_end=self.config.port_range_end,
                )
            except NoFreePortError as exc:
                self._fail(recorder, sink, str(exc))
                return

        spec = build_launch_spec(test, resolution.settings, self.config, handshake)
        self._report_launch(spec, sink)

        try:
            process = await start_process(spec)
        except LaunchError as exc:
            self._fail(recorder, sink, str(exc))
            return

        async with process:
            failed = False
            if coordinator is not None and handshake is not None:
                result = await coordinator.attach(process, handshake, token)
                if result.state is AttachState.CANCELLED:
                    process.kill()
                    logger.info("Abandoned %s during debug attach", test)
                    return
                failed = result.failed

            if failed:
                await process.wait()
            elif await wait_for_exit_or_cancel(process, token) is WaitResult.CANCELLED:
                process.kill()
                logger.info("Abandoned %s; killed pid %d", test, process.pid)
                return

            # A process the executor or the coordinator killed never passes.
            recorder.finalize(
                derive_status(process.exit_code, failed or process.kill_requested),
                process.stdout_text,
                process.stderr_text,
            )


def summarize(outcomes: Sequence[TestOutcome]) -> dict[str, int]:
    """Count outcomes per status."""
    counts = {status.value: 0 for status in OutcomeStatus}
    for outcome in outcomes:
        counts[outcome.status.value] += 1
    return counts
