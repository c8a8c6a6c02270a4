"""Debug attach coordination for tests launched under a debugger.

The coordinator drives one test process through
``pre_launch -> launched -> attaching -> attached | failed | cancelled``.
Every attach retry is gated by a bounded wait on the process, which doubles
as the liveness check, so the loop never spins.
"""

from __future__ import annotations

from enum import StrEnum
import logging
from typing import TYPE_CHECKING, Protocol

from pydantic import BaseModel, ConfigDict

from testlaunch.cancellation import WaitResult, wait_for_exit_or_cancel
from testlaunch.models import MessageLevel, TestLaunchError

if TYPE_CHECKING:
    from testlaunch.cancellation import CancellationToken
    from testlaunch.models import DebugHandshake
    from testlaunch.process import RunningProcess
    from testlaunch.recorder import ResultSink

logger = logging.getLogger(__name__)

EARLY_EXIT_MESSAGE = "Failed to attach debugger because the process has already exited."
STDERR_HEADER = "Standard error from Python:"
CONNECTION_ERROR_MESSAGE = "Error occurred connecting to debuggee."


class DebuggerHostError(TestLaunchError):
    """The debugger host rejected a request."""


class DebuggerConnectionError(DebuggerHostError):
    """The debugger host could not reach the debuggee. Not retried."""


class DebuggerHost(Protocol):
    """A live debugger that can attach to test processes."""

    async def detach_all(self) -> None:
        """Detach from every process currently being debugged."""
        ...

    async def attach(
        self,
        process: RunningProcess,
        transport_id: str,
        secret: str,
        port: int,
    ) -> bool:
        """Try once to attach to *process*.

        Returns:
            ``True`` once attached, ``False`` if the debuggee is not ready.

        Raises:
            DebuggerConnectionError: If the debuggee cannot be reached.
        """
        ...


class AttachState(StrEnum):
    """States of one debug attach."""

    PRE_LAUNCH = "pre_launch"
    LAUNCHED = "launched"
    ATTACHING = "attaching"
    ATTACHED = "attached"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AttachResult(BaseModel):
    """Final state of a debug attach.

    Attributes:
        state: ``ATTACHED``, ``FAILED`` or ``CANCELLED``.
        attempts: Number of ``attach`` calls made.
    """

    model_config = ConfigDict(frozen=True)

    state: AttachState
    attempts: int = 0

    @property
    def failed(self) -> bool:
        return self.state is AttachState.FAILED


class DebugAttachCoordinator:
    """Binds a debugger host to freshly started test processes."""

    def __init__(
        self,
        host: DebuggerHost,
        sink: ResultSink,
        *,
        transport_id: str,
        poll_interval: float = 0.5,
    ) -> None:
        self._host = host
        self._sink = sink
        self._transport_id = transport_id
        self._poll_interval = poll_interval
        self.state = AttachState.PRE_LAUNCH

    async def prepare(self) -> None:
        """Detach any previous debug session before a new launch."""
        self.state = AttachState.PRE_LAUNCH
        try:
            await self._host.detach_all()
        except DebuggerHostError as exc:
            logger.debug("detach_all failed: %s", exc)

    def _report_early_exit(self, process: RunningProcess) -> None:
        self._sink.send_message(MessageLevel.ERROR, EARLY_EXIT_MESSAGE)
        if process.stderr_lines:
            self._sink.send_message(MessageLevel.ERROR, STDERR_HEADER)
            for line in process.stderr_lines:
                self._sink.send_message(MessageLevel.ERROR, line)

    def _finish(self, state: AttachState, attempts: int) -> AttachResult:
        self.state = state
        logger.debug("Debug attach finished: %s after %d attempt(s)", state, attempts)
        return AttachResult(state=state, attempts=attempts)

    async def attach(
        self,
        process: RunningProcess,
        handshake: DebugHandshake,
        token: CancellationToken,
    ) -> AttachResult:
        """Attach the debugger host to *process*.

        Args:
            process: The freshly started debuggee.
            handshake: Secret and port the debuggee listens with.
            token: Batch cancellation token, observed during every wait.

        Returns:
            The final ``AttachResult``.
        """
        self.state = AttachState.LAUNCHED
        first = await wait_for_exit_or_cancel(process, token, self._poll_interval)
        if first is WaitResult.CANCELLED:
            return self._finish(AttachState.CANCELLED, 0)
        if first is WaitResult.EXITED:
            self._report_early_exit(process)
            return self._finish(AttachState.FAILED, 0)

        self.state = AttachState.ATTACHING
        attempts = 0
        try:
            while True:
                attempts += 1
                if await self._host.attach(
                    process, self._transport_id, handshake.secret, handshake.port
                ):
                    return self._finish(AttachState.ATTACHED, attempts)
                waited = await wait_for_exit_or_cancel(process, token, self._poll_interval)
                if waited is WaitResult.CANCELLED:
                    return self._finish(AttachState.CANCELLED, attempts)
                if waited is WaitResult.EXITED:
                    logger.debug("Debuggee pid %d exited before attach", process.pid)
                    return self._finish(AttachState.FAILED, attempts)
        except DebuggerConnectionError as exc:
            self._sink.send_message(MessageLevel.ERROR, CONNECTION_ERROR_MESSAGE)
            logger.debug("Debugger connection error: %s", exc)
            process.kill()
            return self._finish(AttachState.FAILED, attempts)
