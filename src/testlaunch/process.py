"""Process runner: spawn a test interpreter and capture its output.

Each test runs in its own asyncio subprocess and process group. Standard
output and standard error are drained in chunks and split into lines for
the lifetime of the process. ``RunningProcess`` owns the OS handle and the
readers and releases them on every exit path through ``aclose()`` or
``async with``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import sys
from typing import TYPE_CHECKING

from testlaunch.models import TestLaunchError

if TYPE_CHECKING:
    from types import TracebackType

    from testlaunch.models import LaunchSpec

logger = logging.getLogger(__name__)

_IS_POSIX = sys.platform != "win32"
_READ_CHUNK_SIZE = 65536


class LaunchError(TestLaunchError):
    """The interpreter executable is missing or could not be started."""


def _decode_line(raw: bytes | bytearray) -> str:
    return raw.decode("utf-8", errors="replace").rstrip("\r")


async def _pump_lines(stream: asyncio.StreamReader | None, sink: list[str]) -> None:
    """Append decoded lines from *stream* to *sink* until EOF.

    Reads fixed-size chunks and splits them on newlines, so lines of any
    length are captured and the pipe never stops being drained. A final
    line without a newline is kept.
    """
    if stream is None:
        return
    pending = bytearray()
    while True:
        chunk = await stream.read(_READ_CHUNK_SIZE)
        if not chunk:
            break
        pending += chunk
        *complete, tail = pending.split(b"\n")
        sink.extend(_decode_line(line) for line in complete)
        pending = tail
    if pending:
        sink.append(_decode_line(pending))


class RunningProcess:
    """A started test process with its captured output.

    Attributes:
        pid: OS process id.
        arguments: Full argument vector the process was started with.
        stdout_lines: Lines read from standard output so far.
        stderr_lines: Lines read from standard error so far.
        kill_requested: ``kill()`` was called while the process was alive.
    """

    def __init__(
        self,
        proc: asyncio.subprocess.Process,
        arguments: list[str],
    ) -> None:
        self._proc = proc
        self.pid = proc.pid
        self.arguments = arguments
        self.stdout_lines: list[str] = []
        self.stderr_lines: list[str] = []
        self.kill_requested = False
        self._closed = False
        self._readers = [
            asyncio.ensure_future(_pump_lines(proc.stdout, self.stdout_lines)),
            asyncio.ensure_future(_pump_lines(proc.stderr, self.stderr_lines)),
        ]
        self._exited: asyncio.Future[int] = asyncio.ensure_future(self._wait_exit())

    async def _wait_exit(self) -> int:
        returncode = await self._proc.wait()
        # Readers finish once the pipes reach EOF; gather keeps partial
        # output even if one of them was cancelled by aclose().
        await asyncio.gather(*self._readers, return_exceptions=True)
        return returncode

    @property
    def exited(self) -> asyncio.Future[int]:
        """Completes with the exit code once the process exited and output is drained."""
        return self._exited

    @property
    def exit_code(self) -> int | None:
        """Exit code, or ``None`` while the process is still running."""
        return self._proc.returncode

    @property
    def stdout_text(self) -> str:
        return "".join(f"{line}\n" for line in self.stdout_lines)

    @property
    def stderr_text(self) -> str:
        return "".join(f"{line}\n" for line in self.stderr_lines)

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait up to *timeout* seconds for the process to exit.

        Returns:
            ``True`` if the process has exited.
        """
        if not self._exited.done():
            await asyncio.wait({self._exited}, timeout=timeout)
        return self._exited.done()

    def kill(self) -> None:
        """Forcibly kill the process and its process group.

        Idempotent. A process that already exited is left alone without
        error.
        """
        if self._proc.returncode is not None:
            return
        self.kill_requested = True
        if _IS_POSIX:
            try:
                os.killpg(os.getpgid(self.pid), signal.SIGKILL)
                return
            except (OSError, ProcessLookupError):
                pass
        with contextlib.suppress(ProcessLookupError):
            self._proc.kill()

    async def aclose(self) -> None:
        """Kill the process if alive and release its handle and readers.

        Safe to call repeatedly and after the process has exited.
        """
        if self._closed:
            return
        self._closed = True
        self.kill()
        with contextlib.suppress(Exception):
            await self._proc.wait()
        for reader in self._readers:
            if not reader.done():
                reader.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await self._exited

    async def __aenter__(self) -> RunningProcess:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


async def start_process(spec: LaunchSpec) -> RunningProcess:
    """Start the interpreter described by *spec*.

    The variables in ``spec.environment`` are added to the inherited
    environment.

    Args:
        spec: Launch specification of the test.

    Returns:
        The running process.

    Raises:
        LaunchError: If the executable does not exist or cannot be started.
    """
    if not os.path.isfile(spec.executable_path):
        msg = f"Interpreter path does not exist: {spec.executable_path}"
        raise LaunchError(msg)

    env = dict(os.environ)
    env.update(spec.environment)

    try:
        proc = await asyncio.create_subprocess_exec(
            spec.executable_path,
            *spec.arguments,
            cwd=spec.working_directory,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            start_new_session=_IS_POSIX,
        )
    except OSError as exc:
        msg = f"Failed to start {spec.executable_path}: {exc}"
        raise LaunchError(msg) from exc

    logger.debug("Started pid %d: %s %s", proc.pid, spec.executable_path, spec.command_line)
    return RunningProcess(proc, [spec.executable_path, *spec.arguments])
