"""Cooperative cancellation for a batch of tests.

A ``CancellationToken`` is created per batch. ``cancel()`` may be called from
any thread or from a signal handler; the request is sticky. Coroutines
observe it through ``wait()``, typically raced against a process exit with
``wait_for_exit_or_cancel``.
"""

from __future__ import annotations

import asyncio
import contextlib
from enum import StrEnum
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from testlaunch.process import RunningProcess


class WaitResult(StrEnum):
    """Which side of an any-of wait completed first."""

    EXITED = "exited"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


class CancellationToken:
    """Sticky, thread-safe cancellation signal."""

    def __init__(self) -> None:
        self._flag = threading.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self._flag.is_set()

    def cancel(self) -> None:
        """Request cancellation. Safe to call from any thread, repeatedly."""
        self._flag.set()
        loop, event = self._loop, self._event
        if loop is not None and event is not None:
            # The loop may already be closed once the batch has finished.
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(event.set)

    def _bind(self) -> asyncio.Event:
        if self._event is None:
            self._event = asyncio.Event()
            self._loop = asyncio.get_running_loop()
        # Checked after binding so a concurrent cancel() is never lost.
        if self._flag.is_set():
            self._event.set()
        return self._event

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._bind().wait()


async def wait_for_exit_or_cancel(
    process: RunningProcess,
    token: CancellationToken,
    timeout: float | None = None,
) -> WaitResult:
    """Wait until *process* exits, *token* is cancelled or *timeout* elapses.

    Cancellation wins when both are ready.

    Args:
        process: The running test process.
        token: The batch cancellation token.
        timeout: Seconds to wait, or ``None`` to wait indefinitely.

    Returns:
        The ``WaitResult`` describing what happened first.
    """
    if token.cancelled:
        return WaitResult.CANCELLED

    cancel_task = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait(
            {process.exited, cancel_task},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        cancel_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await cancel_task

    if cancel_task in done or token.cancelled:
        return WaitResult.CANCELLED
    if process.exited in done:
        return WaitResult.EXITED
    return WaitResult.TIMEOUT
