"""Debug handshake allocation: a random secret and a free local TCP port.

No reservation table is kept. A port is considered free when it does not
appear as a local endpoint in the live TCP connection table at the moment of
the call, so another process may still grab it before the debuggee binds.
The debugger host validates the connection afterwards.
"""

from __future__ import annotations

import base64
from collections.abc import Callable, Iterable
import logging
import secrets

import psutil

from testlaunch.models import DebugHandshake, TestLaunchError

logger = logging.getLogger(__name__)

SECRET_SIZE = 24
DYNAMIC_PORT_START = 49152
DYNAMIC_PORT_END = 65535


class NoFreePortError(TestLaunchError):
    """No debug port could be chosen from the scanned range."""


def generate_secret(size: int = SECRET_SIZE) -> str:
    """Return *size* cryptographically random non-zero bytes, base64 encoded."""
    raw = bytes(secrets.randbelow(255) + 1 for _ in range(size))
    return base64.b64encode(raw).decode("ascii")


def active_tcp_ports() -> set[int]:
    """Local ports of every TCP connection currently known to the OS.

    Raises:
        NoFreePortError: If the connection table cannot be read, for
            instance when the OS denies access to it.
    """
    try:
        connections = psutil.net_connections(kind="tcp")
    except psutil.Error as exc:
        msg = f"Cannot read the TCP connection table: {exc}"
        raise NoFreePortError(msg) from exc
    ports: set[int] = set()
    for conn in connections:
        if conn.laddr:
            ports.add(conn.laddr.port)
    return ports


def find_free_port(
    active_ports: Iterable[int] | None = None,
    *,
    start: int | None = None,
    range_start: int = DYNAMIC_PORT_START,
    range_end: int = DYNAMIC_PORT_END,
) -> int:
    """Find a port in ``[range_start, range_end]`` not used by a TCP connection.

    Scans upward from a random *start* and wraps around to *range_start*.

    Args:
        active_ports: Ports to avoid. Defaults to the live connection table.
        start: First candidate. Random within the range when ``None``.
        range_start: Lowest candidate port.
        range_end: Highest candidate port.

    Returns:
        The first candidate not in *active_ports*.

    Raises:
        NoFreePortError: If every port in the range is in use.
    """
    used = set(active_tcp_ports() if active_ports is None else active_ports)
    span = range_end - range_start + 1
    if start is None:
        start = range_start + secrets.randbelow(span)
    offset = start - range_start
    for step in range(span):
        candidate = range_start + (offset + step) % span
        if candidate not in used:
            return candidate
    msg = f"No free TCP port in {range_start}-{range_end}"
    raise NoFreePortError(msg)


def allocate_handshake(
    *,
    range_start: int = DYNAMIC_PORT_START,
    range_end: int = DYNAMIC_PORT_END,
    connection_table: Callable[[], Iterable[int]] | None = None,
) -> DebugHandshake:
    """Allocate the secret and port for one debug-mode test run.

    Args:
        range_start: Lowest candidate port.
        range_end: Highest candidate port.
        connection_table: Returns the ports in use. Defaults to
            ``active_tcp_ports``.

    Raises:
        NoFreePortError: If no port is available or the connection table
            is unreadable.
    """
    table = connection_table if connection_table is not None else active_tcp_ports
    port = find_free_port(table(), range_start=range_start, range_end=range_end)
    logger.debug("Allocated debug port %d", port)
    return DebugHandshake(secret=generate_secret(), port=port)
