"""Shared fixtures for the testlaunch test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
import logging
from pathlib import Path
import sys
import textwrap
from typing import Any

import pytest
from testlaunch.models import ExecutorConfig, ProjectSettings, TestIdentifier
import yaml

# ---------------------------------------------------------------------------
# Factory functions
# ---------------------------------------------------------------------------


def make_test_id(
    source_file: str = "tests/test_mod.py",
    class_name: str = "ClassA",
    method_name: str = "test_ok",
    source: str = "/proj/project.yaml",
) -> TestIdentifier:
    """Build a TestIdentifier from its components."""
    return TestIdentifier.from_parts(source_file, class_name, method_name, source=source)


def make_settings(**overrides: Any) -> ProjectSettings:
    """Build a valid ProjectSettings with sensible defaults.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed ProjectSettings instance.
    """
    defaults: dict[str, Any] = {
        "interpreter_path": sys.executable,
        "windows_interpreter_path": sys.executable,
        "is_windows_application": False,
        "working_dir": "/proj",
        "search_path": "",
        "path_env_var": "PYTHONPATH",
    }
    defaults.update(overrides)
    return ProjectSettings(**defaults)


def make_config(**overrides: Any) -> ExecutorConfig:
    """Build an ExecutorConfig with a short poll interval for tests."""
    defaults: dict[str, Any] = {"poll_interval_seconds": 0.2}
    defaults.update(overrides)
    return ExecutorConfig(**defaults)


def write_project(
    directory: Path,
    name: str = "project.yaml",
    **fields: Any,
) -> Path:
    """Write a YAML project file using the running interpreter by default."""
    data: dict[str, Any] = {
        "active_interpreter": "current",
        "interpreters": [{"id": "current", "interpreter_path": sys.executable}],
    }
    data.update(fields)
    path = directory / name
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def write_module(directory: Path, name: str, body: str) -> Path:
    """Write a Python module with dedented *body* and return its path."""
    path = directory / f"{name}.py"
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return path


class FakeProcess:
    """Stand-in for ``RunningProcess`` driven by the event loop clock.

    Exits on its own after *exit_after* seconds (never when ``None``) or
    when killed.
    """

    def __init__(
        self,
        exit_after: float | None = None,
        exit_code: int = 0,
        stderr_lines: list[str] | None = None,
    ) -> None:
        loop = asyncio.get_running_loop()
        self.pid = 4242
        self.exited: asyncio.Future[int] = loop.create_future()
        self.stdout_lines: list[str] = []
        self.stderr_lines = list(stderr_lines or [])
        self.kill_calls = 0
        if exit_after is not None:
            loop.call_later(exit_after, self._finish, exit_code)

    def _finish(self, code: int) -> None:
        if not self.exited.done():
            self.exited.set_result(code)

    @property
    def exit_code(self) -> int | None:
        return self.exited.result() if self.exited.done() else None

    async def wait(self, timeout: float | None = None) -> bool:
        if not self.exited.done():
            await asyncio.wait({self.exited}, timeout=timeout)
        return self.exited.done()

    def kill(self) -> None:
        self.kill_calls += 1
        self._finish(-9)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def project_dir(tmp_path: Path) -> Path:
    """Provide a project directory containing ``project.yaml``.

    The project uses the running interpreter and its working directory is
    the project directory itself.
    """
    work_dir = tmp_path / "proj"
    work_dir.mkdir()
    write_project(work_dir)
    return work_dir


@pytest.fixture()
def project_file(project_dir: Path) -> str:
    """Absolute path of the project file in ``project_dir``."""
    return str(project_dir / "project.yaml")


@pytest.fixture()
def clean_package_logger() -> Iterator[logging.Logger]:
    """Remove handlers and level changes made to the ``testlaunch`` logger."""
    pkg_logger = logging.getLogger("testlaunch")
    original_handlers = list(pkg_logger.handlers)
    original_level = pkg_logger.level
    yield pkg_logger
    for handler in pkg_logger.handlers[:]:
        if handler not in original_handlers:
            pkg_logger.removeHandler(handler)
            handler.close()
    pkg_logger.setLevel(original_level)
