"""Core data models for testlaunch.

Defines the frozen Pydantic models and enums shared by every stage of a
batch: test identifiers, resolved project settings, launch specifications,
debug handshakes, outcomes and the executor configuration.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_PACKAGE_DIR: Path = Path(__file__).parent

DEFAULT_LAUNCHER_PATH: str = str(_PACKAGE_DIR / "launcher.py")
"""Launcher script executed by the child interpreter for every test."""

DEFAULT_DEBUGGER_SEARCH_PATH: str = str(_PACKAGE_DIR.parent)
"""Search-path entry that makes ``testlaunch`` importable in a debuggee."""

PYTHON_REMOTE_DEBUG_TRANSPORT_ID = "{FEB76325-D127-4E02-B59D-B16D93D46CF5}"
"""Transport identifier of the unsecured Python remote-debug port supplier."""

FQN_SEPARATOR = "::"


class TestLaunchError(Exception):
    """Base class for errors raised by testlaunch."""

    __test__ = False


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class OutcomeStatus(StrEnum):
    """Final status of a completed test."""

    PASSED = "passed"
    FAILED = "failed"


class MessageCategory(StrEnum):
    """Category of a message attached to a ``TestOutcome``."""

    STDOUT = "stdout"
    STDERR = "stderr"
    ADDITIONAL_INFO = "additional_info"


class MessageLevel(StrEnum):
    """Severity of a free-form message sent to the result sink."""

    INFORMATIONAL = "informational"
    WARNING = "warning"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Test identity and project settings
# ---------------------------------------------------------------------------


class TestIdentifier(BaseModel):
    """Fully qualified identity of a single test.

    The name has the form ``<source file>::<class>::<method>``. The source
    file may be absolute or relative to the project's working directory.

    Attributes:
        fully_qualified_name: Encoded ``file::Class::method`` name.
        source: Path of the project file the test originates from. Used as
            the key of the per-batch settings cache.
    """

    __test__ = False

    model_config = ConfigDict(frozen=True)

    fully_qualified_name: str
    source: str

    def parse(self) -> tuple[str, str, str]:
        """Split the fully qualified name into its components.

        Returns:
            A ``(source_file, class_name, method_name)`` tuple.

        Raises:
            ValueError: If the name does not have exactly three non-empty
                components.
        """
        parts = self.fully_qualified_name.rsplit(FQN_SEPARATOR, 2)
        if len(parts) != 3 or not all(parts):
            msg = f"Malformed test name: {self.fully_qualified_name!r}"
            raise ValueError(msg)
        source_file, class_name, method_name = parts
        return source_file, class_name, method_name

    @classmethod
    def from_parts(
        cls,
        source_file: str,
        class_name: str,
        method_name: str,
        *,
        source: str,
    ) -> TestIdentifier:
        """Build an identifier from its components."""
        name = FQN_SEPARATOR.join((source_file, class_name, method_name))
        return cls(fully_qualified_name=name, source=source)

    def __str__(self) -> str:
        return self.fully_qualified_name


class InterpreterConfiguration(BaseModel):
    """An interpreter known to a project.

    Attributes:
        id: Identifier the project uses to select the interpreter.
        interpreter_path: Console interpreter executable.
        windows_interpreter_path: Windowed (GUI) interpreter executable.
            Falls back to ``interpreter_path`` when not given.
        path_env_var: Environment variable carrying the module search path.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    interpreter_path: str
    windows_interpreter_path: str = ""
    path_env_var: str = "PYTHONPATH"

    @field_validator("id", "interpreter_path")
    @classmethod
    def _must_be_nonempty(cls, v: str) -> str:
        """Validate that identifying fields are not blank."""
        if not v.strip():
            msg = "Value must be a non-empty string"
            raise ValueError(msg)
        return v

    @model_validator(mode="before")
    @classmethod
    def _default_windows_path(cls, data: Any) -> Any:
        """Use the console interpreter when no windowed one is configured."""
        if isinstance(data, dict) and not data.get("windows_interpreter_path"):
            data = {**data, "windows_interpreter_path": data.get("interpreter_path", "")}
        return data


class ProjectSettings(BaseModel):
    """Resolved execution settings for every test of one project.

    Attributes:
        interpreter_path: Console interpreter executable.
        windows_interpreter_path: Windowed interpreter executable.
        is_windows_application: Launch with the windowed interpreter.
        working_dir: Absolute project working directory.
        search_path: Semicolon-joined absolute search-path entries.
        path_env_var: Environment variable carrying the search path.
    """

    model_config = ConfigDict(frozen=True)

    interpreter_path: str
    windows_interpreter_path: str
    is_windows_application: bool = False
    working_dir: str
    search_path: str = ""
    path_env_var: str = "PYTHONPATH"

    @property
    def executable_path(self) -> str:
        """Interpreter used to launch tests of this project."""
        if self.is_windows_application:
            return self.windows_interpreter_path
        return self.interpreter_path

    @property
    def search_path_entries(self) -> list[str]:
        """``search_path`` split into its non-empty entries."""
        return [entry for entry in self.search_path.split(";") if entry]


# ---------------------------------------------------------------------------
# Per-test launch data
# ---------------------------------------------------------------------------


class LaunchSpec(BaseModel):
    """Command line, working directory and environment for one test process.

    Attributes:
        executable_path: Interpreter executable.
        arguments: Arguments passed to the interpreter.
        working_directory: Directory the process starts in.
        environment: Variables added to the inherited environment.
    """

    model_config = ConfigDict(frozen=True)

    executable_path: str
    arguments: list[str]
    working_directory: str
    environment: dict[str, str] = {}

    @property
    def command_line(self) -> str:
        """Space-joined argument list, for diagnostics only."""
        return " ".join(self.arguments)


class DebugHandshake(BaseModel):
    """Secret and port a debugger host uses to reach a fresh test process."""

    model_config = ConfigDict(frozen=True)

    secret: str = Field(repr=False)
    port: int = Field(ge=1, le=65535)


class ResultMessage(BaseModel):
    """Captured text attached to a test outcome."""

    model_config = ConfigDict(frozen=True)

    category: MessageCategory
    text: str


class TestOutcome(BaseModel):
    """Finalized result of one test, handed to the sink exactly once.

    Attributes:
        test: The test the outcome belongs to.
        status: Passed or failed.
        start_time: When the test started.
        end_time: When the outcome was finalized.
        duration: ``end_time - start_time``.
        messages: Captured stdout, stderr and additional information.
    """

    __test__ = False

    model_config = ConfigDict(frozen=True)

    test: TestIdentifier
    status: OutcomeStatus
    start_time: datetime
    end_time: datetime
    duration: timedelta
    messages: list[ResultMessage] = []

    def message_text(self, category: MessageCategory) -> str:
        """Return the text of the first message with *category*, or ``""``."""
        for message in self.messages:
            if message.category == category:
                return message.text
        return ""

    @property
    def stdout(self) -> str:
        """Captured standard output."""
        return self.message_text(MessageCategory.STDOUT)

    @property
    def stderr(self) -> str:
        """Captured standard error."""
        return self.message_text(MessageCategory.STDERR)


class RunContext(BaseModel):
    """Per-batch run flags supplied by the caller.

    Attributes:
        is_being_debugged: The batch was started under a debugger.
        debugger_host: Handle to the debugger host. Without one, debugging
            is silently disabled for the batch.
    """

    model_config = ConfigDict(frozen=True)

    is_being_debugged: bool = False
    debugger_host: Any = None

    @property
    def debugging(self) -> bool:
        """Whether tests of this batch are launched for debugger attach."""
        return self.is_being_debugged and self.debugger_host is not None


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ExecutorConfig(BaseModel):
    """Executor configuration.

    Attributes:
        launcher_path: Script the interpreter runs for every test.
        debugger_search_path: Search-path entry appended in debug runs.
        debug_transport_id: Transport the debugger host attaches through.
        poll_interval_seconds: Early-exit check and attach retry interval.
        default_path_env_var: Search-path variable when the interpreter
            does not name one.
        port_range_start: First port considered for debug attach.
        port_range_end: Last port considered for debug attach.
        verbose_launch: Send working directory, search path and command
            line to the sink as informational messages.
        log_level: Logging level string.
        log_file: Optional log file path.
    """

    model_config = ConfigDict(frozen=True)

    launcher_path: str = DEFAULT_LAUNCHER_PATH
    debugger_search_path: str = DEFAULT_DEBUGGER_SEARCH_PATH
    debug_transport_id: str = PYTHON_REMOTE_DEBUG_TRANSPORT_ID
    poll_interval_seconds: float = 0.5
    default_path_env_var: str = "PYTHONPATH"
    port_range_start: int = 49152
    port_range_end: int = 65535
    verbose_launch: bool = False
    log_level: str = "INFO"
    log_file: str | None = None

    @field_validator("poll_interval_seconds")
    @classmethod
    def _must_be_positive(cls, v: float) -> float:
        """Validate that the poll interval is > 0."""
        if v <= 0:
            msg = "poll_interval_seconds must be > 0"
            raise ValueError(msg)
        return v

    @field_validator("port_range_start", "port_range_end")
    @classmethod
    def _must_be_port(cls, v: int) -> int:
        """Validate that a port bound lies in 1..65535."""
        if not 1 <= v <= 65535:
            msg = f"Port must be in 1..65535, got {v}"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def _check_port_range(self) -> ExecutorConfig:
        """Validate that the port range is not empty."""
        if self.port_range_start > self.port_range_end:
            msg = (
                f"port_range_start ({self.port_range_start}) must not exceed "
                f"port_range_end ({self.port_range_end})"
            )
            raise ValueError(msg)
        return self
