"""Tests for launch specification building in ``testlaunch.launch``."""

from __future__ import annotations

import os

import pytest
from testlaunch.launch import (
    build_launch_spec,
    debug_arguments,
    interpreter_arguments,
    resolve_working_directory,
)
from testlaunch.models import DebugHandshake, TestIdentifier

from tests.conftest import make_config, make_settings, make_test_id

_PROJ = os.path.abspath("/proj")


@pytest.mark.unit
class TestResolveWorkingDirectory:
    """The test's working directory is its source file's directory."""

    def test_relative_source_resolved_against_working_dir(self) -> None:
        """A relative source file is joined onto the project working dir."""
        test = make_test_id(source_file="tests/test_mod.py")
        result = resolve_working_directory(test, make_settings(working_dir=_PROJ))
        assert result == os.path.join(_PROJ, "tests")

    def test_absolute_source_kept(self) -> None:
        """An absolute source file ignores the project working dir."""
        source = os.path.abspath("/elsewhere/test_mod.py")
        test = make_test_id(source_file=source)
        result = resolve_working_directory(test, make_settings(working_dir=_PROJ))
        assert result == os.path.dirname(source)


@pytest.mark.unit
class TestArguments:
    """Interpreter and debug argument lists."""

    def test_interpreter_arguments(self) -> None:
        """Module name comes from the file stem, test from Class.method."""
        test = make_test_id(source_file="pkg/test_mod.py", class_name="C", method_name="test_x")
        assert interpreter_arguments(test, "/l/launcher.py") == [
            "/l/launcher.py",
            "-m",
            "test_mod",
            "-t",
            "C.test_x",
        ]

    def test_debug_arguments(self) -> None:
        """Secret and port are passed as -s and -p."""
        handshake = DebugHandshake(secret="abc", port=50001)
        assert debug_arguments(handshake) == ["-s", "abc", "-p", "50001"]

    def test_malformed_name_raises(self) -> None:
        """A malformed test name propagates ValueError."""
        test = TestIdentifier(fully_qualified_name="no_separators", source="p")
        with pytest.raises(ValueError, match="Malformed"):
            build_launch_spec(test, make_settings(), make_config())


@pytest.mark.unit
class TestBuildLaunchSpec:
    """build_launch_spec assembles the full launch description."""

    def test_plain_run_in_subdirectory(self) -> None:
        """The project working dir is prepended when the test runs elsewhere."""
        config = make_config(launcher_path="/l/launcher.py")
        settings = make_settings(working_dir=_PROJ, search_path="/lib")
        spec = build_launch_spec(make_test_id(), settings, config)
        assert spec.executable_path == settings.interpreter_path
        assert spec.working_directory == os.path.join(_PROJ, "tests")
        assert spec.arguments == ["/l/launcher.py", "-m", "test_mod", "-t", "ClassA.test_ok"]
        assert spec.environment == {"PYTHONPATH": os.pathsep.join([_PROJ, "/lib"])}

    def test_same_directory_not_prepended(self) -> None:
        """A test in the working dir itself only gets the configured entries."""
        test = make_test_id(source_file="test_mod.py")
        spec = build_launch_spec(test, make_settings(working_dir=_PROJ, search_path="/lib"), make_config())
        assert spec.working_directory == _PROJ
        assert spec.environment == {"PYTHONPATH": "/lib"}

    def test_empty_search_path(self) -> None:
        """No entries at all produce an empty variable."""
        test = make_test_id(source_file="test_mod.py")
        spec = build_launch_spec(test, make_settings(working_dir=_PROJ), make_config())
        assert spec.environment == {"PYTHONPATH": ""}

    def test_debug_run_appends_debugger_path_and_arguments(self) -> None:
        """A handshake adds the debugger path last and the -s/-p arguments."""
        config = make_config(debugger_search_path="/dbg")
        handshake = DebugHandshake(secret="sec", port=50123)
        spec = build_launch_spec(make_test_id(), make_settings(working_dir=_PROJ), config, handshake)
        assert spec.arguments[-4:] == ["-s", "sec", "-p", "50123"]
        assert spec.environment["PYTHONPATH"].split(os.pathsep) == [_PROJ, "/dbg"]

    def test_interpreter_variable_name_used(self) -> None:
        """The interpreter's path variable names the environment entry."""
        settings = make_settings(path_env_var="IRONPYTHONPATH")
        spec = build_launch_spec(make_test_id(), settings, make_config())
        assert set(spec.environment) == {"IRONPYTHONPATH"}

    def test_config_default_variable_when_blank(self) -> None:
        """A blank interpreter variable falls back to the configured default."""
        settings = make_settings(path_env_var="")
        spec = build_launch_spec(make_test_id(), settings, make_config(default_path_env_var="MYPATH"))
        assert set(spec.environment) == {"MYPATH"}

    def test_windowed_interpreter_selected(self) -> None:
        """Windows applications launch the windowed interpreter."""
        settings = make_settings(
            interpreter_path="python", windows_interpreter_path="pythonw", is_windows_application=True
        )
        spec = build_launch_spec(make_test_id(), settings, make_config())
        assert spec.executable_path == "pythonw"

    def test_settings_search_path_untouched(self) -> None:
        """Building a spec does not mutate the settings."""
        settings = make_settings(working_dir=_PROJ, search_path="/lib")
        build_launch_spec(make_test_id(), settings, make_config(), DebugHandshake(secret="s", port=50000))
        assert settings.search_path_entries == ["/lib"]
