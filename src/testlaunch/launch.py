"""Launch argument builder: test identifier + settings -> ``LaunchSpec``."""

from __future__ import annotations

import os

from testlaunch.models import (
    DebugHandshake,
    ExecutorConfig,
    LaunchSpec,
    ProjectSettings,
    TestIdentifier,
)


def _same_directory(a: str, b: str) -> bool:
    return os.path.normcase(os.path.abspath(a)) == os.path.normcase(os.path.abspath(b))


def resolve_working_directory(test: TestIdentifier, settings: ProjectSettings) -> str:
    """Directory of the test's source file, absolute against the project."""
    source_file, _, _ = test.parse()
    return os.path.dirname(os.path.abspath(os.path.join(settings.working_dir, source_file)))


def interpreter_arguments(test: TestIdentifier, launcher_path: str) -> list[str]:
    """Launcher arguments selecting *test*."""
    source_file, class_name, method_name = test.parse()
    module_name = os.path.splitext(os.path.basename(source_file))[0]
    return [launcher_path, "-m", module_name, "-t", f"{class_name}.{method_name}"]


def debug_arguments(handshake: DebugHandshake) -> list[str]:
    return ["-s", handshake.secret, "-p", str(handshake.port)]


def build_launch_spec(
    test: TestIdentifier,
    settings: ProjectSettings,
    config: ExecutorConfig,
    handshake: DebugHandshake | None = None,
) -> LaunchSpec:
    """Derive the command line, working directory and environment of a test.

    When the test runs from a directory other than the project's working
    directory, the project working directory is prepended to the search
    path so the module under test stays importable. With a *handshake* the
    debugger's search-path entry and the ``-s``/``-p`` arguments are added.

    Args:
        test: The test to launch.
        settings: Resolved settings of the test's project.
        config: Executor configuration.
        handshake: Debug handshake, or ``None`` for a plain run.

    Returns:
        A new ``LaunchSpec``.

    Raises:
        ValueError: If the test name is malformed.
    """
    working_dir = resolve_working_directory(test, settings)
    arguments = interpreter_arguments(test, config.launcher_path)

    search_path = settings.search_path_entries
    if not _same_directory(working_dir, settings.working_dir):
        search_path.insert(0, settings.working_dir)

    if handshake is not None:
        search_path.append(config.debugger_search_path)
        arguments.extend(debug_arguments(handshake))

    env_var = settings.path_env_var or config.default_path_env_var
    return LaunchSpec(
        executable_path=settings.executable_path,
        arguments=arguments,
        working_directory=working_dir,
        environment={env_var: os.pathsep.join(search_path)},
    )
