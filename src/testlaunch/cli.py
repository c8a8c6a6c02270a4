"""CLI entry point for testlaunch.

Provides ``main()`` as the console-script entry point registered in
``pyproject.toml`` as ``testlaunch = "testlaunch.cli:main"``. Parses
command-line arguments, loads an optional config YAML file, and runs the
requested tests through ``TestExecutor``.
"""

from __future__ import annotations

import argparse
import contextlib
from pathlib import Path
import signal
import sys
from typing import Any

import yaml

from testlaunch.discovery import AstTestDiscoverer
from testlaunch.executor import TestExecutor, apply_env_overrides, configure_logging, summarize
from testlaunch.models import (
    FQN_SEPARATOR,
    ExecutorConfig,
    OutcomeStatus,
    RunContext,
    TestIdentifier,
)
from testlaunch.recorder import CollectingResultSink, LoggingResultSink


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        Configured ``ArgumentParser``.
    """
    parser = argparse.ArgumentParser(
        prog="testlaunch",
        description="Run unittest tests, one isolated interpreter process per test.",
    )
    parser.add_argument(
        "--project",
        required=True,
        help="Path to the project YAML file that selects the interpreter.",
    )
    parser.add_argument(
        "--config",
        required=False,
        default=None,
        help="Path to an optional ExecutorConfig YAML file.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Report the working directory, search path and command line of every test.",
    )
    parser.add_argument(
        "targets",
        nargs="+",
        help="Test names (file::Class::method) or source files/directories to discover.",
    )
    return parser


def _load_yaml(path: str, label: str) -> dict[str, Any]:
    """Load and validate a YAML file as a dict.

    Args:
        path: File path to the YAML file.
        label: Human-readable label for error messages.

    Returns:
        The parsed YAML content as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file does not parse to a dict.
    """
    file_path = Path(path)
    if not file_path.exists():
        msg = f"{label} file not found: {path}"
        raise FileNotFoundError(msg)

    with open(file_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        msg = f"{label} file must contain a YAML mapping, got {type(data).__name__}"
        raise ValueError(msg)

    return data


def _collect_tests(targets: list[str], project: str) -> list[TestIdentifier]:
    """Turn CLI targets into test identifiers, discovering plain sources."""
    discoverer = AstTestDiscoverer(project)
    tests: list[TestIdentifier] = []
    for target in targets:
        if FQN_SEPARATOR in target:
            tests.append(TestIdentifier(fully_qualified_name=target, source=project))
        else:
            tests.extend(discoverer.discover([target]))
    return tests


def _print_summary(sink: CollectingResultSink, tests: list[TestIdentifier]) -> None:
    """Print failed and unfinished tests plus per-status counts to stdout."""
    counts = summarize(sink.outcomes)
    finished = {outcome.test for outcome in sink.outcomes}
    not_run = [test for test in tests if test not in finished]

    sep = "=" * 60
    print(sep)
    for outcome in sink.outcomes:
        if outcome.status is OutcomeStatus.FAILED:
            print(f"FAILED   {outcome.test}")
    for test in not_run:
        print(f"NOT RUN  {test}")
    print(
        f"{counts[OutcomeStatus.PASSED]} passed, "
        f"{counts[OutcomeStatus.FAILED]} failed, {len(not_run)} not run"
    )
    print(sep)


def main(argv: list[str] | None = None) -> int:
    """Entry point for the testlaunch CLI application.

    Returns:
        Exit code: 0 when every test passed, 1 otherwise.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config_data: dict[str, Any] = {}
        if args.config is not None:
            config_data = _load_yaml(args.config, "config")
        if args.verbose:
            config_data["verbose_launch"] = True
        config = apply_env_overrides(ExecutorConfig(**config_data))
        configure_logging(config)

        project = str(Path(args.project).resolve())
        tests = _collect_tests(args.targets, project)
        if not tests:
            print("No tests found.", file=sys.stderr)
            return 1

        executor = TestExecutor(config)
        sink = CollectingResultSink(forward=LoggingResultSink())

        previous = signal.getsignal(signal.SIGINT)
        signal.signal(signal.SIGINT, lambda *_: executor.cancel())
        try:
            executor.run_tests_sync(tests, RunContext(), sink)
        finally:
            with contextlib.suppress(ValueError):
                signal.signal(signal.SIGINT, previous)

        _print_summary(sink, tests)
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    counts = summarize(sink.outcomes)
    return 0 if counts[OutcomeStatus.PASSED] == len(tests) else 1


if __name__ == "__main__":
    sys.exit(main())
