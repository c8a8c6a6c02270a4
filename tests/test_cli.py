"""Tests for the CLI entry point in ``testlaunch.cli``.

Covers argument parsing, config loading, target collection, the summary
output and exit codes. End-to-end cases run real tests through the
launcher.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from testlaunch.cli import _build_parser, _collect_tests, _load_yaml, main
import yaml

from tests.conftest import write_module

_MODULE_PATH = "testlaunch.cli"

_SAMPLE = """\
    import unittest


    class ClassA(unittest.TestCase):
        def test_ok(self):
            pass

        def test_fail(self):
            self.fail("no")
"""


@pytest.fixture(autouse=True)
def _isolate_logging(clean_package_logger: object) -> None:
    """Undo the logging setup performed by ``main()``."""


@pytest.fixture()
def cli_project(project_dir: Path) -> Path:
    write_module(project_dir, "test_sample", _SAMPLE)
    return project_dir


# ===========================================================================
# Parsing and helpers
# ===========================================================================


@pytest.mark.unit
class TestParser:
    """Argument parser shape."""

    def test_requires_project(self) -> None:
        """--project is mandatory."""
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["a::B::c"])

    def test_requires_targets(self) -> None:
        """At least one target is mandatory."""
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["--project", "p.yaml"])

    def test_defaults(self) -> None:
        """--config and --verbose default to off."""
        args = _build_parser().parse_args(["--project", "p.yaml", "t.py"])
        assert args.config is None
        assert args.verbose is False
        assert args.targets == ["t.py"]


@pytest.mark.unit
class TestLoadYaml:
    """_load_yaml validation."""

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="config file not found"):
            _load_yaml(str(tmp_path / "none.yaml"), "config")

    def test_non_mapping(self, tmp_path: Path) -> None:
        """A non-mapping document raises ValueError."""
        path = tmp_path / "c.yaml"
        path.write_text("- 1\n", encoding="utf-8")
        with pytest.raises(ValueError, match="YAML mapping"):
            _load_yaml(str(path), "config")

    def test_mapping(self, tmp_path: Path) -> None:
        """A mapping is returned as a dict."""
        path = tmp_path / "c.yaml"
        path.write_text(yaml.safe_dump({"poll_interval_seconds": 0.3}), encoding="utf-8")
        assert _load_yaml(str(path), "config") == {"poll_interval_seconds": 0.3}


@pytest.mark.unit
class TestCollectTests:
    """Targets become test identifiers."""

    def test_qualified_names_kept(self) -> None:
        """Targets with '::' are used as test names verbatim."""
        tests = _collect_tests(["a.py::B::test_c"], "/proj/project.yaml")
        assert [str(t) for t in tests] == ["a.py::B::test_c"]
        assert tests[0].source == "/proj/project.yaml"

    def test_files_discovered(self, cli_project: Path) -> None:
        """Other targets are discovered from source."""
        tests = _collect_tests([str(cli_project / "test_sample.py")], "p")
        assert [t.parse()[2] for t in tests] == ["test_ok", "test_fail"]


# ===========================================================================
# main()
# ===========================================================================


@pytest.mark.integration
class TestMain:
    """End-to-end CLI runs."""

    def test_all_passed_exits_zero(
        self, cli_project: Path, project_file: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Exit code 0 when every requested test passed."""
        code = main(["--project", project_file, "test_sample.py::ClassA::test_ok"])
        out = capsys.readouterr().out
        assert code == 0
        assert "1 passed, 0 failed, 0 not run" in out

    def test_failure_exits_one(
        self, cli_project: Path, project_file: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """A failed test is listed and the exit code is 1."""
        code = main(["--project", project_file, str(cli_project / "test_sample.py")])
        out = capsys.readouterr().out
        assert code == 1
        assert "FAILED" in out
        assert "::ClassA::test_fail" in out
        assert "1 passed, 1 failed, 0 not run" in out

    def test_no_tests_found(
        self, tmp_path: Path, project_file: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """An empty target set is reported and exits 1."""
        empty = tmp_path / "empty"
        empty.mkdir()
        code = main(["--project", project_file, str(empty)])
        assert code == 1
        assert "No tests found." in capsys.readouterr().err

    def test_missing_config_reports_error(
        self, tmp_path: Path, project_file: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Configuration errors are printed and exit 1."""
        code = main(
            ["--project", project_file, "--config", str(tmp_path / "nope.yaml"), "a.py::B::test_c"]
        )
        assert code == 1
        assert capsys.readouterr().err.startswith("Error:")

    def test_invalid_config_value(
        self, tmp_path: Path, project_file: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """A config value rejected by validation is an error."""
        config = tmp_path / "c.yaml"
        config.write_text(yaml.safe_dump({"poll_interval_seconds": 0}), encoding="utf-8")
        code = main(["--project", project_file, "--config", str(config), "a.py::B::test_c"])
        assert code == 1
        assert "poll_interval_seconds" in capsys.readouterr().err

    def test_config_and_verbose_reach_executor(
        self, tmp_path: Path, cli_project: Path, project_file: str
    ) -> None:
        """The loaded config, with --verbose applied, is handed to the executor."""
        config = tmp_path / "c.yaml"
        config.write_text(yaml.safe_dump({"poll_interval_seconds": 0.3}), encoding="utf-8")
        with patch(f"{_MODULE_PATH}.TestExecutor") as executor_cls:
            main(
                [
                    "--project",
                    project_file,
                    "--config",
                    str(config),
                    "--verbose",
                    "test_sample.py::ClassA::test_ok",
                ]
            )
        passed_config = executor_cls.call_args.args[0]
        assert passed_config.poll_interval_seconds == 0.3
        assert passed_config.verbose_launch is True

    def test_unrun_tests_counted(
        self, cli_project: Path, project_file: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Tests without an outcome are reported as not run."""
        with patch(f"{_MODULE_PATH}.TestExecutor") as executor_cls:
            code = main(["--project", project_file, "test_sample.py::ClassA::test_ok"])
        executor_cls.return_value.run_tests_sync.assert_called_once()
        out = capsys.readouterr().out
        assert code == 1
        assert "NOT RUN  test_sample.py::ClassA::test_ok" in out
        assert "0 passed, 0 failed, 1 not run" in out
