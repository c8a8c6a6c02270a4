"""Project model collaborator: interfaces and the YAML project file backend.

The settings resolver only talks to the ``ProjectCollection`` and
``ProjectModel`` protocols. ``YamlProjectCollection`` is the backend used by
the command line tool; embedding applications may supply their own.

A project file looks like::

    project_home: .
    working_directory: .
    search_path: lib;vendor
    is_windows_application: false
    active_interpreter: py312
    interpreters:
      - id: py312
        interpreter_path: /usr/bin/python3.12
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError
import yaml

from testlaunch.models import InterpreterConfiguration, TestLaunchError

logger = logging.getLogger(__name__)

# Property names understood by the settings resolver.
PROJECT_HOME_SETTING = "project_home"
WORKING_DIRECTORY_SETTING = "working_directory"
SEARCH_PATH_SETTING = "search_path"
IS_WINDOWS_APPLICATION_SETTING = "is_windows_application"
ACTIVE_INTERPRETER_SETTING = "active_interpreter"


class ProjectLoadError(TestLaunchError):
    """The project file is missing or cannot be parsed."""


class InterpreterMetadataError(TestLaunchError):
    """Interpreter metadata in a project is malformed.

    Raised by ``ProjectModel.discover_interpreters`` after every valid
    interpreter has been registered, so callers may carry on with a
    partial result.
    """


class ProjectModel(Protocol):
    """A loaded project."""

    @property
    def directory(self) -> str:
        """Absolute directory containing the project file."""
        ...

    def get_property(self, name: str) -> str | None:
        """Return a project property as a string, or ``None`` if unset."""
        ...

    def discover_interpreters(self) -> None:
        """Populate the interpreters known to the project.

        Raises:
            InterpreterMetadataError: If some interpreter metadata is invalid.
        """
        ...

    @property
    def active_interpreter(self) -> InterpreterConfiguration | None:
        """The selected interpreter, or ``None`` if there is none."""
        ...


class ProjectCollection(Protocol):
    """Owns loaded projects and the resources they hold."""

    def load_project(self, path: str) -> ProjectModel:
        """Load the project file at *path*.

        Raises:
            ProjectLoadError: If the file is missing or malformed.
        """
        ...

    def unload_all(self) -> None:
        """Release every project loaded through this collection."""
        ...


# ---------------------------------------------------------------------------
# YAML backend
# ---------------------------------------------------------------------------


class YamlProject:
    """A project backed by a YAML mapping."""

    def __init__(self, path: Path, data: dict[str, Any]) -> None:
        self.path = path
        self._data = data
        self._interpreters: dict[str, InterpreterConfiguration] = {}

    @property
    def directory(self) -> str:
        return str(self.path.parent)

    def get_property(self, name: str) -> str | None:
        value = self._data.get(name)
        if value is None:
            return None
        if isinstance(value, bool):
            return str(value).lower()
        if isinstance(value, list):
            return ";".join(str(item) for item in value)
        return str(value)

    @property
    def interpreters(self) -> list[InterpreterConfiguration]:
        return list(self._interpreters.values())

    def discover_interpreters(self) -> None:
        """Register every well-formed entry of the ``interpreters`` list.

        Raises:
            InterpreterMetadataError: If the list or any entry is malformed.
                Valid entries are registered before the error is raised.
        """
        self._interpreters.clear()
        raw = self._data.get("interpreters") or []
        if not isinstance(raw, list):
            msg = f"'interpreters' must be a list in {self.path}"
            raise InterpreterMetadataError(msg)

        problems: list[str] = []
        for index, entry in enumerate(raw):
            if not isinstance(entry, dict):
                problems.append(f"entry {index} is not a mapping")
                continue
            try:
                interpreter = InterpreterConfiguration(**entry)
            except ValidationError as exc:
                problems.append(f"entry {index}: {exc.error_count()} validation error(s)")
                continue
            self._interpreters[interpreter.id] = interpreter

        if problems:
            msg = f"Invalid interpreter metadata in {self.path}: " + "; ".join(problems)
            raise InterpreterMetadataError(msg)

    @property
    def active_interpreter(self) -> InterpreterConfiguration | None:
        active_id = self.get_property(ACTIVE_INTERPRETER_SETTING)
        if active_id:
            return self._interpreters.get(active_id)
        return next(iter(self._interpreters.values()), None)


class YamlProjectCollection:
    """Loads YAML project files and keeps them until ``unload_all``."""

    def __init__(self) -> None:
        self._projects: list[YamlProject] = []

    @property
    def loaded(self) -> list[YamlProject]:
        return list(self._projects)

    def load_project(self, path: str) -> YamlProject:
        """Parse the YAML project file at *path*.

        Args:
            path: Project file path.

        Returns:
            The loaded project.

        Raises:
            ProjectLoadError: If the file does not exist, is not valid YAML
                or does not contain a mapping.
        """
        file_path = Path(path).resolve()
        if not file_path.is_file():
            msg = f"Project file not found: {path}"
            raise ProjectLoadError(msg)

        try:
            with open(file_path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            msg = f"Project file is not valid YAML: {path}"
            raise ProjectLoadError(msg) from exc

        if data is None:
            data = {}
        if not isinstance(data, dict):
            msg = f"Project file must contain a YAML mapping, got {type(data).__name__}"
            raise ProjectLoadError(msg)

        project = YamlProject(file_path, data)
        self._projects.append(project)
        logger.debug("Loaded project %s", file_path)
        return project

    def unload_all(self) -> None:
        self._projects.clear()
