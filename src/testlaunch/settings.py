"""Settings resolution: project file -> interpreter and path settings.

``SettingsResolver`` turns a project path into ``ProjectSettings`` through a
``ProjectCollection``. ``SettingsCache`` memoizes one resolution per project
for the lifetime of a batch.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum
import logging
import os

from pydantic import BaseModel, ConfigDict

from testlaunch.models import ProjectSettings
from testlaunch.project import (
    IS_WINDOWS_APPLICATION_SETTING,
    PROJECT_HOME_SETTING,
    SEARCH_PATH_SETTING,
    WORKING_DIRECTORY_SETTING,
    InterpreterMetadataError,
    ProjectCollection,
    ProjectLoadError,
    YamlProjectCollection,
)

logger = logging.getLogger(__name__)


class ResolutionStatus(StrEnum):
    """Outcome kind of a settings resolution."""

    OK = "ok"
    NO_INTERPRETER = "no_interpreter"
    RECOVERABLE_PARSE_ERROR = "recoverable_parse_error"


class SettingsResolution(BaseModel):
    """Result of resolving one project.

    Attributes:
        source: The project path that was resolved.
        status: Resolution outcome kind.
        settings: Resolved settings, set only when ``status`` is ``OK``.
        detail: Human-readable reason for a non-OK status.
    """

    model_config = ConfigDict(frozen=True)

    source: str
    status: ResolutionStatus
    settings: ProjectSettings | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is ResolutionStatus.OK and self.settings is not None


def _full_path(base: str, relative: str | None) -> str:
    return os.path.abspath(os.path.join(base, relative or "."))


def _parse_bool(value: str | None) -> bool:
    return value is not None and value.strip().lower() == "true"


class SettingsResolver:
    """Resolves the execution settings of a project.

    Stateless per call: every ``resolve`` opens a fresh collection from
    *collection_factory* and unloads it before returning.
    """

    def __init__(
        self,
        collection_factory: Callable[[], ProjectCollection] = YamlProjectCollection,
    ) -> None:
        self._collection_factory = collection_factory

    def resolve(self, source: str) -> SettingsResolution:
        """Load *source*, pick its active interpreter and compute paths.

        ``InterpreterMetadataError`` during interpreter discovery is not
        fatal: resolution continues with the interpreters discovered so far.

        Args:
            source: Project file path.

        Returns:
            A ``SettingsResolution``. Non-OK statuses mean no usable
            interpreter could be determined.
        """
        collection = self._collection_factory()
        try:
            try:
                project = collection.load_project(source)
            except ProjectLoadError as exc:
                logger.warning("Cannot load project %s: %s", source, exc)
                return SettingsResolution(
                    source=source,
                    status=ResolutionStatus.RECOVERABLE_PARSE_ERROR,
                    detail=str(exc),
                )

            parse_error: str | None = None
            try:
                project.discover_interpreters()
            except InterpreterMetadataError as exc:
                logger.debug("Ignoring interpreter metadata error in %s: %s", source, exc)
                parse_error = str(exc)

            interpreter = project.active_interpreter
            if interpreter is None:
                if parse_error is not None:
                    return SettingsResolution(
                        source=source,
                        status=ResolutionStatus.RECOVERABLE_PARSE_ERROR,
                        detail=parse_error,
                    )
                return SettingsResolution(
                    source=source,
                    status=ResolutionStatus.NO_INTERPRETER,
                    detail=f"No interpreter configured for {source}",
                )

            project_home = _full_path(
                project.directory, project.get_property(PROJECT_HOME_SETTING)
            )
            working_dir = _full_path(
                project_home, project.get_property(WORKING_DIRECTORY_SETTING)
            )
            search_path = ";".join(
                _full_path(project_home, entry)
                for entry in (project.get_property(SEARCH_PATH_SETTING) or "").split(";")
                if entry
            )

            settings = ProjectSettings(
                interpreter_path=interpreter.interpreter_path,
                windows_interpreter_path=interpreter.windows_interpreter_path,
                is_windows_application=_parse_bool(
                    project.get_property(IS_WINDOWS_APPLICATION_SETTING)
                ),
                working_dir=working_dir,
                search_path=search_path,
                path_env_var=interpreter.path_env_var,
            )
            logger.debug(
                "Resolved %s: interpreter=%s working_dir=%s",
                source,
                settings.executable_path,
                settings.working_dir,
            )
            return SettingsResolution(
                source=source, status=ResolutionStatus.OK, settings=settings
            )
        finally:
            collection.unload_all()


class SettingsCache:
    """Memoizes ``SettingsResolver.resolve`` per project path for one batch.

    Failed resolutions are cached as well, so a broken project is reported
    once per test but loaded only once per batch.
    """

    def __init__(self, resolver: SettingsResolver) -> None:
        self._resolver = resolver
        self._resolutions: dict[str, SettingsResolution] = {}

    def get(self, source: str) -> SettingsResolution:
        resolution = self._resolutions.get(source)
        if resolution is None:
            resolution = self._resolver.resolve(source)
            self._resolutions[source] = resolution
        return resolution

    def __contains__(self, source: object) -> bool:
        return source in self._resolutions

    def __len__(self) -> int:
        return len(self._resolutions)
