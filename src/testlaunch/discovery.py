"""Static test discovery for ``unittest`` style test modules.

Sources are parsed with ``ast`` and never imported, so discovery cannot
execute user code. A test is a ``test*`` method of a class deriving (by name)
from ``TestCase``. Directories are searched recursively for ``test*.py``.
"""

from __future__ import annotations

import ast
from collections.abc import Iterable, Iterator
import logging
from pathlib import Path

from testlaunch.models import TestIdentifier

logger = logging.getLogger(__name__)

_TEST_FILE_GLOB = "test*.py"


def _base_name(node: ast.expr) -> str:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    return ""


def _is_test_case(node: ast.ClassDef) -> bool:
    return any(_base_name(base).endswith("TestCase") for base in node.bases)


def iter_test_methods(tree: ast.Module) -> Iterator[tuple[str, str]]:
    """Yield ``(class_name, method_name)`` for every test method in *tree*."""
    for node in tree.body:
        if not isinstance(node, ast.ClassDef) or not _is_test_case(node):
            continue
        for item in node.body:
            if isinstance(item, ast.FunctionDef | ast.AsyncFunctionDef) and item.name.startswith(
                "test"
            ):
                yield node.name, item.name


class AstTestDiscoverer:
    """Discovers tests in Python sources belonging to one project.

    Args:
        project: Project file the discovered tests are attributed to.
    """

    def __init__(self, project: str) -> None:
        self.project = project

    def _expand(self, sources: Iterable[str]) -> Iterator[Path]:
        for source in sources:
            path = Path(source)
            if path.is_dir():
                yield from sorted(path.rglob(_TEST_FILE_GLOB))
            else:
                yield path

    def discover_file(self, path: Path) -> list[TestIdentifier]:
        try:
            tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
        except (OSError, SyntaxError, UnicodeDecodeError, ValueError) as exc:
            logger.warning("Skipping %s: %s", path, exc)
            return []

        source_file = str(path.resolve())
        return [
            TestIdentifier.from_parts(source_file, class_name, method_name, source=self.project)
            for class_name, method_name in iter_test_methods(tree)
        ]

    def discover(self, sources: Iterable[str]) -> list[TestIdentifier]:
        tests: list[TestIdentifier] = []
        for path in self._expand(sources):
            found = self.discover_file(path)
            logger.debug("Discovered %d test(s) in %s", len(found), path)
            tests.extend(found)
        return tests
