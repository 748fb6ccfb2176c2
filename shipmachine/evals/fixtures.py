"""Eval fixtures — small synthetic repositories with a known objective.

Each fixture writes its files into a fresh temporary directory, optionally
commits them to a new git repository, and knows how to check whether the
objective was met in the source.
"""

from __future__ import annotations

import subprocess
import tempfile
from pathlib import Path

from shipmachine.core.errors import ShipMachineError
from shipmachine.models.evaluation import EvalCheck

_PYTEST_CONFIG = '[tool.pytest.ini_options]\npythonpath = ["."]\n'
_GIT = ["git", "-c", "user.email=eval@shipmachine.local", "-c", "user.name=ShipMachine Eval"]


class EvalFixture:
    """Base class.  Subclasses set the class attributes and ``check_source``."""

    fixture_id: str = ""
    description: str = ""
    objective: str = ""
    objective_type: str = "feature"
    test_command: str = "python -m pytest -q"
    files: dict[str, str] = {}

    def setup(self, root: Path, init_git: bool = True) -> Path:
        root.mkdir(parents=True, exist_ok=True)
        repo = Path(tempfile.mkdtemp(prefix=f"shipmachine-{self.fixture_id}-", dir=root))
        for relative, content in self.files.items():
            target = repo / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        if init_git:
            _commit_all(repo, "Initial commit")
        return repo.resolve()

    def check_source(self, repo: Path) -> EvalCheck:
        raise NotImplementedError

    def _read(self, repo: Path, relative: str) -> str:
        path = repo / relative
        return path.read_text(encoding="utf-8", errors="replace") if path.exists() else ""


def _commit_all(repo: Path, message: str) -> None:
    for args in (["init", "-q"], ["add", "-A"], ["commit", "-q", "-m", message]):
        subprocess.run([*_GIT, *args], cwd=repo, check=True, capture_output=True, text=True)


class SimpleFeatureFixture(EvalFixture):
    fixture_id = "simple-feature"
    description = 'Add a hello() function to utils.py that returns "Hello, World!"'
    objective = (
        "Add a hello() function to utils.py that takes an optional name parameter "
        'and returns "Hello, {name}!", or "Hello, World!" when no name is given. '
        "Add tests for it."
    )
    objective_type = "feature"
    files = {
        "pyproject.toml": '[project]\nname = "fixture-simple-feature"\nversion = "1.0.0"\n\n'
        + _PYTEST_CONFIG,
        "utils.py": (
            '"""Utility functions."""\n\n\n'
            "def add(a, b):\n    return a + b\n\n\n"
            "def multiply(a, b):\n    return a * b\n"
        ),
        "tests/test_utils.py": (
            "from utils import add, multiply\n\n\n"
            "def test_add():\n    assert add(2, 3) == 5\n\n\n"
            "def test_multiply():\n    assert multiply(3, 4) == 12\n"
        ),
    }

    def check_source(self, repo: Path) -> EvalCheck:
        found = "def hello" in self._read(repo, "utils.py")
        return EvalCheck(
            name="hello() added to utils.py",
            passed=found,
            detail="Found def hello in utils.py" if found else "hello() not found in utils.py",
        )


class BugfixFixture(EvalFixture):
    fixture_id = "bugfix"
    description = "Fix the off-by-one error in last_item() in array_utils.py"
    objective = (
        "Fix the off-by-one error in last_item() in array_utils.py. It raises "
        "IndexError instead of returning the last element because it indexes "
        "items[len(items)] instead of items[len(items) - 1]."
    )
    objective_type = "bugfix"
    files = {
        "pyproject.toml": '[project]\nname = "fixture-bugfix"\nversion = "1.0.0"\n\n'
        + _PYTEST_CONFIG,
        "array_utils.py": (
            '"""List helpers."""\n\n\n'
            "def last_item(items):\n"
            "    if not items:\n        return None\n"
            "    return items[len(items)]\n\n\n"
            "def first_item(items):\n"
            "    if not items:\n        return None\n"
            "    return items[0]\n\n\n"
            "def middle_item(items):\n"
            "    if not items:\n        return None\n"
            "    return items[len(items) // 2]\n"
        ),
        "tests/test_array_utils.py": (
            "from array_utils import first_item, last_item, middle_item\n\n\n"
            "def test_last_item():\n    assert last_item([1, 2, 3]) == 3\n\n\n"
            "def test_last_item_single():\n    assert last_item([5]) == 5\n\n\n"
            "def test_last_item_empty():\n    assert last_item([]) is None\n\n\n"
            "def test_first_item():\n    assert first_item([1, 2, 3]) == 1\n\n\n"
            "def test_middle_item():\n    assert middle_item([1, 2, 3]) == 2\n"
        ),
    }

    def check_source(self, repo: Path) -> EvalCheck:
        content = self._read(repo, "array_utils.py")
        fixed = "items[len(items)]" not in content and (
            "items[-1]" in content or "len(items) - 1" in content
        )
        return EvalCheck(
            name="Off-by-one fixed in source",
            passed=fixed,
            detail="Buggy index removed" if fixed else "Bug still present or fix incomplete",
        )


FIXTURES: dict[str, EvalFixture] = {
    f.fixture_id: f for f in (SimpleFeatureFixture(), BugfixFixture())
}


def select_fixtures(fixture_ids: list[str] | None = None) -> list[EvalFixture]:
    """Fixtures by id, in registry order; all of them when *fixture_ids* is empty."""
    if not fixture_ids:
        return list(FIXTURES.values())
    unknown = sorted(set(fixture_ids) - set(FIXTURES))
    if unknown:
        raise ShipMachineError(
            f"No fixtures found matching {', '.join(unknown)}. "
            f"Available: {', '.join(FIXTURES)}"
        )
    return [f for f in FIXTURES.values() if f.fixture_id in fixture_ids]
