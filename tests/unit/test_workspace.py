"""Unit tests for Workspace: tree rendering, reads, line edits, git degradation."""

from __future__ import annotations

import subprocess
from typing import Any

import pytest

from shipmachine.core.errors import PathNotAllowed, ToolExecutionError
from shipmachine.core.workspace import Workspace
from shipmachine.tools.fs import FilesystemTool
from shipmachine.tools.git import GitTool


@pytest.fixture
def make_workspace(governance, repo, make_runner):
    def _factory(git_runner: Any = None) -> Workspace:
        git = GitTool(governance, runner=git_runner or make_runner())
        return Workspace(repo, FilesystemTool(governance), git)

    return _factory


class TestFileTree:

    def test_layout(self, make_workspace, repo):
        (repo / ".git").mkdir()
        assert make_workspace().file_tree().splitlines() == [
            "├── src/",
            "│   └── core/",
            "│       └── feature.py",
            "├── README.md",
            "└── pyproject.toml",
        ]

    def test_depth_limit(self, make_workspace):
        tree = make_workspace().file_tree(max_depth=0)
        assert "feature.py" not in tree
        assert "src/" in tree


class TestReadWrite:

    def test_missing_file_reads_empty(self, make_workspace):
        assert make_workspace().read_file("nope.py") == ""

    def test_existence_outside_allowlist_is_denied(self, make_workspace):
        with pytest.raises(PathNotAllowed):
            make_workspace().read_file("/etc/does-not-exist.conf")

    def test_relative_paths_resolve_against_repo(self, make_workspace, repo):
        ws = make_workspace()
        written = ws.write_file("docs/notes.md", "hi")
        assert written == repo / "docs" / "notes.md"
        assert ws.read_file("docs/notes.md") == "hi"

    def test_manifest_text(self, make_workspace):
        assert 'name = "demo"' in make_workspace().manifest_text()


class TestApplyEdits:

    @pytest.fixture
    def ws(self, make_workspace, repo) -> Workspace:
        (repo / "abc.txt").write_text("a\nb\nc\n", encoding="utf-8")
        return make_workspace()

    def test_single_replacement(self, ws, repo):
        ws.apply_edits("abc.txt", [{"line_start": 2, "line_end": 2, "new_content": "B"}])
        assert (repo / "abc.txt").read_text(encoding="utf-8") == "a\nB\nc\n"

    def test_edits_apply_bottom_up(self, ws, repo):
        ws.apply_edits(
            "abc.txt",
            [
                {"line_start": 1, "line_end": 1, "new_content": "A"},
                {"line_start": 3, "line_end": 3, "new_content": "C1\nC2"},
            ],
        )
        assert (repo / "abc.txt").read_text(encoding="utf-8") == "A\nb\nC1\nC2\n"

    def test_empty_content_deletes_lines(self, ws, repo):
        ws.apply_edits("abc.txt", [{"line_start": 2, "line_end": 2, "new_content": ""}])
        assert (repo / "abc.txt").read_text(encoding="utf-8") == "a\nc\n"

    def test_missing_file_is_created(self, ws, repo):
        ws.apply_edits("new.py", [{"line_start": 1, "line_end": 1, "new_content": "x = 1"}])
        assert (repo / "new.py").read_text(encoding="utf-8") == "x = 1"

    def test_line_end_defaults_to_line_start(self, ws, repo):
        ws.apply_edits("abc.txt", [{"line_start": 3, "new_content": "C"}])
        assert (repo / "abc.txt").read_text(encoding="utf-8") == "a\nb\nC\n"

    @pytest.mark.parametrize(
        "edit",
        [
            {"line_start": "top", "line_end": 2, "new_content": "x"},
            {"line_start": 1, "line_end": None, "new_content": "x"},
            "replace line 1",
        ],
    )
    def test_malformed_edit_writes_nothing(self, ws, repo, edit):
        valid = {"line_start": 1, "line_end": 1, "new_content": "A"}
        with pytest.raises(ToolExecutionError):
            ws.apply_edits("abc.txt", [valid, edit])
        assert (repo / "abc.txt").read_text(encoding="utf-8") == "a\nb\nc\n"


class TestGitDegradation:

    def test_diff_and_branch_fall_back(self, make_workspace):
        def broken(argv: list[str], **kwargs: Any):
            raise subprocess.TimeoutExpired(argv, 1)

        ws = make_workspace(git_runner=broken)
        assert ws.collect_diff() == ""
        assert ws.current_branch() == "unknown"

    def test_branch(self, make_workspace, make_runner):
        assert make_workspace(git_runner=make_runner(stdout="feature/x\n")).current_branch() == "feature/x"
