"""Governed tools: filesystem, git, exec, test runner, artifact publish."""

from shipmachine.tools.exec import ExecResult, ExecTool
from shipmachine.tools.fs import FilesystemTool
from shipmachine.tools.git import GitTool
from shipmachine.tools.pr import ArtifactPublishTool, Bundle, BundleArtifacts
from shipmachine.tools.tests import SuiteResult, TestRunnerTool

__all__ = [
    "ArtifactPublishTool",
    "Bundle",
    "BundleArtifacts",
    "ExecResult",
    "ExecTool",
    "FilesystemTool",
    "GitTool",
    "SuiteResult",
    "TestRunnerTool",
]
