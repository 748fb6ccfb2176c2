"""Artifact-publish tool: writes the PR bundle directory.

Rendering is plain markdown; content comes straight from the phase outputs.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shipmachine.core.errors import ToolExecutionError
from shipmachine.core.governance import GovernanceEngine
from shipmachine.models.governance import ToolCategory
from shipmachine.tools.base import GovernedTool

logger = logging.getLogger(__name__)

MANIFEST_NAME = "MANIFEST.json"


class BundleArtifacts(BaseModel):
    """Inputs for one bundle.  Absent pieces are simply not written."""

    model_config = ConfigDict(frozen=True)

    run_id: str = ""
    objective: str = ""
    diff: str = ""
    test_evidence: dict[str, Any] | None = None
    pr_description: dict[str, Any] | None = None
    risk_assessment: dict[str, Any] | None = None
    rollback_plan: dict[str, Any] | None = None
    changelog: str = ""


class Bundle(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: Path
    files: list[str] = Field(default_factory=list)
    manifest: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_test_evidence(evidence: dict[str, Any]) -> str:
    passed = evidence.get("passed", 0)
    failed = evidence.get("failed", 0)
    result = "All tests passed" if not failed else f"{failed} test(s) failed"
    return (
        "# Test Evidence\n\n"
        "## Summary\n"
        f"- **Command:** {evidence.get('command', 'unknown')}\n"
        f"- **Format:** {evidence.get('format', 'unknown')}\n"
        f"- **Passed:** {passed}\n"
        f"- **Failed:** {failed}\n"
        f"- **Total:** {evidence.get('total', 0)}\n"
        f"- **Exit code:** {evidence.get('exit_code', 'n/a')}\n"
        f"- **Result:** {result}\n\n"
        "## Raw Output\n\n"
        f"```\n{evidence.get('output', '')}\n```\n"
    )


def render_pr_description(pr: dict[str, Any], objective: str = "") -> str:
    checklist = "\n".join(f"- [ ] {item}" for item in pr.get("checklist") or [])
    labels = ", ".join(pr.get("labels") or [])
    return (
        f"# {pr.get('title') or 'PR Description'}\n\n"
        f"## Objective\n{objective}\n\n"
        f"## Description\n{pr.get('body', '')}\n\n"
        f"## Checklist\n{checklist}\n\n"
        f"## Labels\n{labels}\n\n"
        f"## Rollout Notes\n{pr.get('rollout_notes') or 'None'}\n"
    )


def render_risk_assessment(risk: dict[str, Any]) -> str:
    deps = "\n".join(f"- {d}" for d in risk.get("dependencies_affected") or [])
    return (
        "# Risk Assessment\n\n"
        "| Field | Value |\n"
        "|-------|-------|\n"
        f"| **Risk Level** | {risk.get('risk_level', 'unknown')} |\n"
        f"| **Blast Radius** | {risk.get('blast_radius', 'unknown')} |\n"
        f"| **Rollback Complexity** | {risk.get('rollback_complexity', 'unknown')} |\n"
        f"| **Go/No-Go** | {risk.get('go_no_go', 'unknown')} |\n\n"
        f"## Dependencies Affected\n{deps or 'None'}\n"
    )


def render_rollback_plan(rollback: dict[str, Any]) -> str:
    steps = "\n".join(f"{i}. {s}" for i, s in enumerate(rollback.get("steps") or [], start=1))
    commands = "\n".join(f"`{c}`" for c in rollback.get("commands") or [])
    return (
        "# Rollback Plan\n\n"
        f"## Steps\n{steps}\n\n"
        f"## Commands\n{commands}\n\n"
        f"## Estimated Time\n{rollback.get('estimated_time') or 'Unknown'}\n\n"
        f"## Data Impact\n{rollback.get('data_impact') or 'None'}\n"
    )


class ArtifactPublishTool(GovernedTool):
    """Writes bundles under *bundles_dir*; ``create_pr`` is a stub."""

    category = ToolCategory.ARTIFACT_PUBLISH

    def __init__(self, governance: GovernanceEngine, bundles_dir: Path) -> None:
        super().__init__(governance)
        self.bundles_dir = Path(bundles_dir)

    def create_bundle(self, artifacts: BundleArtifacts, role: str | None = None) -> Bundle:
        self._assert_tool_access(role)
        now = datetime.now(timezone.utc)
        name = now.strftime("%Y%m%dT%H%M%S%fZ")
        if artifacts.run_id:
            name += f"-{artifacts.run_id[:8]}"
        bundle_dir = self._assert_path_allowed(self.bundles_dir / name)

        documents: list[tuple[str, str]] = []
        if artifacts.diff:
            documents.append(("PATCH.diff", artifacts.diff))
        if artifacts.test_evidence is not None:
            documents.append(("TESTS_EVIDENCE.md", render_test_evidence(artifacts.test_evidence)))
        if artifacts.pr_description is not None:
            documents.append((
                "PR_DESCRIPTION.md",
                render_pr_description(artifacts.pr_description, artifacts.objective),
            ))
        if artifacts.risk_assessment is not None:
            documents.append(("RISK_ASSESSMENT.md", render_risk_assessment(artifacts.risk_assessment)))
        if artifacts.rollback_plan is not None:
            documents.append(("ROLLBACK_PLAN.md", render_rollback_plan(artifacts.rollback_plan)))
        if artifacts.changelog:
            documents.append(("CHANGELOG.md", artifacts.changelog))

        files = [fname for fname, _ in documents] + [MANIFEST_NAME]
        risk = artifacts.risk_assessment or {}
        manifest = {
            "created": now.isoformat(),
            "run_id": artifacts.run_id,
            "objective": artifacts.objective or "Unknown objective",
            "files": files,
            "risk_level": risk.get("risk_level", "unknown"),
            "go_no_go": risk.get("go_no_go", "unknown"),
        }

        try:
            bundle_dir.mkdir(parents=True, exist_ok=False)
            for fname, content in documents:
                (bundle_dir / fname).write_text(content, encoding="utf-8")
            (bundle_dir / MANIFEST_NAME).write_text(
                json.dumps(manifest, indent=2), encoding="utf-8"
            )
        except OSError as exc:
            raise ToolExecutionError(
                f"Failed to write bundle {bundle_dir}: {exc}", tool=self.category.value
            ) from exc

        logger.info("PR bundle written: %s (%d files)", bundle_dir, len(files))
        return Bundle(path=bundle_dir, files=files, manifest=manifest)

    def list_bundles(self) -> list[Bundle]:
        """Bundles newest first.  Unreadable manifests yield an empty dict."""
        if not self.bundles_dir.is_dir():
            return []
        bundles: list[Bundle] = []
        for entry in sorted(self.bundles_dir.iterdir(), key=lambda p: p.name, reverse=True):
            if not entry.is_dir():
                continue
            manifest: dict[str, Any] = {}
            manifest_path = entry / MANIFEST_NAME
            if manifest_path.exists():
                try:
                    manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
                except (OSError, json.JSONDecodeError) as exc:
                    logger.warning("Unreadable manifest %s: %s", manifest_path, exc)
            bundles.append(
                Bundle(path=entry, files=list(manifest.get("files", [])), manifest=manifest)
            )
        return bundles

    def create_pr(self, bundle: Bundle, role: str | None = None) -> dict[str, Any]:
        """Stub: reports what would be opened.  No remote is contacted."""
        self._assert_tool_access(role)
        logger.info(
            "Would open PR for bundle %s (risk=%s, go_no_go=%s)",
            bundle.path,
            bundle.manifest.get("risk_level", "unknown"),
            bundle.manifest.get("go_no_go", "unknown"),
        )
        return {
            "bundle_path": str(bundle.path),
            "status": "stub",
            "pr_url": None,
            "manifest": bundle.manifest,
        }
