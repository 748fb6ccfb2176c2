"""Unit tests for the Planner — step selection, completion rules, abort logic."""

from __future__ import annotations

import pytest

from shipmachine.core.planner import Planner
from shipmachine.models.governance import BudgetLimits
from shipmachine.models.task import (
    BudgetUsage,
    NextAction,
    Plan,
    PlanStep,
    StepEvidence,
)


@pytest.fixture
def plan() -> Plan:
    return Plan.from_output({
        "steps": [
            {"id": "s1", "type": "analysis"},
            {"id": "s2", "type": "patch", "files_affected": ["a.py"], "test_checkpoint": True},
            {"id": "s3", "type": "DOCS"},
        ]
    })


@pytest.fixture
def planner() -> Planner:
    return Planner(BudgetLimits(max_steps=10, max_tokens=1000, max_time_minutes=5, max_files_modified=3))


class TestPlanModel:

    def test_from_output_normalizes(self, plan):
        assert plan.step_ids() == ["s1", "s2", "s3"]
        assert plan.steps[2].type == "docs"
        assert plan.estimated_complexity == "unknown"

    def test_from_non_dict(self):
        assert Plan.from_output("nonsense").steps == []

    def test_null_files_affected(self):
        step = PlanStep.model_validate({"id": "x", "files_affected": None})
        assert step.files_affected == []


class TestSelectNextStep:

    def test_first_incomplete_in_order(self, planner, plan):
        assert planner.select_next_step(plan, []).id == "s1"
        assert planner.select_next_step(plan, ["s1"]).id == "s2"
        assert planner.select_next_step(plan, ["s2", "s1"]).id == "s3"

    def test_done(self, planner, plan):
        assert planner.select_next_step(plan, ["s1", "s2", "s3"]) is None

    def test_no_plan(self, planner):
        assert planner.select_next_step(None, []) is None
        assert planner.select_next_step(Plan(), []) is None


class TestIsStepComplete:

    def test_no_evidence(self, planner, plan):
        assert not planner.is_step_complete(plan.steps[0], None)

    def test_analysis_needs_result(self, planner, plan):
        step = plan.steps[0]
        assert planner.is_step_complete(step, StepEvidence(step_id="s1", result="ok"))
        assert not planner.is_step_complete(step, StepEvidence(step_id="s1"))

    def test_checkpoint_patch_needs_passing_tests(self, planner, plan):
        step = plan.steps[1]
        assert not planner.is_step_complete(step, StepEvidence(step_id="s2", patch_applied=True))
        assert not planner.is_step_complete(
            step, StepEvidence(step_id="s2", patch_applied=True, test_passed=False)
        )
        assert planner.is_step_complete(
            step, StepEvidence(step_id="s2", patch_applied=True, test_passed=True)
        )

    def test_patch_without_checkpoint(self, planner):
        step = PlanStep(id="p", type="create")
        assert planner.is_step_complete(step, StepEvidence(step_id="p", patch_applied=True))

    @pytest.mark.parametrize(
        ("step_type", "evidence", "expected"),
        [
            ("tests", {"test_file_written": True}, True),
            ("tests", {}, False),
            ("exec", {"exit_code": 0}, True),
            ("exec", {"exit_code": 1}, False),
            ("docs", {"docs_updated": True}, True),
            ("review", {"review_complete": True}, True),
            ("review", {}, False),
            ("deploy", {"complete": True}, True),
            ("deploy", {"result": "x"}, False),
        ],
    )
    def test_type_rules(self, planner, step_type, evidence, expected):
        step = PlanStep(id="x", type=step_type)
        assert planner.is_step_complete(step, StepEvidence(step_id="x", **evidence)) is expected


class TestShouldAbort:

    def test_fresh(self, planner):
        decision = planner.should_abort(BudgetUsage())
        assert not decision.abort
        assert not decision.escalate

    @pytest.mark.parametrize(
        ("usage", "fragment"),
        [
            (BudgetUsage(steps=10), "max steps"),
            (BudgetUsage(tokens=1000), "max tokens"),
            (BudgetUsage(elapsed_minutes=5.0), "max time"),
            (BudgetUsage(files_modified=3), "too many files"),
        ],
    )
    def test_budget_abort(self, planner, usage, fragment):
        decision = planner.should_abort(usage)
        assert decision.abort
        assert fragment in decision.reason

    def test_abort_requested(self, planner):
        last = StepEvidence(step_id="s2", next_action=NextAction.ABORT, reason="corrupt repo")
        decision = planner.should_abort(BudgetUsage(), last)
        assert decision.abort
        assert "corrupt repo" in decision.reason

    def test_escalate_after_max_retries(self, planner):
        last = StepEvidence(step_id="s2", next_action=NextAction.FIX)
        planner.record_retry("s2")
        assert not planner.should_abort(BudgetUsage(), last).escalate
        planner.record_retry("s2")
        decision = planner.should_abort(BudgetUsage(), last)
        assert decision.escalate
        assert not decision.abort
        assert "s2" in decision.reason

    def test_retries_without_fix_do_not_escalate(self, planner):
        planner.record_retry("s2")
        planner.record_retry("s2")
        last = StepEvidence(step_id="s2", next_action=NextAction.CONTINUE)
        assert not planner.should_abort(BudgetUsage(), last).escalate


class TestRetriesAndProgress:

    def test_retry_counter(self, planner):
        assert planner.get_retry_count("s1") == 0
        assert planner.record_retry("s1") == 1
        assert planner.record_retry("s1") == 2
        assert planner.get_retry_count("s1") == 2

    def test_progress(self, planner, plan):
        assert planner.progress_summary(plan, ["s1"]) == "1/3 steps (33%)"
        assert planner.progress_summary(plan, ["s1", "zz"]) == "1/3 steps (33%)"
        assert planner.progress_summary(None, []) == "No plan loaded"
