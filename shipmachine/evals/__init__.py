"""Eval suite: synthetic fixture repositories and the runner that scores them."""

from shipmachine.evals.fixtures import FIXTURES, EvalFixture, select_fixtures
from shipmachine.evals.runner import EvalRunner, render_report

__all__ = ["FIXTURES", "EvalFixture", "EvalRunner", "render_report", "select_fixtures"]
