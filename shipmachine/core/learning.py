"""Learning loop — failure analysis and improvement proposals.

A read-only projection over the audit ledger: which operations fail too
often and why, which operation sequences keep recurring across runs, and
per-operation and per-run summaries.  Nothing here writes to the ledger.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict

from shipmachine.core.audit_ledger import AuditLedger
from shipmachine.models.audit import AuditEvent, OperationStats
from shipmachine.models.learning import (
    FailureReason,
    ImprovementProposal,
    OperationMetrics,
    PatternSuggestion,
    RunSummary,
)

logger = logging.getLogger(__name__)

FAILURE_RATE_THRESHOLD = 20
HIGH_PRIORITY_RATE = 50
PATTERN_PREFIX_LENGTH = 3
MAX_REASON_LENGTH = 100

# Keyword in the operation id -> proposal text.  First match wins.
_PROPOSAL_HINTS: list[tuple[str, str]] = [
    (
        "patch",
        "Consider adding more context about the file structure in inputs. "
        "The model may need more context about imports and dependencies.",
    ),
    (
        "interpret",
        "Consider refining the output schema to be more specific about failure "
        "categories. The model may be misclassifying failures.",
    ),
    (
        "test",
        "Consider adding example test cases to the operation's examples. More "
        "concrete examples may improve test generation quality.",
    ),
]


def _count_reasons(events: list[AuditEvent]) -> list[FailureReason]:
    counts = Counter(
        e.failure_reason[:MAX_REASON_LENGTH] for e in events if e.failure_reason
    )
    return [FailureReason(reason=r, count=c) for r, c in counts.most_common()]


def _group_by_run(events: list[AuditEvent]) -> dict[str, list[AuditEvent]]:
    runs: dict[str, list[AuditEvent]] = defaultdict(list)
    for event in events:
        runs[event.run_id].append(event)
    return runs


class LearningAnalyzer:
    """Derives improvement signals from ledger history.

    Parameters
    ----------
    ledger:
        The audit ledger to read.
    history_limit:
        How many of the most recent events each analysis looks at.
    """

    def __init__(self, ledger: AuditLedger, history_limit: int = 1000) -> None:
        self.ledger = ledger
        self.history_limit = history_limit

    def failing_operations(self, min_calls: int = 3) -> list[OperationStats]:
        """Operations with at least *min_calls* calls failing more than 20 %."""
        return [
            s for s in self.ledger.get_failing_operations(min_calls=min_calls)
            if s.failure_rate > FAILURE_RATE_THRESHOLD
        ]

    def generate_proposals(self, min_calls: int = 3) -> list[ImprovementProposal]:
        history = self.ledger.load_history(self.history_limit)
        proposals: list[ImprovementProposal] = []
        for stats in self.failing_operations(min_calls):
            failures = [
                e for e in history if e.operation_id == stats.operation_id and not e.passed
            ]
            reasons = _count_reasons(failures)
            proposals.append(
                ImprovementProposal(
                    operation_id=stats.operation_id,
                    failure_rate=stats.failure_rate,
                    total_calls=stats.calls,
                    common_failures=reasons[:3],
                    proposal=self._proposal_text(stats.operation_id, reasons),
                    priority="high" if stats.failure_rate > HIGH_PRIORITY_RATE else "medium",
                )
            )
        logger.debug("%d improvement proposals", len(proposals))
        return proposals

    @staticmethod
    def _proposal_text(operation_id: str, reasons: list[FailureReason]) -> str:
        for keyword, text in _PROPOSAL_HINTS:
            if keyword in operation_id:
                return text
        top = reasons[0].reason if reasons else "unknown failure cause"
        return (
            f"Review operation '{operation_id}': {top}. Consider adding more "
            "examples or clarifying the output requirements."
        )

    def find_patterns(
        self, min_occurrences: int = 3, history_limit: int = 200
    ) -> list[PatternSuggestion]:
        """Recurring opening sequences across runs.

        Runs with fewer than three calls are ignored.  Each remaining run
        contributes the first three operations of its call sequence, ordered
        by step index.
        """
        runs = _group_by_run(self.ledger.load_history(history_limit))
        prefixes: Counter[str] = Counter()
        for events in runs.values():
            sequence = [e.operation_id for e in sorted(events, key=lambda e: e.step_index)]
            if len(sequence) >= PATTERN_PREFIX_LENGTH:
                prefixes[" → ".join(sequence[:PATTERN_PREFIX_LENGTH])] += 1

        return [
            PatternSuggestion(
                pattern=pattern,
                occurrences=count,
                suggestion=f"Consider creating a composite operation that combines: {pattern}",
            )
            for pattern, count in prefixes.most_common()
            if count >= min_occurrences
        ]

    def operation_metrics(self, operation_id: str) -> OperationMetrics | None:
        """Detailed counters for one operation; ``None`` when never called."""
        events = [
            e for e in self.ledger.load_history(self.history_limit)
            if e.operation_id == operation_id
        ]
        if not events:
            return None
        success = sum(1 for e in events if e.passed)
        total = len(events)
        return OperationMetrics(
            operation_id=operation_id,
            total_calls=total,
            success=success,
            failed=total - success,
            success_rate=round(success / total * 100),
            avg_duration_ms=round(sum(e.duration_ms for e in events) / total),
            avg_tokens=round(sum(e.tokens_used for e in events) / total),
            models_used=dict(Counter(e.model for e in events if e.model)),
            roles_used=dict(Counter(e.role for e in events if e.role)),
        )

    def run_summaries(self) -> list[RunSummary]:
        """One summary per run, most recent first."""
        runs = _group_by_run(self.ledger.load_history(self.history_limit))
        summaries = [
            RunSummary(
                run_id=run_id,
                timestamp_utc=events[0].timestamp_utc,
                objective_type=events[0].objective_type,
                total_steps=len(events),
                passed=all(e.passed for e in events),
                total_tokens=sum(e.tokens_used for e in events),
                total_duration_ms=sum(e.duration_ms for e in events),
            )
            for run_id, events in runs.items()
        ]
        return sorted(summaries, key=lambda s: s.timestamp_utc, reverse=True)
