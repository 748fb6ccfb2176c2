"""Append-only, hash-chained audit ledger backed by SQLite.

Design:
- Append-only: only ``append()`` writes; there is no update or delete.
- Hash-chained per run: each event includes SHA-256 of the previous event.
- WAL journal mode for concurrent readers.
- Each append runs in a ``BEGIN IMMEDIATE`` transaction, so reading the
  previous hash and inserting the new event are atomic across writers
  sharing one database file.
- ``event_hash`` UNIQUE constraint for tamper detection.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections import Counter
from datetime import datetime
from pathlib import Path

from shipmachine.core.errors import ShipMachineError
from shipmachine.core.hasher import compute_event_hash
from shipmachine.models.audit import AuditEvent, AuditStats, OperationStats

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_EVENTS = """
CREATE TABLE IF NOT EXISTS audit_events (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id            TEXT NOT NULL UNIQUE,
    run_id              TEXT NOT NULL,
    timestamp_utc       TEXT NOT NULL,
    operation_id        TEXT NOT NULL,
    step_index          INTEGER NOT NULL DEFAULT 0,
    tool_calls_json     TEXT NOT NULL DEFAULT '[]',
    passed              INTEGER NOT NULL,
    failure_reason      TEXT,
    duration_ms         INTEGER NOT NULL DEFAULT 0,
    tokens_used         INTEGER NOT NULL DEFAULT 0,
    model               TEXT,
    role                TEXT,
    retry_count         INTEGER NOT NULL DEFAULT 0,
    channel             TEXT,
    data_class          TEXT,
    objective_type      TEXT NOT NULL DEFAULT 'feature',
    user_id             TEXT,
    is_mock             INTEGER NOT NULL DEFAULT 0,
    previous_event_hash TEXT NOT NULL DEFAULT '',
    event_hash          TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_RUN = """
CREATE INDEX IF NOT EXISTS idx_audit_run ON audit_events(run_id, id);
"""

_CREATE_IDX_OPERATION = """
CREATE INDEX IF NOT EXISTS idx_audit_operation ON audit_events(operation_id, id);
"""

_COLUMNS = (
    "event_id, run_id, timestamp_utc, operation_id, step_index, tool_calls_json, "
    "passed, failure_reason, duration_ms, tokens_used, model, role, retry_count, "
    "channel, data_class, objective_type, user_id, is_mock, "
    "previous_event_hash, event_hash"
)


class AuditIntegrityError(ShipMachineError):
    """Raised when a run's hash chain is broken."""


class AuditLedger:
    """Append-only audit ledger.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly.
        conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False, isolation_level=None, timeout=30.0
        )
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        conn = self._connect()
        try:
            conn.execute(_CREATE_EVENTS)
            conn.execute(_CREATE_IDX_RUN)
            conn.execute(_CREATE_IDX_OPERATION)
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, event: AuditEvent) -> AuditEvent:
        """Seal *event* into its run's chain and persist it.

        Returns the event with ``previous_event_hash`` and ``event_hash``
        set.  This is the ONLY write method.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT event_hash FROM audit_events WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (event.run_id,),
            ).fetchone()
            previous_hash = row[0] if row else ""

            event_dict = event.model_dump(mode="json")
            event_dict["previous_event_hash"] = previous_hash
            event_dict["event_hash"] = ""
            sealed = event.model_copy(
                update={
                    "previous_event_hash": previous_hash,
                    "event_hash": compute_event_hash(event_dict),
                }
            )

            conn.execute(
                f"INSERT INTO audit_events ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                self._event_to_row(sealed),
            )
            conn.execute("COMMIT")
        except sqlite3.Error:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

        logger.debug(
            "Audit event %s: run=%s op=%s passed=%s",
            sealed.event_id, sealed.run_id, sealed.operation_id, sealed.passed,
        )
        return sealed

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def _select(self, where: str = "", params: tuple = (), order: str = "id ASC") -> list[AuditEvent]:
        sql = f"SELECT {_COLUMNS} FROM audit_events"
        if where:
            sql += f" WHERE {where}"
        sql += f" ORDER BY {order}"
        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [self._row_to_event(row) for row in rows]

    def get_run_events(self, run_id: str) -> list[AuditEvent]:
        """Return every event for a run, in append order."""
        return self._select("run_id = ?", (run_id,))

    def get_all_run_ids(self) -> list[str]:
        """Return distinct run ids, most recently active first."""
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT run_id, MAX(id) AS last_id FROM audit_events "
                "GROUP BY run_id ORDER BY last_id DESC"
            ).fetchall()
        finally:
            conn.close()
        return [row[0] for row in rows]

    def load_history(self, limit: int | None = None) -> list[AuditEvent]:
        """Events in append order; with *limit*, only the most recent ones."""
        if limit is None:
            return self._select()
        recent = self._select(order="id DESC LIMIT %d" % int(limit))
        return list(reversed(recent))

    def count(self) -> int:
        conn = self._connect()
        try:
            (total,) = conn.execute("SELECT COUNT(*) FROM audit_events").fetchone()
        finally:
            conn.close()
        return int(total)

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def get_stats(self) -> AuditStats:
        """Aggregate counters over the whole ledger."""
        events = self._select()
        if not events:
            return AuditStats()

        by_op: dict[str, dict[str, int]] = {}
        for e in events:
            s = by_op.setdefault(
                e.operation_id, {"calls": 0, "tokens": 0, "passed": 0, "failed": 0}
            )
            s["calls"] += 1
            s["tokens"] += e.tokens_used
            if e.passed:
                s["passed"] += 1
            else:
                s["failed"] += 1

        passed = sum(1 for e in events if e.passed)
        return AuditStats(
            total_calls=len(events),
            total_runs=len({e.run_id for e in events}),
            total_tokens=sum(e.tokens_used for e in events),
            passed=passed,
            failed=len(events) - passed,
            avg_duration_ms=round(sum(e.duration_ms for e in events) / len(events)),
            success_rate=round(passed / len(events) * 100),
            by_operation={
                op: OperationStats(operation_id=op, **counts) for op, counts in by_op.items()
            },
            by_model=dict(Counter(e.model or "unknown" for e in events)),
            by_role=dict(Counter(e.role or "unknown" for e in events)),
            by_objective_type=dict(Counter(e.objective_type for e in events)),
        )

    def get_failing_operations(self, min_calls: int = 1) -> list[OperationStats]:
        """Operations with at least one failure, worst failure rate first."""
        stats = self.get_stats()
        failing = [
            s for s in stats.by_operation.values()
            if s.failed > 0 and s.calls >= min_calls
        ]
        return sorted(failing, key=lambda s: (-s.failure_rate, s.operation_id))

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Verify the hash chain for a run.

        Walks all events in order, recomputes each ``event_hash`` and checks
        the ``previous_event_hash`` links.  Returns True if the chain is
        valid, raises ``AuditIntegrityError`` otherwise.
        """
        prev_hash = ""
        for event in self.get_run_events(run_id):
            if event.previous_event_hash != prev_hash:
                raise AuditIntegrityError(
                    f"Chain broken at event {event.event_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {event.previous_event_hash!r}"
                )

            expected_hash = compute_event_hash(event.model_dump(mode="json"))
            if event.event_hash != expected_hash:
                raise AuditIntegrityError(
                    f"Tampered event {event.event_id}: "
                    f"expected hash={expected_hash!r}, got {event.event_hash!r}"
                )

            prev_hash = event.event_hash

        return True

    def verify_all(self) -> dict[str, str | None]:
        """Verify every run.  Maps run id to None (valid) or the error text."""
        results: dict[str, str | None] = {}
        for run_id in self.get_all_run_ids():
            try:
                self.verify_chain(run_id)
                results[run_id] = None
            except AuditIntegrityError as exc:
                results[run_id] = str(exc)
        return results

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _event_to_row(event: AuditEvent) -> tuple:
        return (
            event.event_id,
            event.run_id,
            event.timestamp_utc.isoformat()
            if isinstance(event.timestamp_utc, datetime)
            else event.timestamp_utc,
            event.operation_id,
            event.step_index,
            json.dumps(event.tool_calls),
            int(event.passed),
            event.failure_reason,
            event.duration_ms,
            event.tokens_used,
            event.model,
            event.role,
            event.retry_count,
            event.channel,
            event.data_class,
            event.objective_type,
            event.user_id,
            int(event.is_mock),
            event.previous_event_hash,
            event.event_hash,
        )

    @staticmethod
    def _row_to_event(row: tuple) -> AuditEvent:
        (
            event_id,
            run_id,
            timestamp_utc,
            operation_id,
            step_index,
            tool_calls_json,
            passed,
            failure_reason,
            duration_ms,
            tokens_used,
            model,
            role,
            retry_count,
            channel,
            data_class,
            objective_type,
            user_id,
            is_mock,
            previous_event_hash,
            event_hash,
        ) = row
        return AuditEvent(
            event_id=event_id,
            run_id=run_id,
            timestamp_utc=timestamp_utc,
            operation_id=operation_id,
            step_index=step_index,
            tool_calls=json.loads(tool_calls_json),
            passed=bool(passed),
            failure_reason=failure_reason,
            duration_ms=duration_ms,
            tokens_used=tokens_used,
            model=model,
            role=role,
            retry_count=retry_count,
            channel=channel,
            data_class=data_class,
            objective_type=objective_type,
            user_id=user_id,
            is_mock=bool(is_mock),
            previous_event_hash=previous_event_hash,
            event_hash=event_hash,
        )
