"""Unit tests for OperationRegistry — pack discovery and lookup."""

from __future__ import annotations

from pathlib import Path

import pytest

from shipmachine.core.errors import OperationNotFound
from shipmachine.core.operation_registry import OperationRegistry
from shipmachine.core.templating import placeholders
from shipmachine.models.operations import OperationSpec


def _write_pack(root: Path, name: str, operations: dict[str, str]) -> Path:
    pack_dir = root / name
    (pack_dir / "operations").mkdir(parents=True)
    entries = "\n".join(
        f"  - id: {op_id}\n    file: operations/{fname}" for op_id, fname in operations.items()
    )
    (pack_dir / "pack.yaml").write_text(
        f"name: {name}\nversion: 0.1.0\noperations:\n{entries}\n", encoding="utf-8"
    )
    return pack_dir


class TestBundledPack:

    def test_all_ship_operations_load(self, registry):
        ids = [spec.operation_id for spec in registry.list_operations()]
        assert ids == sorted(ids)
        assert len(registry) == 12
        for op_id in (
            "ship.scope_task", "ship.repo_survey", "ship.plan", "ship.patch",
            "ship.tests", "ship.run_tests_interpret", "ship.lint_fix",
            "ship.doc_update", "ship.security_check", "ship.risk_assessment",
            "ship.rollback_plan", "ship.pr_writeup",
        ):
            assert registry.has(op_id)

    def test_pack_metadata(self, registry):
        (pack,) = registry.list_packs()
        assert pack.name == "ship"
        assert registry.get("ship.plan").pack_name == "ship"

    def test_required_output_fields(self, registry):
        assert registry.get("ship.plan").output_schema.required == ["steps"]
        assert registry.get("ship.patch").output_schema.required == ["file_path", "edits"]
        assert registry.get("ship.pr_writeup").output_schema.required == ["title", "body"]

    def test_declared_inputs_match_template(self, registry):
        for spec in registry.list_operations():
            assert set(placeholders(spec.template)) == set(spec.inputs), spec.operation_id

    def test_schema_hint_names_operation(self, registry):
        hint = registry.get("ship.plan").schema_hint()
        assert hint["operation_id"] == "ship.plan"
        assert hint["required"] == ["steps"]

    def test_unknown_operation(self, registry):
        with pytest.raises(OperationNotFound) as excinfo:
            registry.get("ship.teleport")
        assert "ship.plan" in str(excinfo.value)
        assert excinfo.value.operation_id == "ship.teleport"


class TestPackLoading:

    def test_missing_root_is_empty(self, tmp_path):
        assert len(OperationRegistry([tmp_path / "absent"])) == 0

    def test_bad_operation_file_skipped(self, tmp_path):
        pack_dir = _write_pack(tmp_path, "extra", {"extra.good": "good.yaml", "extra.bad": "bad.yaml"})
        (pack_dir / "operations" / "good.yaml").write_text(
            "id: extra.good\ntemplate: 'Hello {{name}}'\ninputs: [name]\n", encoding="utf-8"
        )
        (pack_dir / "operations" / "bad.yaml").write_text("template: [oops\n", encoding="utf-8")
        registry = OperationRegistry([tmp_path])
        assert registry.has("extra.good")
        assert not registry.has("extra.bad")

    def test_mismatched_id_skipped(self, tmp_path):
        pack_dir = _write_pack(tmp_path, "extra", {"extra.one": "one.yaml"})
        (pack_dir / "operations" / "one.yaml").write_text(
            "id: extra.two\ntemplate: hi\n", encoding="utf-8"
        )
        assert not OperationRegistry([tmp_path]).has("extra.one")

    def test_missing_file_skipped(self, tmp_path):
        _write_pack(tmp_path, "extra", {"extra.ghost": "ghost.yaml"})
        registry = OperationRegistry([tmp_path])
        assert len(registry) == 0
        assert [p.name for p in registry.list_packs()] == ["extra"]

    def test_later_root_overrides(self, tmp_path, registry):
        pack_dir = _write_pack(tmp_path, "override", {"ship.plan": "plan.yaml"})
        (pack_dir / "operations" / "plan.yaml").write_text(
            "id: ship.plan\nversion: 9.0.0\ntemplate: custom\n", encoding="utf-8"
        )
        merged = OperationRegistry([*registry.roots, tmp_path])
        assert merged.get("ship.plan").version == "9.0.0"

    def test_register_and_reload(self, tmp_path):
        registry = OperationRegistry([tmp_path])
        registry.register(OperationSpec(operation_id="adhoc.op", template="x"))
        assert registry.has("adhoc.op")
        assert registry.reload() == 0
        assert not registry.has("adhoc.op")
