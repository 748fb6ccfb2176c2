"""OperationRegistry — resolves operation ids to versioned prompt templates.

A pack is a directory holding a ``pack.yaml`` manifest::

    name: ship
    version: 1.0.0
    operations:
      - id: ship.plan
        file: operations/plan.yaml

Each operation file declares ``template``, ``inputs`` and an optional
``output_schema``.  Every directory directly under a packs root that
contains a ``pack.yaml`` is loaded.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

import yaml
from pydantic import ValidationError

from shipmachine.core.errors import OperationNotFound
from shipmachine.core.loader import load_yaml_document
from shipmachine.models.operations import OperationPack, OperationSpec

logger = logging.getLogger(__name__)

PACK_MANIFEST = "pack.yaml"


class OperationRegistry:
    """In-memory index of every loaded operation spec.

    Parameters
    ----------
    roots:
        Directories to scan for packs.  Later roots override earlier ones
        on duplicate operation ids.
    """

    def __init__(self, roots: Iterable[Path | str] = ()) -> None:
        self._roots = [Path(r) for r in roots]
        self._operations: dict[str, OperationSpec] = {}
        self._packs: dict[str, OperationPack] = {}
        self.reload()

    @property
    def roots(self) -> list[Path]:
        return list(self._roots)

    def reload(self) -> int:
        """Clear and repopulate from the pack roots.  Returns the op count."""
        self._operations.clear()
        self._packs.clear()
        for root in self._roots:
            if not root.is_dir():
                logger.warning("Pack root does not exist: %s", root)
                continue
            for pack_dir in sorted(p for p in root.iterdir() if p.is_dir()):
                if (pack_dir / PACK_MANIFEST).exists():
                    self.load_pack(pack_dir)
        logger.info(
            "Loaded %d operations from %d packs", len(self._operations), len(self._packs)
        )
        return len(self._operations)

    def load_pack(self, pack_dir: Path) -> OperationPack | None:
        """Load one pack directory.  Bad files are logged and skipped."""
        manifest_path = pack_dir / PACK_MANIFEST
        try:
            pack = OperationPack.model_validate(load_yaml_document(manifest_path))
        except (OSError, yaml.YAMLError, ValueError, ValidationError) as exc:
            logger.warning("Skipping pack %s: %s", pack_dir, exc)
            return None

        for entry in pack.operations:
            op_id = entry.get("id", "")
            op_file = entry.get("file", "")
            if not op_id or not op_file:
                logger.warning("Pack %s: operation entry missing id or file: %r", pack.name, entry)
                continue
            try:
                data = load_yaml_document(pack_dir / op_file)
                data.setdefault("operation_id", data.pop("id", op_id))
                spec = OperationSpec.model_validate({**data, "pack_name": pack.name})
            except (OSError, yaml.YAMLError, ValueError, ValidationError) as exc:
                logger.warning("Pack %s: failed to load %s: %s", pack.name, op_file, exc)
                continue
            if spec.operation_id != op_id:
                logger.warning(
                    "Pack %s: %s declares id %s, expected %s",
                    pack.name, op_file, spec.operation_id, op_id,
                )
                continue
            self._operations[op_id] = spec

        self._packs[pack.name] = pack
        return pack

    def register(self, spec: OperationSpec) -> None:
        """Add or replace a single operation (used by embedders and tests)."""
        self._operations[spec.operation_id] = spec

    def get(self, operation_id: str) -> OperationSpec:
        spec = self._operations.get(operation_id)
        if spec is None:
            raise OperationNotFound(operation_id, list(self._operations))
        return spec

    def has(self, operation_id: str) -> bool:
        return operation_id in self._operations

    def list_operations(self) -> list[OperationSpec]:
        return [self._operations[k] for k in sorted(self._operations)]

    def list_packs(self) -> list[OperationPack]:
        return [self._packs[k] for k in sorted(self._packs)]

    def __len__(self) -> int:
        return len(self._operations)
