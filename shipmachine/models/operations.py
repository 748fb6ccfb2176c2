"""Operation spec models — template + expected output schema."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SchemaProperty(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    type: str | None = None  # "string", "array", "object", "boolean", "number"
    description: str = ""


class OutputSchema(BaseModel):
    """Expected shape of a model response.

    ``required`` is enforced hard; ``properties[*].type`` is advisory.
    """

    model_config = ConfigDict(frozen=True)

    required: list[str] = Field(default_factory=list)
    properties: dict[str, SchemaProperty] = Field(default_factory=dict)


class OperationSpec(BaseModel):
    """A named, versioned prompt template resolved by the execution bridge."""

    model_config = ConfigDict(frozen=True)

    operation_id: str
    version: str = "1.0.0"
    description: str = ""
    template: str
    inputs: list[str] = Field(default_factory=list)
    output_schema: OutputSchema | None = None
    pack_name: str = ""

    def schema_hint(self) -> dict[str, Any] | None:
        """Plain-dict schema passed to the model client."""
        if self.output_schema is None:
            return None
        return {
            "operation_id": self.operation_id,
            **self.output_schema.model_dump(exclude_defaults=False),
        }


class OperationPack(BaseModel):
    """Contents of a ``pack.yaml`` manifest."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str = "1.0.0"
    description: str = ""
    operations: list[dict[str, str]] = Field(default_factory=list)  # [{id, file}]
