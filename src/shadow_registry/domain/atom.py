"""Pydantic models for atoms reported by the extraction layer.

Keys arrive in camelCase from the JavaScript extractors; snake_case is
accepted too so Python callers can build atoms directly.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class Usage(_CamelModel):
    type: str = "read"


class DataFlowInput(_CamelModel):
    name: str = ""
    type: str = "param"
    usages: list[Usage] = Field(default_factory=lambda: list[Usage]())


class DataFlowTransformation(_CamelModel):
    operation: str = "unknown"
    source: str | None = Field(default=None, alias="from")
    to: str | None = None


class DataFlowOutput(_CamelModel):
    name: str = ""
    type: str = "return"


class SideEffect(_CamelModel):
    type: str = "unknown"
    target: str | None = None


class DataFlow(_CamelModel):
    inputs: list[DataFlowInput] = Field(
        default_factory=lambda: list[DataFlowInput]()
    )
    transformations: list[DataFlowTransformation] = Field(
        default_factory=lambda: list[DataFlowTransformation]()
    )
    outputs: list[DataFlowOutput] = Field(
        default_factory=lambda: list[DataFlowOutput]()
    )
    side_effects: list[SideEffect] = Field(
        default_factory=lambda: list[SideEffect]()
    )

    def is_empty(self) -> bool:
        return not (
            self.inputs
            or self.transformations
            or self.outputs
            or self.side_effects
        )


class ControlFlow(_CamelModel):
    """Shape counters from the AST; identifiers never appear here."""

    branches: int = Field(default=0, ge=0)
    loops: int = Field(default=0, ge=0)
    calls: int = Field(default=0, ge=0)
    max_depth: int = Field(default=0, ge=0)


class SemanticTag(_CamelModel):
    verb: str = ""
    domain: str = ""
    entity: str = ""


class Ancestry(_CamelModel):
    """Lineage the extraction layer attached when it matched a Shadow."""

    replaced: str | None = None
    generation: int = Field(default=0, ge=0)
    lineage: list[str] = Field(default_factory=lambda: list[str]())


class Atom(_CamelModel):
    """A code element as seen by the extraction layer, at time of death."""

    id: str
    name: str
    file_path: str
    line_number: int = 0
    is_exported: bool = False
    created_at: datetime | None = None
    data_flow: DataFlow = Field(default_factory=DataFlow)

    # Optional structural hints consumed by the fingerprinter
    is_async: bool = False
    is_generator: bool = False
    control_flow: ControlFlow = Field(default_factory=ControlFlow)
    complexity: float | None = Field(default=None, ge=0)
    semantic: SemanticTag | None = None
    ancestry: Ancestry | None = None

    @field_validator("id", "name", "file_path")
    @classmethod
    def _required_text(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must be a non-empty string")
        return v

    def data_flow_dict(self) -> dict[str, Any]:
        """camelCase copy of the data flow, as persisted in Shadow metadata."""
        return self.data_flow.model_dump(by_alias=True, mode="json")
