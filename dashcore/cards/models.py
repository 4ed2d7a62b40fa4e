"""
Card and pivot models -- the typed inputs of the card query pipeline.

Field names follow Python conventions; the camelCase aliases match the JSON
the dashboard front-end stores and sends (``rowFields``, ``pivotConfig`` ...).
Both spellings are accepted on input.
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
from pydantic import field_validator, model_validator

from dashcore.core.errors import ValidationError

Aggregation = Literal["sum", "avg", "count", "min", "max"]

AGGREGATIONS: tuple[str, ...] = ("sum", "avg", "count", "min", "max")


class PivotSpec(BaseModel):
    """How a flat rowset is cross-tabulated."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    row_fields: list[str] = Field(default_factory=list, alias="rowFields")
    column_fields: list[str] = Field(default_factory=list, alias="columnFields")
    value_field: str = Field(..., alias="valueField", description="Column whose values are aggregated")
    aggregation: Aggregation = "sum"
    empty_value: float | None = Field(
        0,
        alias="emptyValue",
        description="Cell value for row/column combinations with no source rows (null = sparse)",
    )

    @field_validator("value_field")
    @classmethod
    def _value_field_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("valueField must not be empty")
        return v

    @model_validator(mode="after")
    def _axes_disjoint(self) -> "PivotSpec":
        overlap = [f for f in self.row_fields if f in self.column_fields]
        if overlap:
            raise ValueError(
                f"Fields cannot be both row and column fields: {', '.join(overlap)}"
            )
        return self

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def parse_pivot_spec(raw: Any, *, card_id: str | None = None) -> PivotSpec:
    """Build a ``PivotSpec`` from stored JSON, raising the core ``ValidationError``."""
    if isinstance(raw, PivotSpec):
        return raw
    if not isinstance(raw, dict):
        raise ValidationError(
            f"Pivot config must be an object, got {type(raw).__name__}", card_id=card_id,
        )
    try:
        return PivotSpec.model_validate(raw)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'pivotConfig'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError(f"Invalid pivot config: {problems}", card_id=card_id) from exc


class CardDefinition(BaseModel):
    """An admin-defined dashboard card, read-only to the query core."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    tenant_id: str = "default"
    title: str = ""
    sql_template: str = Field(..., alias="sqlTemplate")
    visualization_type: str = Field("table", alias="visualizationType")
    pivot_enabled: bool = Field(False, alias="pivotEnabled")
    pivot_config: PivotSpec | None = Field(None, alias="pivotConfig")
    drilldown_enabled: bool = Field(False, alias="drilldownEnabled")
    drilldown_query: str | None = Field(None, alias="drilldownQuery")
    is_active: bool = Field(True, alias="isActive")
    required_filters: list[str] = Field(default_factory=list, alias="requiredFilters")

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_text(cls, v: Any) -> str:
        return str(v)

    @model_validator(mode="after")
    def _pivot_config_matches_flag(self) -> "CardDefinition":
        if self.pivot_enabled and self.pivot_config is None:
            raise ValueError("pivotConfig is required when pivotEnabled is true")
        if not self.pivot_enabled and self.pivot_config is not None:
            raise ValueError("pivotConfig must be omitted when pivotEnabled is false")
        return self


class PivotedCardData(BaseModel):
    """Response shape for a pivot-enabled card."""

    model_config = ConfigDict(populate_by_name=True)

    data: list[dict[str, Any]]
    raw_data: list[dict[str, Any]] = Field(..., alias="rawData")
    pivot_config: dict[str, Any] = Field(..., alias="pivotConfig")
