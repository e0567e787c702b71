"""
API request and response models.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from licenseiq.models.entity import ExtractedEntity, GraphNode
from licenseiq.models.rule import RuleFailure, SynthesizedRule


# =============================================================================
# Rule Synthesis Models
# =============================================================================


class SynthesisRequest(BaseModel):
    """Request model for a rule synthesis run."""

    contract_id: str = Field(..., min_length=1, description="Contract identifier")
    run_id: str = Field(..., min_length=1, description="Extraction run identifier")
    entities: list[ExtractedEntity] = Field(default_factory=list)
    graph_nodes: list[GraphNode] = Field(default_factory=list)


class SynthesisResponse(BaseModel):
    """Response model for a rule synthesis run."""

    contract_id: str
    run_id: str
    rules: list[SynthesizedRule] = Field(default_factory=list)
    low_confidence_rule_ids: list[str | None] = Field(default_factory=list)
    average_confidence: float
    used_context_fallback: bool = False
    failures: list[RuleFailure] = Field(default_factory=list)


class RuleDefinitionResponse(BaseModel):
    """Stored rule definition row."""

    id: str
    contract_id: str
    extraction_run_id: str | None = None
    linked_graph_node_id: str | None = None
    rule_type: str
    rule_name: str
    description: str | None = None
    formula_definition: dict[str, Any]
    applicability_filters: dict[str, Any] | None = None
    confidence: float | None = None
    validation_status: str | None = None
    is_active: bool | None = None

    @field_validator(
        "id", "contract_id", "extraction_run_id", "linked_graph_node_id", mode="before"
    )
    @classmethod
    def stringify_ids(cls, v: Any) -> Any:
        return v if v is None else str(v)


# =============================================================================
# Term Mapping Models
# =============================================================================


class TermMappingResponse(BaseModel):
    """A stored term mapping row, camelCase on the wire."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    contract_term: str = Field(..., alias="contractTerm")
    erp_field_name: str | None = Field(default=None, alias="erpFieldName")
    erp_entity_name: str | None = Field(default=None, alias="erpEntityName")
    confidence: float = 0.0
    status: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "TermMappingResponse":
        return cls(
            id=str(row["id"]),
            contract_term=row["original_term"],
            erp_field_name=row.get("erp_field_name"),
            erp_entity_name=row.get("erp_entity_name"),
            confidence=float(row.get("confidence") or 0),
            status=row.get("status"),
        )


class TermMappingUpdateRequest(BaseModel):
    """Partial update of a confirmed term mapping."""

    model_config = ConfigDict(populate_by_name=True)

    contract_term: str | None = Field(default=None, alias="contractTerm")
    erp_field_name: str | None = Field(default=None, alias="erpFieldName")


class FormatTermRequest(BaseModel):
    """Request to render a term with its ERP field name."""

    term: str = Field(..., min_length=1)
    contract_id: str = Field(..., min_length=1)


class FormatTermResponse(BaseModel):
    term: str
    display: str


# =============================================================================
# Health Check Models
# =============================================================================


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = "healthy"
    version: str
    environment: str
    services: dict[str, Any] = Field(
        default_factory=dict, description="Status of dependent services"
    )


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str
    detail: str | None = None
