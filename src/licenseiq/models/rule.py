"""
Rule synthesis models: term mappings, synthesized rules and run results.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Reserved key under which term mappings are folded into the stored formula
TERM_MAPPINGS_KEY = "_termMappings"

CONTEXT_UNIT = "<context>"


class ValidationStatus(str, Enum):
    """Review state of a stored rule definition."""

    PENDING = "pending"
    VALIDATED = "validated"
    FAILED = "failed"
    APPROVED = "approved"


class TermMapping(BaseModel):
    """
    A confirmed equivalence between a contract term and an ERP field.

    Sourced from the pending term mappings table filtered to
    status = confirmed.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    contract_term: str = Field(..., alias="contractTerm")
    erp_field_name: str = Field(..., alias="erpFieldName")
    erp_entity_name: str | None = Field(default=None, alias="erpEntityName")
    confidence: float = 0.0

    def to_json(self) -> dict[str, Any]:
        """camelCase form stored alongside the formula."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SynthesizedRule(BaseModel):
    """A named formula plus the metadata scoping when and where it applies."""

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    rule_type: str = Field(..., alias="ruleType")
    rule_name: str = Field(..., alias="ruleName")
    description: str = ""
    formula_definition: dict[str, Any] = Field(..., alias="formulaDefinition")
    applicability_filters: dict[str, Any] = Field(
        default_factory=dict, alias="applicabilityFilters"
    )
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    linked_node_id: str | None = Field(default=None, alias="linkedNodeId")

    # None until enrichment ran; an empty list means it ran and found nothing
    term_mappings: list[TermMapping] | None = Field(default=None, alias="termMappings")

    # Inferred from general contract context rather than an explicit entity
    inferred: bool = False

    # Set when the rule is persisted
    validation_status: ValidationStatus | None = Field(default=None, alias="validationStatus")
    is_active: bool | None = Field(default=None, alias="isActive")

    @field_validator("rule_type", "rule_name", mode="before")
    @classmethod
    def scalar_to_str(cls, v: Any) -> Any:
        # Numbers and booleans become text; None and containers still fail
        if isinstance(v, (int, float)):
            return str(v)
        return v

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("applicability_filters", mode="before")
    @classmethod
    def default_filters(cls, v: Any) -> dict[str, Any]:
        return v if isinstance(v, dict) else {}

    def stored_formula(self) -> dict[str, Any]:
        """Formula as persisted, with term mappings folded in when present."""
        if not self.term_mappings:
            return self.formula_definition
        return {
            **self.formula_definition,
            TERM_MAPPINGS_KEY: [m.to_json() for m in self.term_mappings],
        }

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class RuleFailure(BaseModel):
    """One unit of work that produced no stored rule."""

    unit: str = Field(..., description="Entity label, or '<context>' for the fallback run")
    stage: str = Field(..., description="'generate' or 'persist'")
    error: str


class RuleSynthesisResult(BaseModel):
    """Outcome of a synthesis run over one contract."""

    rules: list[SynthesizedRule] = Field(default_factory=list)
    low_confidence_rules: list[SynthesizedRule] = Field(default_factory=list)
    average_confidence: float = 0.0
    failures: list[RuleFailure] = Field(default_factory=list)
    used_context_fallback: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "rules": [r.to_json() for r in self.rules],
            "low_confidence_rule_ids": [r.id for r in self.low_confidence_rules],
            "average_confidence": self.average_confidence,
            "failures": [f.model_dump() for f in self.failures],
            "used_context_fallback": self.used_context_fallback,
        }
