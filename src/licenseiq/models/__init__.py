"""
Pydantic models for LicenseIQ.

This module contains all data models used throughout the application:
- Entity models for upstream extraction output
- Formula models for FormulaNode expression trees
- Rule models for synthesized rules and run results
- API models for request/response schemas
"""

from licenseiq.models.entity import ExtractedEntity, GraphNode
from licenseiq.models.formula import (
    FormulaNode,
    FormulaNodeBase,
    formula_to_json,
    parse_formula,
)
from licenseiq.models.rule import (
    TERM_MAPPINGS_KEY,
    RuleFailure,
    RuleSynthesisResult,
    SynthesizedRule,
    TermMapping,
    ValidationStatus,
)

__all__ = [
    # Entity models
    "ExtractedEntity",
    "GraphNode",
    # Formula models
    "FormulaNode",
    "FormulaNodeBase",
    "formula_to_json",
    "parse_formula",
    # Rule models
    "TERM_MAPPINGS_KEY",
    "RuleFailure",
    "RuleSynthesisResult",
    "SynthesizedRule",
    "TermMapping",
    "ValidationStatus",
]
