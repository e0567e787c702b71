"""
Rule synthesis pipeline.

Stages:
1. Entity Filter - select royalty/payment/fee entities
2. Formula Generator - prompt the LLM for FormulaNode rules
3. Term Enrichment - attach confirmed ERP term mappings
"""

from licenseiq.pipeline.entity_filter import filter_royalty_entities
from licenseiq.pipeline.formula_generator import FormulaGenerator, GenerationOutcome
from licenseiq.pipeline.term_enrichment import (
    TermEnricher,
    find_term_mappings,
    format_dual_terminology,
)
from licenseiq.pipeline.orchestrator import RuleSynthesisPipeline

__all__ = [
    "filter_royalty_entities",
    "FormulaGenerator",
    "GenerationOutcome",
    "TermEnricher",
    "find_term_mappings",
    "format_dual_terminology",
    "RuleSynthesisPipeline",
]
