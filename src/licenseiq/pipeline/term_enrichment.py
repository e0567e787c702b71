"""
Stage 3: Term Enrichment

Cross-references synthesized rules against confirmed contract-term to ERP
field mappings so rules can be shown with dual terminology, e.g.
"Net Sales (ERP: NET_SALES_AMT)".
"""

from typing import Any, Iterable

import structlog

from licenseiq.config import Settings, get_settings
from licenseiq.models.rule import TERM_MAPPINGS_KEY, SynthesizedRule, TermMapping
from licenseiq.storage.postgres import PostgresAdapter, get_postgres_adapter

logger = structlog.get_logger(__name__)


def _match_mapping(value: str, mappings: list[TermMapping]) -> TermMapping | None:
    """First mapping whose term equals or occurs in `value`, case-insensitively."""
    lowered = value.lower()
    for mapping in mappings:
        term = mapping.contract_term.lower()
        if not term:
            continue
        if term == lowered or term in lowered:
            return mapping
    return None


def find_term_mappings(
    rule: SynthesizedRule,
    mappings: list[TermMapping],
    max_depth: int = 32,
) -> list[TermMapping]:
    """
    Collect the mappings referenced by string values in a rule.

    Walks `formula_definition` then `applicability_filters` depth-first,
    descending into nested objects and arrays. Each string value picks the
    first matching mapping in list order. Results are deduplicated by
    contract term, keeping the first occurrence.
    """
    found: list[TermMapping] = []

    def walk(node: Any, depth: int) -> None:
        if depth > max_depth:
            logger.warning(
                "term_walk_depth_exceeded",
                rule_name=rule.rule_name,
                max_depth=max_depth,
            )
            return
        if isinstance(node, dict):
            children = [v for k, v in node.items() if k != TERM_MAPPINGS_KEY]
        elif isinstance(node, list):
            children = node
        else:
            return
        for value in children:
            if isinstance(value, str):
                mapping = _match_mapping(value, mappings)
                if mapping is not None:
                    found.append(mapping)
            else:
                walk(value, depth + 1)

    walk(rule.formula_definition, 1)
    walk(rule.applicability_filters, 1)

    seen: set[str] = set()
    unique = []
    for mapping in found:
        if mapping.contract_term not in seen:
            seen.add(mapping.contract_term)
            unique.append(mapping)
    return unique


def format_dual_terminology(contract_term: str, term_mappings: Iterable[TermMapping]) -> str:
    """
    Format a term with its ERP field name.

    Returns "Contract Term (ERP: Field Name)" on a case-insensitive exact
    match, otherwise the term unchanged.
    """
    lowered = contract_term.lower()
    for mapping in term_mappings:
        if mapping.contract_term.lower() == lowered:
            return f"{contract_term} (ERP: {mapping.erp_field_name})"
    return contract_term


class TermEnricher:
    """Attaches confirmed ERP term mappings to synthesized rules."""

    def __init__(
        self,
        settings: Settings | None = None,
        store: PostgresAdapter | None = None,
    ):
        self.settings = settings or get_settings()
        self._store = store

    @property
    def store(self) -> PostgresAdapter:
        if self._store is None:
            self._store = get_postgres_adapter()
        return self._store

    async def get_confirmed_term_mappings(self, contract_id: str) -> list[TermMapping]:
        """Confirmed mappings for a contract; empty if they cannot be loaded."""
        try:
            return await self.store.get_confirmed_term_mappings(contract_id)
        except Exception as e:
            logger.error(
                "confirmed_term_mappings_failed",
                contract_id=contract_id,
                error=str(e),
            )
            return []

    async def enrich(self, rule: SynthesizedRule, contract_id: str) -> SynthesizedRule:
        """
        Return a copy of `rule` with `term_mappings` set.

        When the contract has no confirmed mappings the rule is returned
        unchanged.
        """
        confirmed = await self.get_confirmed_term_mappings(contract_id)
        if not confirmed:
            return rule

        term_mappings = find_term_mappings(
            rule, confirmed, max_depth=self.settings.formula_max_depth
        )
        if term_mappings:
            logger.info(
                "rule_enriched",
                rule_name=rule.rule_name,
                term_mappings=len(term_mappings),
            )
        return rule.model_copy(update={"term_mappings": term_mappings})

    async def format_term(self, contract_term: str, contract_id: str) -> str:
        """Dual-terminology display of a term using the contract's mappings."""
        confirmed = await self.get_confirmed_term_mappings(contract_id)
        return format_dual_terminology(contract_term, confirmed)


def get_term_enricher() -> TermEnricher:
    """Get term enricher instance."""
    return TermEnricher()
