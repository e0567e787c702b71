"""
Rule Synthesis Orchestrator

Coordinates the rule synthesis pipeline for one contract:
Filter -> Generate -> Enrich -> Persist.
"""

import structlog

from licenseiq.config import Settings, get_settings
from licenseiq.exceptions import PersistenceError
from licenseiq.models.entity import ExtractedEntity, GraphNode
from licenseiq.models.rule import (
    CONTEXT_UNIT,
    RuleFailure,
    RuleSynthesisResult,
    SynthesizedRule,
    ValidationStatus,
)
from licenseiq.pipeline.entity_filter import filter_royalty_entities
from licenseiq.pipeline.formula_generator import FormulaGenerator, get_formula_generator
from licenseiq.pipeline.term_enrichment import TermEnricher, get_term_enricher
from licenseiq.storage.postgres import PostgresAdapter, get_postgres_adapter

logger = structlog.get_logger(__name__)


class RuleSynthesisPipeline:
    """
    Orchestrates rule synthesis.

    Coordinates:
    1. Entity filtering
    2. Per-entity formula generation (or one context run when nothing matched)
    3. ERP term enrichment
    4. Rule persistence

    Entities are processed sequentially in input order.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        generator: FormulaGenerator | None = None,
        enricher: TermEnricher | None = None,
        store: PostgresAdapter | None = None,
    ):
        self.settings = settings or get_settings()
        self._generator = generator
        self._enricher = enricher
        self._store = store

    @property
    def generator(self) -> FormulaGenerator:
        if self._generator is None:
            self._generator = get_formula_generator()
        return self._generator

    @property
    def enricher(self) -> TermEnricher:
        if self._enricher is None:
            self._enricher = get_term_enricher()
        return self._enricher

    @property
    def store(self) -> PostgresAdapter:
        if self._store is None:
            self._store = get_postgres_adapter()
        return self._store

    @property
    def confidence_threshold(self) -> float:
        return self.settings.confidence_threshold

    # =========================================================================
    # Main Pipeline
    # =========================================================================

    async def synthesize(
        self,
        entities: list[ExtractedEntity],
        graph_nodes: list[GraphNode],
        contract_id: str,
        run_id: str | None,
    ) -> RuleSynthesisResult:
        """
        Synthesize, enrich and persist royalty rules for a contract.

        Args:
            entities: Entities extracted upstream
            graph_nodes: Knowledge graph nodes used for provenance links
            contract_id: Contract the rules belong to
            run_id: Extraction run that produced the entities

        Returns:
            RuleSynthesisResult with persisted rules and per-unit failures

        Raises:
            PersistenceError: if a rule insert fails and
                `synthesis_abort_on_persist_error` is set
        """
        logger.info(
            "rule_synthesis_started",
            contract_id=contract_id,
            run_id=run_id,
            entities=len(entities),
        )

        royalty_entities = filter_royalty_entities(entities)
        logger.info(
            "royalty_entities_filtered",
            contract_id=contract_id,
            matched=len(royalty_entities),
        )

        result = RuleSynthesisResult()

        if not royalty_entities:
            await self._synthesize_from_context(entities, contract_id, run_id, result)
        else:
            for entity in royalty_entities:
                outcome = await self.generator.generate_for_entity(entity, graph_nodes)
                if outcome.failed:
                    result.failures.append(
                        RuleFailure(unit=entity.label, stage="generate", error=outcome.error)
                    )
                for rule in outcome.rules:
                    await self._enrich_and_persist(rule, entity.label, contract_id, run_id, result)

        result.average_confidence = self.average_confidence(result.rules)

        logger.info(
            "rule_synthesis_completed",
            contract_id=contract_id,
            rules=len(result.rules),
            low_confidence=len(result.low_confidence_rules),
            failures=len(result.failures),
            average_confidence=round(result.average_confidence, 3),
            context_fallback=result.used_context_fallback,
        )
        return result

    async def _synthesize_from_context(
        self,
        entities: list[ExtractedEntity],
        contract_id: str,
        run_id: str | None,
        result: RuleSynthesisResult,
    ) -> None:
        """Fallback when no explicit royalty entity was found."""
        logger.info("context_synthesis_started", contract_id=contract_id)
        result.used_context_fallback = True

        outcome = await self.generator.generate_from_context(entities)
        if outcome.failed:
            result.failures.append(
                RuleFailure(unit=CONTEXT_UNIT, stage="generate", error=outcome.error)
            )

        for rule in outcome.rules:
            await self._enrich_and_persist(rule, rule.rule_name, contract_id, run_id, result)

    async def _enrich_and_persist(
        self,
        rule: SynthesizedRule,
        unit: str,
        contract_id: str,
        run_id: str | None,
        result: RuleSynthesisResult,
    ) -> None:
        rule = await self.enricher.enrich(rule, contract_id)
        status, is_active = self.classify(rule)

        try:
            rule_id = await self.store.insert_rule_definition(
                contract_id=contract_id,
                run_id=run_id,
                rule=rule,
                validation_status=status,
                is_active=is_active,
            )
        except PersistenceError as e:
            if self.settings.synthesis_abort_on_persist_error:
                raise
            result.failures.append(RuleFailure(unit=unit, stage="persist", error=str(e)))
            return

        rule = rule.model_copy(
            update={"id": rule_id, "validation_status": status, "is_active": is_active}
        )
        result.rules.append(rule)
        if rule.inferred or rule.confidence < self.confidence_threshold:
            result.low_confidence_rules.append(rule)

        logger.info(
            "rule_persisted",
            rule_id=rule_id,
            rule_name=rule.rule_name,
            confidence=rule.confidence,
            validation_status=status.value,
            term_mappings=len(rule.term_mappings or []),
        )

    # =========================================================================
    # Classification
    # =========================================================================

    def classify(self, rule: SynthesizedRule) -> tuple[ValidationStatus, bool]:
        """
        Initial (validation_status, is_active) for a new rule.

        Inferred rules always need human sign-off regardless of confidence.
        """
        if rule.inferred:
            return ValidationStatus.PENDING, False
        if rule.confidence >= self.confidence_threshold:
            return ValidationStatus.VALIDATED, True
        return ValidationStatus.PENDING, False

    @staticmethod
    def average_confidence(rules: list[SynthesizedRule]) -> float:
        if not rules:
            return 0.0
        return sum(r.confidence for r in rules) / len(rules)


def get_rule_synthesis_pipeline() -> RuleSynthesisPipeline:
    """Get rule synthesis pipeline instance."""
    return RuleSynthesisPipeline()
