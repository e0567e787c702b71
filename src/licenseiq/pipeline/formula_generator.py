"""
Stage 2: LLM Formula Generator

Converts extracted entities into FormulaNode rule definitions by prompting
the LLM. Two modes:

1. Per-entity - one royalty entity in, at most one rule out
2. Context - run once when no royalty entity was found, inferring rules
   from the broader entity set at reduced confidence
"""

import json
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import ValidationError

from licenseiq.config import Settings, get_settings
from licenseiq.exceptions import FormulaValidationError, LLMResponseError
from licenseiq.models.entity import ExtractedEntity, GraphNode
from licenseiq.models.formula import formula_to_json, parse_formula
from licenseiq.models.rule import SynthesizedRule
from licenseiq.services.llm_service import LLMService, get_llm_service

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = "You are a royalty calculation expert. Always respond with valid JSON."

FORMULA_NODE_CATALOGUE = """AVAILABLE FORMULA NODE TYPES:
- percentage: { "type": "percentage", "rate": 0.15, "base": "netSales" }
- fixed: { "type": "fixed", "amount": 1000, "currency": "USD" }
- tier: { "type": "tier", "tiers": [{ "min": 0, "max": 10000, "rate": 0.10 }, { "min": 10000, "max": null, "rate": 0.15 }] }
- conditional: { "type": "conditional", "condition": { "field": "territory", "operator": "equals", "value": "US" }, "trueFormula": {...}, "falseFormula": {...} }
- arithmetic: { "type": "arithmetic", "operator": "+", "operands": [{...}, {...}] }
- minimum: { "type": "minimum", "amount": 500 }
- maximum: { "type": "maximum", "amount": 100000 }"""


@dataclass
class GenerationOutcome:
    """Rules produced by one generation call, or the reason there are none."""

    rules: list[SynthesizedRule] = field(default_factory=list)
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class FormulaGenerator:
    """
    Stage 2: LLM-backed formula synthesis.

    Never raises on model or parse failures; they are logged and reported
    through GenerationOutcome.error.
    """

    def __init__(self, settings: Settings | None = None, llm: LLMService | None = None):
        self.settings = settings or get_settings()
        self._llm = llm

    @property
    def llm(self) -> LLMService:
        if self._llm is None:
            self._llm = get_llm_service()
        return self._llm

    # =========================================================================
    # Per-entity mode
    # =========================================================================

    async def synthesize_from_entity(
        self,
        entity: ExtractedEntity,
        graph_nodes: list[GraphNode],
    ) -> SynthesizedRule | None:
        """Synthesize a single rule from an entity, or None on failure."""
        outcome = await self.generate_for_entity(entity, graph_nodes)
        return outcome.rules[0] if outcome.rules else None

    async def generate_for_entity(
        self,
        entity: ExtractedEntity,
        graph_nodes: list[GraphNode],
    ) -> GenerationOutcome:
        prompt = self.build_entity_prompt(entity)

        try:
            response, model = await self.llm.generate(
                SYSTEM_PROMPT,
                prompt,
                temperature=self.settings.entity_temperature,
                max_tokens=self.settings.entity_max_tokens,
            )
            payload = self.llm.parse_json(response, opener="{")
            if not isinstance(payload, dict):
                raise LLMResponseError("Response did not contain a JSON object")

            linked_node = next((n for n in graph_nodes if n.label == entity.label), None)
            rule = self._build_rule(
                payload,
                confidence=self._entity_confidence(payload.get("confidence"), entity),
                linked_node_id=linked_node.id if linked_node else None,
            )
        except Exception as e:
            logger.error(
                "formula_generation_failed",
                entity=entity.label,
                error=str(e),
            )
            return GenerationOutcome(error=str(e))

        logger.info(
            "formula_generated",
            entity=entity.label,
            rule_type=rule.rule_type,
            confidence=rule.confidence,
            model=model,
        )
        return GenerationOutcome(rules=[rule])

    def build_entity_prompt(self, entity: ExtractedEntity) -> str:
        entity_json = json.dumps(entity.to_prompt_dict(), indent=2)
        return f"""You are a royalty calculation expert. Convert this extracted entity into a FormulaNode expression tree.

ENTITY:
{entity_json}

{FORMULA_NODE_CATALOGUE}

Create a FormulaNode tree that represents this royalty rule.

Respond with JSON:
{{
  "ruleType": "inferred type (e.g., 'percentage_of_sales', 'tiered_volume', 'fixed_quarterly')",
  "ruleName": "descriptive name",
  "description": "what this rule does",
  "formulaDefinition": {{ FormulaNode tree }},
  "applicabilityFilters": {{ "product": "...", "territory": "...", etc. }},
  "confidence": 0.85
}}"""

    # =========================================================================
    # Context mode
    # =========================================================================

    async def synthesize_from_context(
        self,
        entities: list[ExtractedEntity],
    ) -> list[SynthesizedRule]:
        """Infer rules from general contract context. Empty list on failure."""
        outcome = await self.generate_from_context(entities)
        return outcome.rules

    async def generate_from_context(
        self,
        entities: list[ExtractedEntity],
    ) -> GenerationOutcome:
        prompt = self.build_context_prompt(entities)

        try:
            response, model = await self.llm.generate(
                SYSTEM_PROMPT,
                prompt,
                temperature=self.settings.context_temperature,
                max_tokens=self.settings.context_max_tokens,
            )
            payload = self.llm.parse_json(response, opener="[")
            if not isinstance(payload, list):
                raise LLMResponseError("Response did not contain a JSON array")
        except Exception as e:
            logger.error("context_synthesis_failed", error=str(e))
            return GenerationOutcome(error=str(e))

        rules = []
        for index, item in enumerate(payload):
            if not isinstance(item, dict):
                logger.warning("inferred_rule_skipped", index=index, error="not an object")
                continue
            confidence = (
                self._parse_confidence(item.get("confidence"))
                * self.settings.context_confidence_factor
            )
            try:
                rule = self._build_rule(item, confidence=confidence, inferred=True)
            except (FormulaValidationError, ValidationError) as e:
                logger.warning("inferred_rule_skipped", index=index, error=str(e))
                continue
            rules.append(rule)

        logger.info("rules_inferred_from_context", count=len(rules), model=model)
        return GenerationOutcome(rules=rules)

    def build_context_prompt(self, entities: list[ExtractedEntity]) -> str:
        limit = self.settings.context_entity_limit
        shown = [e.to_prompt_dict() for e in entities[:limit]]
        partial_note = f"\nNOTE: At most {limit} entities are shown, so this list may be partial."
        if len(entities) > limit:
            partial_note += f" It shows the first {limit} of {len(entities)} entities."
        partial_note += "\n"

        return f"""Based on these contract entities, infer likely royalty rules.

ENTITIES:
{json.dumps(shown, indent=2)}
{partial_note}
Even if no explicit royalty clauses are mentioned, infer reasonable rules based on:
- Contract type
- Payment terms mentioned
- Product/service pricing
- Industry standards

{FORMULA_NODE_CATALOGUE}

Respond with JSON array of rules (may be empty if truly no royalty structure):
[
  {{
    "ruleType": "...",
    "ruleName": "...",
    "description": "...",
    "formulaDefinition": {{...}},
    "applicabilityFilters": {{}},
    "confidence": 0.5
  }}
]"""

    # =========================================================================
    # Helpers
    # =========================================================================

    def _build_rule(
        self,
        payload: dict[str, Any],
        confidence: float,
        linked_node_id: str | None = None,
        inferred: bool = False,
    ) -> SynthesizedRule:
        formula = parse_formula(
            payload.get("formulaDefinition"),
            max_depth=self.settings.formula_max_depth,
        )
        return SynthesizedRule(
            rule_type=payload.get("ruleType"),
            rule_name=payload.get("ruleName"),
            description=payload.get("description"),
            formula_definition=formula_to_json(formula),
            applicability_filters=payload.get("applicabilityFilters") or {},
            confidence=_clamp(confidence),
            linked_node_id=linked_node_id,
            inferred=inferred,
        )

    @staticmethod
    def _parse_confidence(value: Any) -> float:
        """Model-stated confidence as a float, 0.0 if unparseable."""
        if isinstance(value, bool):
            return 0.0
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    def _entity_confidence(self, value: Any, entity: ExtractedEntity) -> float:
        # A missing, unparseable or zero confidence falls back to the entity's own
        return self._parse_confidence(value) or entity.confidence


def _clamp(value: float) -> float:
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, value))


def get_formula_generator() -> FormulaGenerator:
    """Get formula generator instance."""
    return FormulaGenerator()
