"""Tests for licenseiq/pipeline/orchestrator.py: Filter -> Generate -> Enrich -> Persist."""

import json
from contextlib import asynccontextmanager

import pytest
from unittest.mock import AsyncMock

from licenseiq.exceptions import PersistenceError
from licenseiq.models.entity import ExtractedEntity
from licenseiq.models.rule import TERM_MAPPINGS_KEY, CONTEXT_UNIT, ValidationStatus
from licenseiq.pipeline.formula_generator import FormulaGenerator
from licenseiq.pipeline.orchestrator import RuleSynthesisPipeline
from licenseiq.pipeline.term_enrichment import TermEnricher
from licenseiq.storage.postgres import PostgresAdapter


@pytest.fixture
def pipeline_factory(settings, mock_llm, mock_store):
    def _make(**overrides):
        s = settings.model_copy(update=overrides) if overrides else settings
        return RuleSynthesisPipeline(
            settings=s,
            generator=FormulaGenerator(settings=s, llm=mock_llm),
            enricher=TermEnricher(settings=s, store=mock_store),
            store=mock_store,
        )
    return _make


@pytest.fixture
def pipeline(pipeline_factory):
    return pipeline_factory()


def _responses(mock_llm, make_response, *payloads):
    mock_llm.generate.side_effect = [(make_response(p), "test-model") for p in payloads]


def _inserted(mock_store):
    return [c.kwargs for c in mock_store.insert_rule_definition.call_args_list]


class TestContextFallback:

    @pytest.mark.asyncio
    async def test_runs_context_once(self, pipeline, mock_llm, non_royalty_entities, rule_payload):
        mock_llm.generate.return_value = (
            f"```json\n{json.dumps([rule_payload(confidence=0.9), rule_payload('Floor', 0.5)])}\n```",
            "test-model",
        )

        result = await pipeline.synthesize(non_royalty_entities, [], "contract-1", "run-1")

        assert mock_llm.generate.await_count == 1
        assert "infer likely royalty rules" in mock_llm.generate.call_args.args[1]
        assert result.used_context_fallback
        assert len(result.rules) == 2

    @pytest.mark.asyncio
    async def test_inferred_rules_pending_inactive(self, pipeline, mock_llm, mock_store,
                                                   non_royalty_entities, rule_payload):
        # 0.95 * 0.8 = 0.76 is above threshold but still needs review
        mock_llm.generate.return_value = (json.dumps([rule_payload(confidence=0.95)]), "m")

        result = await pipeline.synthesize(non_royalty_entities, [], "contract-1", "run-1")

        rule = result.rules[0]
        assert rule.confidence == pytest.approx(0.76)
        assert rule.validation_status == ValidationStatus.PENDING
        assert rule.is_active is False
        assert result.low_confidence_rules == [rule]
        call = _inserted(mock_store)[0]
        assert call["validation_status"] == ValidationStatus.PENDING
        assert call["is_active"] is False

    @pytest.mark.asyncio
    async def test_empty_entities_use_context(self, pipeline, mock_llm):
        mock_llm.generate.return_value = ("[]", "test-model")

        result = await pipeline.synthesize([], [], "contract-1", "run-1")

        assert mock_llm.generate.await_count == 1
        assert result.used_context_fallback
        assert result.rules == []
        assert result.average_confidence == 0.0
        assert result.failures == []

    @pytest.mark.asyncio
    async def test_context_failure_recorded(self, pipeline, mock_llm, non_royalty_entities):
        mock_llm.generate.side_effect = RuntimeError("provider down")

        result = await pipeline.synthesize(non_royalty_entities, [], "contract-1", "run-1")

        assert result.rules == []
        assert [(f.unit, f.stage) for f in result.failures] == [(CONTEXT_UNIT, "generate")]


class TestPerEntity:

    @pytest.mark.asyncio
    async def test_one_call_per_matched_entity(self, pipeline, mock_llm, make_response,
                                               sample_entities, rule_payload):
        _responses(mock_llm, make_response, rule_payload("A"), rule_payload("B"))

        result = await pipeline.synthesize(sample_entities, [], "contract-1", "run-1")

        assert mock_llm.generate.await_count == 2
        assert not result.used_context_fallback
        assert [r.rule_name for r in result.rules] == ["A", "B"]
        assert [r.id for r in result.rules] == ["rule-1", "rule-2"]

    @pytest.mark.asyncio
    async def test_generation_failure_does_not_abort(self, pipeline, mock_llm, make_response,
                                                     sample_entities, rule_payload):
        mock_llm.generate.side_effect = [
            ("not json at all", "test-model"),
            (make_response(rule_payload("Quarterly")), "test-model"),
        ]

        result = await pipeline.synthesize(sample_entities, [], "contract-1", "run-1")

        assert [r.rule_name for r in result.rules] == ["Quarterly"]
        assert [(f.unit, f.stage) for f in result.failures] == [("Net Sales Royalty", "generate")]
        assert not result.used_context_fallback

    @pytest.mark.asyncio
    async def test_all_generation_fails_no_context_fallback(self, pipeline, mock_llm,
                                                            royalty_entity):
        mock_llm.generate.return_value = ("nothing useful", "test-model")

        result = await pipeline.synthesize([royalty_entity], [], "contract-1", "run-1")

        assert mock_llm.generate.await_count == 1
        assert result.rules == []
        assert not result.used_context_fallback

    @pytest.mark.parametrize("confidence, status, active", [
        (0.70, ValidationStatus.VALIDATED, True),
        (0.95, ValidationStatus.VALIDATED, True),
        (0.69, ValidationStatus.PENDING, False),
        (0.10, ValidationStatus.PENDING, False),
    ])
    @pytest.mark.asyncio
    async def test_threshold(self, pipeline, mock_llm, make_response, royalty_entity,
                             rule_payload, confidence, status, active):
        _responses(mock_llm, make_response, rule_payload(confidence=confidence))

        result = await pipeline.synthesize([royalty_entity], [], "contract-1", "run-1")

        rule = result.rules[0]
        assert rule.validation_status == status
        assert rule.is_active is active
        assert (rule in result.low_confidence_rules) is (not active)

    @pytest.mark.asyncio
    async def test_injected_threshold(self, pipeline_factory, mock_llm, make_response,
                                      royalty_entity, rule_payload):
        pipeline = pipeline_factory(confidence_threshold=0.9)
        _responses(mock_llm, make_response, rule_payload(confidence=0.85))

        result = await pipeline.synthesize([royalty_entity], [], "contract-1", "run-1")

        assert result.rules[0].validation_status == ValidationStatus.PENDING
        assert len(result.low_confidence_rules) == 1

    @pytest.mark.asyncio
    async def test_average_confidence(self, pipeline, mock_llm, make_response,
                                      sample_entities, rule_payload):
        _responses(
            mock_llm, make_response,
            rule_payload("A", confidence=0.9), rule_payload("B", confidence=0.5),
        )

        result = await pipeline.synthesize(sample_entities, [], "contract-1", "run-1")

        assert result.average_confidence == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_links_graph_node(self, pipeline, mock_llm, mock_store, make_response,
                                    royalty_entity, graph_nodes, rule_payload):
        _responses(mock_llm, make_response, rule_payload())

        result = await pipeline.synthesize([royalty_entity], graph_nodes, "contract-1", "run-1")

        assert result.rules[0].linked_node_id == "node-2"
        assert _inserted(mock_store)[0]["rule"].linked_node_id == "node-2"


class TestEnrichmentAndPersistence:

    @pytest.mark.asyncio
    async def test_end_to_end_single_entity(self, pipeline, mock_llm, mock_store, make_response,
                                            rule_payload):
        entity = ExtractedEntity(
            type="Royalty Rate",
            label="Net Sales Royalty",
            properties={"rate": 0.15},
            confidence=0.9,
        )
        _responses(mock_llm, make_response, rule_payload(confidence=0.85))

        result = await pipeline.synthesize([entity], [], "contract-1", "run-1")

        assert len(result.rules) == 1
        rule = result.rules[0]
        assert rule.id == "rule-1"
        assert rule.validation_status == ValidationStatus.VALIDATED
        assert rule.is_active is True
        assert result.low_confidence_rules == []
        assert result.average_confidence == pytest.approx(0.85)

        call = _inserted(mock_store)[0]
        assert call["contract_id"] == "contract-1"
        assert call["run_id"] == "run-1"
        assert call["validation_status"] == ValidationStatus.VALIDATED
        assert call["is_active"] is True
        assert TERM_MAPPINGS_KEY not in call["rule"].stored_formula()

    @pytest.mark.asyncio
    async def test_term_mappings_stored_with_formula(self, pipeline, mock_llm, mock_store,
                                                     make_response, royalty_entity,
                                                     term_mappings, rule_payload):
        mock_store.get_confirmed_term_mappings.return_value = term_mappings
        _responses(mock_llm, make_response, rule_payload())

        result = await pipeline.synthesize([royalty_entity], [], "contract-1", "run-1")

        assert [m.erp_field_name for m in result.rules[0].term_mappings] == ["NET_SALES_AMT"]
        stored = _inserted(mock_store)[0]["rule"].stored_formula()
        assert stored[TERM_MAPPINGS_KEY][0]["erpFieldName"] == "NET_SALES_AMT"
        assert stored["type"] == "percentage"

    @pytest.mark.asyncio
    async def test_persist_error_aborts_by_default(self, pipeline, mock_llm, mock_store,
                                                   make_response, sample_entities, rule_payload):
        _responses(mock_llm, make_response, rule_payload("A"), rule_payload("B"))
        mock_store.insert_rule_definition = AsyncMock(side_effect=PersistenceError("insert failed"))

        with pytest.raises(PersistenceError):
            await pipeline.synthesize(sample_entities, [], "contract-1", "run-1")

        assert mock_llm.generate.await_count == 1

    @pytest.mark.asyncio
    async def test_persist_error_recorded_when_configured(self, pipeline_factory, mock_llm,
                                                          mock_store, make_response,
                                                          sample_entities, rule_payload):
        pipeline = pipeline_factory(synthesis_abort_on_persist_error=False)
        _responses(mock_llm, make_response, rule_payload("A"), rule_payload("B"))
        mock_store.insert_rule_definition = AsyncMock(
            side_effect=[PersistenceError("insert failed"), "rule-9"]
        )

        result = await pipeline.synthesize(sample_entities, [], "contract-1", "run-1")

        assert [r.id for r in result.rules] == ["rule-9"]
        assert [(f.unit, f.stage) for f in result.failures] == [("Net Sales Royalty", "persist")]
        assert result.average_confidence == pytest.approx(0.85)

    @pytest.mark.asyncio
    async def test_unreachable_database_recorded_when_configured(
        self, pipeline_factory, mock_llm, make_response, royalty_entity, rule_payload,
    ):
        store = PostgresAdapter.__new__(PostgresAdapter)

        @asynccontextmanager
        async def _refused():
            raise ConnectionRefusedError(111, "Connect call failed")
            yield

        store.session = _refused
        pipeline = pipeline_factory(synthesis_abort_on_persist_error=False)
        pipeline._store = store
        _responses(mock_llm, make_response, rule_payload())

        result = await pipeline.synthesize([royalty_entity], [], "contract-1", "run-1")

        assert result.rules == []
        assert [(f.unit, f.stage) for f in result.failures] == [("Net Sales Royalty", "persist")]


class TestAverageConfidence:

    def test_no_rules_is_zero(self):
        assert RuleSynthesisPipeline.average_confidence([]) == 0.0
