"""
Rule synthesis and rule definition routes.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, HTTPException, Query

from licenseiq.exceptions import PersistenceError
from licenseiq.models.api import (
    RuleDefinitionResponse,
    SynthesisRequest,
    SynthesisResponse,
)
from licenseiq.models.rule import ValidationStatus
from licenseiq.pipeline.orchestrator import get_rule_synthesis_pipeline
from licenseiq.storage.postgres import get_postgres_adapter

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post("/synthesize", response_model=SynthesisResponse)
async def synthesize_rules(request: SynthesisRequest) -> SynthesisResponse:
    """
    Synthesize royalty rules from extracted entities and store them.

    Runs per-entity generation for royalty entities, or a single context
    pass when none match.
    """
    pipeline = get_rule_synthesis_pipeline()

    try:
        result = await pipeline.synthesize(
            entities=request.entities,
            graph_nodes=request.graph_nodes,
            contract_id=request.contract_id,
            run_id=request.run_id,
        )
    except PersistenceError as e:
        logger.error(
            "rule_synthesis_aborted",
            contract_id=request.contract_id,
            error=str(e),
        )
        raise HTTPException(status_code=500, detail=str(e))

    return SynthesisResponse(
        contract_id=request.contract_id,
        run_id=request.run_id,
        rules=result.rules,
        low_confidence_rule_ids=[r.id for r in result.low_confidence_rules],
        average_confidence=result.average_confidence,
        used_context_fallback=result.used_context_fallback,
        failures=result.failures,
    )


@router.get("", response_model=list[RuleDefinitionResponse])
async def list_rules(
    contract_id: str = Query(..., min_length=1),
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=500, ge=1, le=1000),
) -> list[RuleDefinitionResponse]:
    """List stored rule definitions for a contract."""
    validation_status = None
    if status:
        try:
            validation_status = ValidationStatus(status)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid status: {status}")

    store = get_postgres_adapter()

    try:
        rows = await store.list_rule_definitions(
            contract_id,
            validation_status=validation_status,
            limit=limit,
        )
    except Exception as e:
        logger.error("list_rules_failed", contract_id=contract_id, error=str(e))
        raise HTTPException(status_code=500, detail=str(e))

    return [RuleDefinitionResponse.model_validate(row) for row in rows]
