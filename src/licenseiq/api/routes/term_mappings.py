"""
Confirmed term mapping routes.

Provides endpoints to:
- List confirmed contract-term to ERP-field mappings for a contract
- Correct the contract term or ERP field of a mapping
- Remove a mapping
"""

from typing import Any, Optional

import structlog
from fastapi import APIRouter, HTTPException, Query

from licenseiq.models.api import TermMappingResponse, TermMappingUpdateRequest
from licenseiq.storage.postgres import CONFIRMED, get_postgres_adapter

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/confirmed", response_model=list[TermMappingResponse])
async def get_confirmed_term_mappings(
    contract_id: Optional[str] = Query(default=None),
) -> list[TermMappingResponse]:
    """Confirmed mappings for a contract, highest confidence first."""
    if not contract_id:
        raise HTTPException(status_code=400, detail="contract_id is required")

    store = get_postgres_adapter()

    try:
        rows = await store.get_pending_term_mappings(contract_id, status=CONFIRMED)
    except Exception as e:
        logger.error("get_confirmed_term_mappings_failed", contract_id=contract_id, error=str(e))
        raise HTTPException(status_code=500, detail=str(e))

    return [TermMappingResponse.from_row(row) for row in rows]


@router.patch("/{mapping_id}", response_model=TermMappingResponse)
async def update_term_mapping(
    mapping_id: str,
    request: TermMappingUpdateRequest,
) -> TermMappingResponse:
    """Update the contract term and/or ERP field name of a mapping."""
    if request.contract_term is None and request.erp_field_name is None:
        raise HTTPException(
            status_code=400,
            detail="At least one of contractTerm or erpFieldName is required",
        )

    store = get_postgres_adapter()

    try:
        row = await store.update_term_mapping(
            mapping_id,
            contract_term=request.contract_term,
            erp_field_name=request.erp_field_name,
        )
    except Exception as e:
        logger.error("update_term_mapping_failed", mapping_id=mapping_id, error=str(e))
        raise HTTPException(status_code=500, detail=str(e))

    if row is None:
        raise HTTPException(status_code=404, detail="Term mapping not found")

    return TermMappingResponse.from_row(row)


@router.delete("/{mapping_id}")
async def delete_term_mapping(mapping_id: str) -> dict[str, Any]:
    """Delete a term mapping."""
    store = get_postgres_adapter()

    try:
        deleted = await store.delete_term_mapping(mapping_id)
    except Exception as e:
        logger.error("delete_term_mapping_failed", mapping_id=mapping_id, error=str(e))
        raise HTTPException(status_code=500, detail=str(e))

    if not deleted:
        raise HTTPException(status_code=404, detail="Term mapping not found")

    return {"id": mapping_id, "deleted": True}
