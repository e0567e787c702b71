"""
Dual terminology formatting routes.
"""

import structlog
from fastapi import APIRouter

from licenseiq.models.api import FormatTermRequest, FormatTermResponse
from licenseiq.pipeline.term_enrichment import get_term_enricher

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post("/format", response_model=FormatTermResponse)
async def format_term(request: FormatTermRequest) -> FormatTermResponse:
    """
    Render a contract term with its confirmed ERP field name.

    Unmapped terms are returned unchanged.
    """
    enricher = get_term_enricher()
    display = await enricher.format_term(request.term, request.contract_id)
    return FormatTermResponse(term=request.term, display=display)
