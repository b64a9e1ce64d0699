"""Generation Routes - product descriptions and SEO metadata.

Endpoints:
- POST /api/generate/description - Generate or rewrite one product description
- POST /api/generate/descriptions/bulk - Rewrite descriptions for several products
- POST /api/generate/seo - Generate SEO title and meta description

Every call is metered against the shop's free credits before the model runs.
"""
from fastapi import APIRouter, HTTPException, Depends, status
from typing import List, Optional
import logging

from middleware import require_shop, get_content_service, get_billing_gateway
from models import (
    BulkDescriptionRequest,
    BulkDescriptionResult,
    DescriptionRequest,
    SeoRequest,
)
from services.billing_gateway import BillingGateway
from services.content_service import ContentService, RATE_LIMIT_MESSAGE
from services.errors import (
    AllCredentialsExhausted,
    BillingQueryFailed,
    BillingRequired,
    GenerationError,
    InvalidGenerationOutput,
    NoCredentialsAvailable,
    RateLimited,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/generate", tags=["generate"])


def http_error_for(e: Exception, what: str) -> HTTPException:
    """Map a pipeline failure to the HTTP response the admin UI expects."""
    if isinstance(e, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, BillingRequired):
        return HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=e.message)
    if isinstance(e, RateLimited):
        return HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=RATE_LIMIT_MESSAGE)
    if isinstance(e, NoCredentialsAvailable):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Server configuration error: API key missing."
        )
    if isinstance(e, (BillingQueryFailed, InvalidGenerationOutput)):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to generate {what}. Error: {e}"
        )
    if isinstance(e, (AllCredentialsExhausted, GenerationError)):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to generate {what}. Error: {e}"
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")


@router.post("/description")
async def generate_description(
    request: DescriptionRequest,
    shop: str = Depends(require_shop),
    service: ContentService = Depends(get_content_service),
    billing: Optional[BillingGateway] = Depends(get_billing_gateway),
):
    """Generate a description from the title, or rewrite the existing one."""
    try:
        text = await service.generate_description(shop, request, billing)
    except (ValueError, GenerationError) as e:
        logger.error(f"Description generation failed for {shop}: {e}")
        raise http_error_for(e, "description")
    return {"rewritten": text}


@router.post("/descriptions/bulk", response_model=List[BulkDescriptionResult])
async def generate_descriptions_bulk(
    request: BulkDescriptionRequest,
    shop: str = Depends(require_shop),
    service: ContentService = Depends(get_content_service),
    billing: Optional[BillingGateway] = Depends(get_billing_gateway),
):
    """Rewrite several descriptions. Per-item failures are returned inline."""
    try:
        return await service.generate_descriptions_bulk(shop, request.items, billing)
    except (ValueError, GenerationError) as e:
        logger.error(f"Bulk generation failed for {shop}: {e}")
        raise http_error_for(e, "descriptions")


@router.post("/seo")
async def generate_seo(
    request: SeoRequest,
    shop: str = Depends(require_shop),
    service: ContentService = Depends(get_content_service),
    billing: Optional[BillingGateway] = Depends(get_billing_gateway),
):
    try:
        seo = await service.generate_seo(shop, request, billing)
    except (ValueError, GenerationError) as e:
        logger.error(f"SEO generation failed for {shop}: {e}")
        raise http_error_for(e, "SEO")
    return {"generated_seo": seo.model_dump()}
