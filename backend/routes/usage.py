"""Usage Routes - credit balance and generation counters for the dashboard.

GET /api/usage - Usage summary for the current shop. The first call for a
new shop creates its usage record with the free credit grant.
"""
from fastapi import APIRouter, Depends
import logging

from middleware import require_shop, get_usage_ledger
from models import UsageSummary
from services.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/usage", tags=["usage"])


@router.get("", response_model=UsageSummary)
async def get_usage(
    shop: str = Depends(require_shop),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    record = await ledger.get_or_initialize(shop)
    return UsageSummary(**record.model_dump())
