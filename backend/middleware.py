from fastapi import Request, HTTPException, status
from typing import Optional
import re
import logging

from services.billing_gateway import AdminGraphQLBillingGateway, BillingGateway
from services.content_service import ContentService
from services.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)

SHOP_DOMAIN_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9\-]*\.myshopify\.com$")


async def require_shop(request: Request) -> str:
    """Shop domain of the current admin session.

    The embedded-app session layer in front of this API authenticates the
    merchant and forwards the shop in X-Shop-Domain.
    """
    shop = (request.headers.get("X-Shop-Domain") or "").strip().lower()
    if not shop:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    if not SHOP_DOMAIN_RE.match(shop):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid shop domain"
        )
    return shop


def get_usage_ledger(request: Request) -> UsageLedger:
    return request.app.state.usage_ledger


def get_content_service(request: Request) -> ContentService:
    return request.app.state.content_service


async def get_billing_gateway(request: Request) -> Optional[BillingGateway]:
    """Billing gateway for the session's shop, if an Admin API token was forwarded."""
    token = (request.headers.get("X-Shop-Access-Token") or "").strip()
    if not token:
        return None
    shop = await require_shop(request)
    return AdminGraphQLBillingGateway(shop, token)
