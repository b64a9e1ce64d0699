"""Webhook Routes - platform webhooks.

All webhooks are verified with HMAC-SHA256 (base64) of the raw body using
SHOPIFY_API_SECRET.

POST /webhooks/app/subscription_update - app_subscriptions/update; mirrors plan status on the usage record
POST /webhooks - Shared compliance endpoint (topic from X-Shopify-Topic)
POST /webhooks/customers/data_request - Alias for compliance topic
POST /webhooks/customers/redact - Alias for compliance topic
POST /webhooks/shop/redact - Alias for compliance topic; erases the shop's usage record
"""
from fastapi import APIRouter, HTTPException, Request, Header, Depends, status
from fastapi.responses import PlainTextResponse, Response
from pymongo.errors import PyMongoError
from typing import Optional
import base64
import hashlib
import hmac
import json
import logging
import os

from middleware import get_usage_ledger
from services.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)
router = APIRouter(tags=["webhooks"])


def verify_webhook_hmac(raw_body: bytes, hmac_header: Optional[str], secret: Optional[str]) -> bool:
    """True if hmac_header is the base64 HMAC-SHA256 of raw_body under secret."""
    if not hmac_header or not secret:
        return False
    digest = base64.b64encode(
        hmac.new(secret.encode(), raw_body, hashlib.sha256).digest()
    ).decode()
    return hmac.compare_digest(digest, hmac_header.strip())


async def _verified_body(request: Request, hmac_header: Optional[str]) -> bytes:
    raw_body = await request.body()
    secret = os.environ.get("SHOPIFY_API_SECRET")
    if not secret:
        logger.error("SHOPIFY_API_SECRET is not set; rejecting webhook")
    if not verify_webhook_hmac(raw_body, hmac_header, secret):
        logger.error("Webhook HMAC verification failed")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return raw_body


@router.post("/webhooks/app/subscription_update")
async def subscription_update_webhook(
    request: Request,
    hmac_header: str = Header(None, alias="X-Shopify-Hmac-Sha256"),
    shop: str = Header(None, alias="X-Shopify-Shop-Domain"),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    raw_body = await _verified_body(request, hmac_header)
    try:
        payload = json.loads(raw_body or b"{}")
    except json.JSONDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    subscription = payload.get("app_subscription")
    if not subscription or not shop:
        return {"status": "ignored"}

    logger.info(f"[Webhook] Subscription update for {shop}: {subscription.get('status')}")
    try:
        await ledger.apply_subscription_update(
            shop,
            subscription_id=subscription.get("admin_graphql_api_id") or subscription.get("gid"),
            status=subscription.get("status"),
            name=subscription.get("name"),
        )
    except PyMongoError as e:
        # Still acknowledge so the platform does not retry forever; the error is logged
        logger.error(f"[Webhook] Failed to update subscription status for {shop}: {e}")
        return {"status": "error", "message": "Failed to update subscription status"}

    return {"status": "received"}


async def _handle_compliance_topic(topic: str, shop: Optional[str], ledger: UsageLedger) -> Response:
    logger.info(f"Received valid webhook [{topic}] for shop [{shop}]")

    if topic in ("customers/data_request", "customers/redact"):
        return PlainTextResponse("we do not save customer data")

    if topic == "shop/redact":
        if shop:
            erased = await ledger.erase(shop)
            logger.info(f"Shop data erased for {shop}: usage record removed={erased}")
        return PlainTextResponse("Shop Data has been erased")

    logger.info(f"Unhandled webhook topic via shared route: {topic}")
    return Response(status_code=status.HTTP_200_OK)


@router.post("/webhooks")
async def compliance_webhook(
    request: Request,
    hmac_header: str = Header(None, alias="X-Shopify-Hmac-Sha256"),
    topic: str = Header("unknown", alias="X-Shopify-Topic"),
    shop: str = Header(None, alias="X-Shopify-Shop-Domain"),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    await _verified_body(request, hmac_header)
    return await _handle_compliance_topic(topic, shop, ledger)


@router.post("/webhooks/customers/data_request")
async def customers_data_request_webhook(
    request: Request,
    hmac_header: str = Header(None, alias="X-Shopify-Hmac-Sha256"),
    shop: str = Header(None, alias="X-Shopify-Shop-Domain"),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    await _verified_body(request, hmac_header)
    return await _handle_compliance_topic("customers/data_request", shop, ledger)


@router.post("/webhooks/customers/redact")
async def customers_redact_webhook(
    request: Request,
    hmac_header: str = Header(None, alias="X-Shopify-Hmac-Sha256"),
    shop: str = Header(None, alias="X-Shopify-Shop-Domain"),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    await _verified_body(request, hmac_header)
    return await _handle_compliance_topic("customers/redact", shop, ledger)


@router.post("/webhooks/shop/redact")
async def shop_redact_webhook(
    request: Request,
    hmac_header: str = Header(None, alias="X-Shopify-Hmac-Sha256"),
    shop: str = Header(None, alias="X-Shopify-Shop-Domain"),
    ledger: UsageLedger = Depends(get_usage_ledger),
):
    await _verified_body(request, hmac_header)
    return await _handle_compliance_topic("shop/redact", shop, ledger)
