"""Content Service - metered product description and SEO generation.

Pipeline per request: meter -> generate -> return.
Usage is metered before the model is called, so a failed generation still
counts (the attempt is charged, not the success). If the usage write itself
fails the request continues; stats drift is preferred over blocking a user.
"""
import logging
from typing import List, Optional

from models import (
    BulkDescriptionItem,
    BulkDescriptionResult,
    DescriptionRequest,
    GenerationFeature,
    MeteringDecision,
    SeoMetadata,
    SeoRequest,
)
from services.billing_gateway import BillingGateway
from services.errors import BillingRequired, GenerationError, LedgerWriteFailed, RateLimited
from services.generation_client import GenerationClient
from services.metering_gate import MeteringGate
from services.prompts import build_description_prompt, build_seo_prompt, parse_seo_output

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "AI usage limit reached. Please wait a minute and try again."


class ContentService:
    def __init__(self, gate: MeteringGate, client: GenerationClient):
        self.gate = gate
        self.client = client

    async def _meter(
        self,
        shop: str,
        count: int,
        feature: GenerationFeature,
        billing: Optional[BillingGateway],
    ) -> Optional[MeteringDecision]:
        try:
            return await self.gate.meter(shop, count, feature, billing)
        except LedgerWriteFailed as e:
            if e.decision is None:
                raise
            logger.error(f"Stats update failed for {shop}, continuing: {e.reason}")
            return e.decision

    async def generate_description(
        self,
        shop: str,
        request: DescriptionRequest,
        billing: Optional[BillingGateway] = None,
    ) -> str:
        # Build first so invalid input is rejected before anything is metered
        prompt = build_description_prompt(request)
        await self._meter(shop, 1, GenerationFeature.DESCRIPTION, billing)
        return await self.client.generate(prompt)

    async def generate_descriptions_bulk(
        self,
        shop: str,
        items: List[BulkDescriptionItem],
        billing: Optional[BillingGateway] = None,
    ) -> List[BulkDescriptionResult]:
        """Generate item by item, metering each item just before it is attempted.

        A rate limit stops the batch; the remaining items are reported as
        rate limited instead of being sent to an exhausted provider, and are
        not metered. A billing block on the first attempted item is raised;
        later in the batch it stops the run the same way.
        """
        results: List[BulkDescriptionResult] = []
        prompts = []
        for item in items:
            try:
                prompts.append((item, build_description_prompt(item), None))
            except ValueError as e:
                prompts.append((item, None, str(e)))

        stop_reason = None
        attempted = 0
        for item, prompt, input_error in prompts:
            if input_error:
                results.append(BulkDescriptionResult(product_id=item.product_id, error=input_error))
                continue
            if stop_reason:
                results.append(BulkDescriptionResult(product_id=item.product_id, error=stop_reason))
                continue

            try:
                await self._meter(shop, 1, GenerationFeature.DESCRIPTION, billing)
            except BillingRequired as e:
                if not attempted:
                    raise
                logger.warning(f"Bulk generation for {shop} stopped by billing after {attempted} items")
                stop_reason = e.message
                results.append(BulkDescriptionResult(product_id=item.product_id, error=stop_reason))
                continue

            attempted += 1
            try:
                text = await self.client.generate(prompt)
                results.append(BulkDescriptionResult(product_id=item.product_id, rewritten=text))
            except RateLimited as e:
                logger.warning(f"Bulk generation for {shop} rate limited: {e}")
                stop_reason = RATE_LIMIT_MESSAGE
                results.append(BulkDescriptionResult(product_id=item.product_id, error=stop_reason))
            except GenerationError as e:
                logger.error(f"Bulk generation failed for {item.product_id}: {e}")
                results.append(BulkDescriptionResult(product_id=item.product_id, error=str(e)))

        return results

    async def generate_seo(
        self,
        shop: str,
        request: SeoRequest,
        billing: Optional[BillingGateway] = None,
    ) -> SeoMetadata:
        prompt = build_seo_prompt(request)
        await self._meter(shop, 1, GenerationFeature.SEO, billing)
        text = await self.client.generate(prompt)
        return SeoMetadata(**parse_seo_output(text))
