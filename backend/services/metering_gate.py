"""Metering Gate - decides how a batch of generation items is paid for.

Order of operations per call:
1. Atomically take as many credits as the batch needs (creating the record
   with its free grant on first use)
2. Anything the credits did not cover is billable:
   - advisory mode: the would-be charge is logged, the request proceeds
   - enforcing mode: an active usage plan is required and the charge is submitted
3. Record the usage on the ledger

If billing blocks the request the credits taken in step 1 are refunded.

Billing API failures propagate and block the request. A failed ledger write
in step 3 raises LedgerWriteFailed carrying the decision that was made.
"""
import os
import uuid
import logging
from decimal import Decimal
from typing import Optional

from models import BillingMode, GenerationFeature, MeteringDecision
from services.billing_gateway import BillingGateway
from services.errors import BillingRequired, LedgerWriteFailed
from services.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)

DEFAULT_UNIT_PRICE = Decimal(os.environ.get("USAGE_UNIT_PRICE", "0.015"))


def billing_mode_from_env() -> BillingMode:
    raw = (os.environ.get("BILLING_MODE") or "").strip().lower()
    if not raw:
        return BillingMode.ADVISORY
    try:
        return BillingMode(raw)
    except ValueError:
        logger.warning(f"Unknown BILLING_MODE={raw}, falling back to advisory")
        return BillingMode.ADVISORY


class MeteringGate:
    """Applies credits, decides billing, and records usage for one shop at a time."""

    def __init__(
        self,
        ledger: UsageLedger,
        mode: Optional[BillingMode] = None,
        unit_price: Decimal = DEFAULT_UNIT_PRICE,
    ):
        self.ledger = ledger
        self.mode = mode or billing_mode_from_env()
        self.unit_price = unit_price

    async def meter(
        self,
        shop: str,
        count: int = 1,
        feature: Optional[GenerationFeature] = None,
        billing: Optional[BillingGateway] = None,
    ) -> MeteringDecision:
        """Meter `count` generation items for `shop`.

        Raises:
            BillingRequired: enforcing mode and no active usage plan
            BillingQueryFailed: the billing API could not be queried
            LedgerWriteFailed: usage could not be recorded (decision attached)
        """
        if count < 1:
            raise ValueError("count must be at least 1")

        # The decision is based on what was actually debited, not on a snapshot
        credits_to_use = await self.ledger.consume_credits(shop, count)
        remaining = count - credits_to_use
        decision = MeteringDecision(
            shop=shop,
            requested=count,
            credit_covered=credits_to_use,
            billable=remaining,
            charge_amount=self.unit_price * remaining,
            billing_mode=self.mode,
            feature=feature,
        )

        if credits_to_use > 0:
            logger.info(f"[Billing] Using {credits_to_use} credits for {shop}. Remaining billable: {remaining}")

        if remaining > 0:
            try:
                await self._handle_billable(decision, billing)
            except Exception:
                await self.ledger.refund_credits(shop, credits_to_use)
                raise
        else:
            logger.info(f"[Billing] Usage is free for {shop}.")

        try:
            # Credits were already debited above
            await self.ledger.record_usage(shop, count, 0, feature)
        except LedgerWriteFailed as e:
            e.decision = decision
            raise

        return decision

    async def _handle_billable(self, decision: MeteringDecision, billing: Optional[BillingGateway]):
        shop = decision.shop
        amount = decision.charge_amount
        logger.info(f"[Billing] Charging {shop} ${amount} for {decision.billable} items.")

        line_item_id = None
        if billing is not None:
            line_item_id = await billing.find_usage_line_item()

        if self.mode == BillingMode.ADVISORY:
            logger.warning(
                f"[Billing] WOULD CHARGE {shop} ${amount} for {decision.billable} items. "
                f"(Charge skipped: advisory billing mode)"
            )
            return

        if not line_item_id:
            logger.error(f"[Billing] No active usage plan for {shop}. Cannot charge.")
            raise BillingRequired(shop, decision.billable, amount)

        record_id = await billing.create_usage_charge(
            line_item_id=line_item_id,
            amount=amount,
            description=f"AI Generation ({decision.billable} items)",
            idempotency_key=f"req_{uuid.uuid4().hex}",
        )
        decision.charged = record_id is not None
