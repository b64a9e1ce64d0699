"""Usage Ledger - per-shop credit balance and usage counters.

Collection: usage_stats (unique index on shop)

Every shop gets a lifetime grant of free credits the first time it is seen.
Credits are never replenished. All mutations go through MongoDB primitives
that are safe when several requests for the same shop arrive together:
- creation: upsert with $setOnInsert on the unique shop key
- balance changes: compare-and-swap on the observed credit balance
"""
import os
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from pymongo.errors import DuplicateKeyError, PyMongoError

from models import UsageRecord, GenerationFeature
from services.errors import LedgerWriteFailed

logger = logging.getLogger(__name__)

DEFAULT_FREE_CREDITS = int(os.environ.get("FREE_CREDITS_GRANT", "30"))
MAX_CAS_RETRIES = 10


class UsageLedger:
    """Durable usage counters for one database handle."""

    def __init__(self, db, initial_credits: int = DEFAULT_FREE_CREDITS, max_retries: int = MAX_CAS_RETRIES):
        self.db = db
        self.initial_credits = initial_credits
        self.max_retries = max_retries

    def _initial_document(self, shop: str, now: datetime) -> Dict[str, Any]:
        return UsageRecord(
            shop=shop,
            credits=self.initial_credits,
            billing_cycle_start=now,
            created_at=now,
        ).model_dump()

    async def get_usage(self, shop: str) -> Optional[UsageRecord]:
        """Point lookup; does not create a record."""
        doc = await self.db.usage_stats.find_one({"shop": shop}, {"_id": 0})
        return UsageRecord(**doc) if doc else None

    async def get_or_initialize(self, shop: str) -> UsageRecord:
        """Return the shop's record, creating it with the free grant if absent."""
        for _ in range(2):
            now = datetime.now(timezone.utc)
            try:
                result = await self.db.usage_stats.update_one(
                    {"shop": shop},
                    {"$setOnInsert": self._initial_document(shop, now)},
                    upsert=True,
                )
                if result.upserted_id is not None:
                    logger.info(f"Created usage record for {shop} with {self.initial_credits} free credits")
            except DuplicateKeyError:
                # Another request inserted the record between our match and insert
                logger.debug(f"Usage record for {shop} created concurrently")

            record = await self.get_usage(shop)
            if record:
                return record

        # Only reachable if the record is erased while being initialized
        raise LedgerWriteFailed(shop, "usage record disappeared during initialization")

    async def consume_credits(self, shop: str, amount: int) -> int:
        """Consume up to `amount` credits. Returns how many were actually consumed."""
        if amount < 0:
            raise ValueError("Amount must not be negative")
        if amount == 0:
            return 0

        for _ in range(self.max_retries):
            record = await self.get_or_initialize(shop)
            take = min(amount, record.credits)
            if take == 0:
                return 0

            result = await self.db.usage_stats.update_one(
                {"shop": shop, "credits": record.credits},
                {
                    "$inc": {"credits": -take},
                    "$set": {"updated_at": datetime.now(timezone.utc)},
                },
            )
            if result.matched_count:
                logger.info(f"Consumed {take} credits for {shop}. Remaining: {record.credits - take}")
                return take

        raise LedgerWriteFailed(shop, "credit balance kept changing; retries exhausted")

    async def refund_credits(self, shop: str, amount: int) -> None:
        """Return credits taken by consume_credits for a request that was then blocked."""
        if amount <= 0:
            return
        await self.db.usage_stats.update_one(
            {"shop": shop},
            {
                "$inc": {"credits": amount},
                "$set": {"updated_at": datetime.now(timezone.utc)},
            },
        )
        logger.info(f"Refunded {amount} credits to {shop}")

    async def record_usage(
        self,
        shop: str,
        delta_total: int,
        delta_credits_consumed: int,
        feature: Optional[GenerationFeature] = None,
    ) -> None:
        """Apply one usage update: usage += delta_total, credits -= delta_credits_consumed,
        feature counter += delta_total.

        The credit debit is clamped to the balance observed in the same
        compare-and-swap, so the balance never goes below zero.

        Raises:
            LedgerWriteFailed: the update could not be applied
        """
        if delta_total < 0 or delta_credits_consumed < 0:
            raise ValueError("Usage deltas must not be negative")
        feature = GenerationFeature(feature) if feature else None

        try:
            for _ in range(self.max_retries):
                record = await self.get_or_initialize(shop)
                debit = min(delta_credits_consumed, record.credits)

                increments = {"usage_count": delta_total}
                if debit:
                    increments["credits"] = -debit
                if feature:
                    increments[feature.value] = delta_total

                query = {"shop": shop}
                if debit:
                    query["credits"] = record.credits

                result = await self.db.usage_stats.update_one(
                    query,
                    {
                        "$inc": increments,
                        "$set": {"updated_at": datetime.now(timezone.utc)},
                    },
                )
                if result.matched_count:
                    if debit < delta_credits_consumed:
                        logger.warning(
                            f"Credit debit for {shop} clamped from {delta_credits_consumed} to {debit}"
                        )
                    return
        except PyMongoError as e:
            raise LedgerWriteFailed(shop, str(e)) from e

        raise LedgerWriteFailed(shop, "credit balance kept changing; retries exhausted")

    async def apply_subscription_update(
        self,
        shop: str,
        subscription_id: Optional[str] = None,
        status: Optional[str] = None,
        name: Optional[str] = None,
    ) -> None:
        """Upsert subscription bookkeeping. A new record still gets the free grant once."""
        now = datetime.now(timezone.utc)
        fields: Dict[str, Any] = {"updated_at": now}
        if subscription_id is not None:
            fields["subscription_id"] = subscription_id
        if status is not None:
            fields["plan_status"] = status
        if name is not None:
            fields["plan_name"] = name

        on_insert = {
            key: value
            for key, value in self._initial_document(shop, now).items()
            if key not in fields
        }

        try:
            await self.db.usage_stats.update_one(
                {"shop": shop},
                {"$set": fields, "$setOnInsert": on_insert},
                upsert=True,
            )
        except DuplicateKeyError:
            await self.db.usage_stats.update_one({"shop": shop}, {"$set": fields})

        logger.info(f"Subscription update for {shop}: status={status} name={name}")

    async def erase(self, shop: str) -> bool:
        """Delete the shop's usage record (shop/redact)."""
        result = await self.db.usage_stats.delete_one({"shop": shop})
        return result.deleted_count > 0
