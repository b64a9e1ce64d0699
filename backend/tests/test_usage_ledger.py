"""
Usage ledger tests against an in-memory collection.

Covers:
- First sight of a shop creates exactly one record with the free grant, even under concurrency
- Concurrent credit consumption never oversells the balance
- Usage updates never drive credits below zero and never lose usage counts
- Subscription bookkeeping and shop erasure
"""
import asyncio

import pytest

from models import GenerationFeature
from services.errors import LedgerWriteFailed
from services.usage_ledger import UsageLedger

SHOP = "demo-store.myshopify.com"


class TestGetOrInitialize:
    @pytest.mark.asyncio
    async def test_new_shop_gets_free_grant(self, fake_db):
        ledger = UsageLedger(fake_db, initial_credits=30)

        record = await ledger.get_or_initialize(SHOP)

        assert record.shop == SHOP
        assert record.credits == 30
        assert record.usage_count == 0
        assert record.billing_cycle_start is not None

    @pytest.mark.asyncio
    async def test_existing_record_is_not_reset(self, fake_db):
        ledger = UsageLedger(fake_db, initial_credits=30)
        await ledger.get_or_initialize(SHOP)
        await ledger.consume_credits(SHOP, 12)

        record = await ledger.get_or_initialize(SHOP)
        assert record.credits == 18

    @pytest.mark.asyncio
    async def test_concurrent_first_requests_create_one_record(self, fake_db):
        ledger = UsageLedger(fake_db, initial_credits=30)

        records = await asyncio.gather(*[ledger.get_or_initialize(SHOP) for _ in range(10)])

        assert len(fake_db.usage_stats.docs) == 1
        assert all(r.credits == 30 for r in records)

    @pytest.mark.asyncio
    async def test_lost_insert_race_reads_the_winner(self, fake_db):
        """The losing upsert gets DuplicateKeyError; one record, one grant."""
        ledger = UsageLedger(fake_db, initial_credits=30)
        fake_db.usage_stats.race_next_upsert = True

        record = await ledger.get_or_initialize(SHOP)

        assert record.credits == 30
        assert len(fake_db.usage_stats.docs) == 1

    @pytest.mark.asyncio
    async def test_concurrent_first_requests_with_insert_race(self, fake_db):
        ledger = UsageLedger(fake_db, initial_credits=30)
        fake_db.usage_stats.race_next_upsert = True

        records = await asyncio.gather(*[ledger.get_or_initialize(SHOP) for _ in range(5)])

        assert len(fake_db.usage_stats.docs) == 1
        assert all(r.credits == 30 for r in records)

    @pytest.mark.asyncio
    async def test_get_usage_does_not_create(self, fake_db):
        ledger = UsageLedger(fake_db)
        assert await ledger.get_usage(SHOP) is None
        assert fake_db.usage_stats.docs == []


class TestConsumeCredits:
    @pytest.mark.asyncio
    async def test_partial_consumption_when_balance_is_short(self, fake_db):
        ledger = UsageLedger(fake_db, initial_credits=3)

        assert await ledger.consume_credits(SHOP, 5) == 3
        assert await ledger.consume_credits(SHOP, 5) == 0
        assert (await ledger.get_usage(SHOP)).credits == 0

    @pytest.mark.asyncio
    async def test_zero_amount_is_a_no_op(self, fake_db):
        ledger = UsageLedger(fake_db)
        assert await ledger.consume_credits(SHOP, 0) == 0
        assert fake_db.usage_stats.update_calls == 0

    @pytest.mark.asyncio
    async def test_negative_amount_rejected(self, fake_db):
        ledger = UsageLedger(fake_db)
        with pytest.raises(ValueError):
            await ledger.consume_credits(SHOP, -1)

    @pytest.mark.asyncio
    async def test_concurrent_consumers_never_oversell(self, fake_db):
        """Total consumed equals the starting balance, never more."""
        ledger = UsageLedger(fake_db, initial_credits=30, max_retries=50)

        taken = await asyncio.gather(*[ledger.consume_credits(SHOP, 5) for _ in range(8)])

        assert sum(taken) == 30
        assert all(0 <= t <= 5 for t in taken)
        assert (await ledger.get_usage(SHOP)).credits == 0

    @pytest.mark.asyncio
    async def test_refund_returns_consumed_credits(self, fake_db):
        ledger = UsageLedger(fake_db, initial_credits=10)
        taken = await ledger.consume_credits(SHOP, 4)

        await ledger.refund_credits(SHOP, taken)

        assert (await ledger.get_usage(SHOP)).credits == 10

    @pytest.mark.asyncio
    async def test_refund_of_nothing_writes_nothing(self, fake_db):
        ledger = UsageLedger(fake_db)
        await ledger.refund_credits(SHOP, 0)
        assert fake_db.usage_stats.update_calls == 0


class TestRecordUsage:
    @pytest.mark.asyncio
    async def test_applies_counters_and_debit(self, fake_db):
        ledger = UsageLedger(fake_db, initial_credits=30)

        await ledger.record_usage(SHOP, 4, 4, GenerationFeature.DESCRIPTION)
        await ledger.record_usage(SHOP, 1, 1, GenerationFeature.SEO)

        record = await ledger.get_usage(SHOP)
        assert record.credits == 25
        assert record.usage_count == 5
        assert record.descriptions_generated == 4
        assert record.seo_generated == 1
        assert record.updated_at is not None

    @pytest.mark.asyncio
    async def test_debit_is_clamped_at_zero(self, fake_db):
        ledger = UsageLedger(fake_db, initial_credits=2)

        await ledger.record_usage(SHOP, 5, 5)

        record = await ledger.get_usage(SHOP)
        assert record.credits == 0
        assert record.usage_count == 5

    @pytest.mark.asyncio
    async def test_billable_usage_without_debit(self, fake_db):
        ledger = UsageLedger(fake_db, initial_credits=0)

        await ledger.record_usage(SHOP, 3, 0, GenerationFeature.DESCRIPTION)

        record = await ledger.get_usage(SHOP)
        assert record.credits == 0
        assert record.usage_count == 3
        assert record.descriptions_generated == 3

    @pytest.mark.asyncio
    async def test_concurrent_updates_keep_invariants(self, fake_db):
        """Credits stay non-negative and every usage count is kept."""
        ledger = UsageLedger(fake_db, initial_credits=10, max_retries=50)
        deltas = [(3, 3), (2, 2), (4, 4), (1, 0), (5, 5), (2, 2)]

        await asyncio.gather(*[ledger.record_usage(SHOP, total, debit) for total, debit in deltas])

        record = await ledger.get_usage(SHOP)
        assert record.credits == 0
        assert record.usage_count == sum(total for total, _ in deltas)

    @pytest.mark.asyncio
    async def test_negative_deltas_rejected(self, fake_db):
        ledger = UsageLedger(fake_db)
        with pytest.raises(ValueError):
            await ledger.record_usage(SHOP, -1, 0)
        with pytest.raises(ValueError):
            await ledger.record_usage(SHOP, 1, -1)

    @pytest.mark.asyncio
    async def test_database_error_becomes_ledger_write_failed(self, fake_db):
        ledger = UsageLedger(fake_db)
        await ledger.get_or_initialize(SHOP)
        fake_db.usage_stats.fail_updates = True

        with pytest.raises(LedgerWriteFailed) as exc_info:
            await ledger.record_usage(SHOP, 1, 1)

        assert exc_info.value.shop == SHOP
        assert "write concern timeout" in exc_info.value.reason


class TestSubscriptionBookkeeping:
    @pytest.mark.asyncio
    async def test_update_for_unknown_shop_creates_record_with_grant(self, fake_db):
        ledger = UsageLedger(fake_db, initial_credits=30)

        await ledger.apply_subscription_update(
            SHOP, subscription_id="gid://shopify/AppSubscription/1", status="ACTIVE", name="Usage"
        )

        record = await ledger.get_usage(SHOP)
        assert record.credits == 30
        assert record.plan_status == "ACTIVE"
        assert record.plan_name == "Usage"
        assert record.subscription_id == "gid://shopify/AppSubscription/1"

    @pytest.mark.asyncio
    async def test_update_keeps_existing_balance(self, fake_db):
        ledger = UsageLedger(fake_db, initial_credits=30)
        await ledger.consume_credits(SHOP, 10)

        await ledger.apply_subscription_update(SHOP, status="CANCELLED")

        record = await ledger.get_usage(SHOP)
        assert record.credits == 20
        assert record.plan_status == "CANCELLED"

    @pytest.mark.asyncio
    async def test_update_after_lost_insert_race_still_applies(self, fake_db):
        ledger = UsageLedger(fake_db, initial_credits=30)
        fake_db.usage_stats.race_next_upsert = True

        await ledger.apply_subscription_update(SHOP, subscription_id="gid://shopify/AppSubscription/2", status="ACTIVE")

        assert len(fake_db.usage_stats.docs) == 1
        record = await ledger.get_usage(SHOP)
        assert record.credits == 30
        assert record.plan_status == "ACTIVE"
        assert record.subscription_id == "gid://shopify/AppSubscription/2"

    @pytest.mark.asyncio
    async def test_erase_removes_record(self, fake_db):
        ledger = UsageLedger(fake_db)
        await ledger.get_or_initialize(SHOP)

        assert await ledger.erase(SHOP) is True
        assert await ledger.get_usage(SHOP) is None
        assert await ledger.erase(SHOP) is False
