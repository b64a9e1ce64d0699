"""
Pytest configuration and shared test helpers for backend tests.
"""
import asyncio
import copy
from types import SimpleNamespace

import pytest
from pymongo.errors import DuplicateKeyError, PyMongoError


def _matches(doc, query):
    return all(doc.get(key) == value for key, value in query.items())


class FakeCollection:
    """In-memory stand-in for a Motor collection.

    Supports the operators the usage ledger relies on ($set, $setOnInsert,
    $inc). Every operation yields to the event loop once before running, then
    applies atomically, so concurrent callers interleave between operations
    the way they would against a real server. Set race_next_upsert to make
    the next inserting upsert lose to a concurrent insert (DuplicateKeyError).
    """

    def __init__(self):
        self.docs = []
        self.fail_updates = False
        self.race_next_upsert = False
        self.update_calls = 0

    async def create_index(self, *args, **kwargs):
        return "shop_1"

    async def find_one(self, query, projection=None):
        await asyncio.sleep(0)
        for doc in self.docs:
            if _matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def update_one(self, query, update, upsert=False):
        await asyncio.sleep(0)
        self.update_calls += 1
        if self.fail_updates:
            raise PyMongoError("write concern timeout")

        for doc in self.docs:
            if _matches(doc, query):
                doc.update(copy.deepcopy(update.get("$set", {})))
                for key, delta in update.get("$inc", {}).items():
                    doc[key] = doc.get(key, 0) + delta
                return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)

        if not upsert:
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

        if self.race_next_upsert:
            # Another request wins the insert between our match and our insert
            self.race_next_upsert = False
            self.docs.append({**query, **copy.deepcopy(update.get("$setOnInsert", {}))})
            raise DuplicateKeyError("E11000 duplicate key error collection: usage_stats index: shop_1")

        doc = dict(query)
        doc.update(copy.deepcopy(update.get("$setOnInsert", {})))
        doc.update(copy.deepcopy(update.get("$set", {})))
        for key, delta in update.get("$inc", {}).items():
            doc[key] = doc.get(key, 0) + delta
        self.docs.append(doc)
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=len(self.docs))

    async def delete_one(self, query):
        await asyncio.sleep(0)
        for i, doc in enumerate(self.docs):
            if _matches(doc, query):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)


@pytest.fixture
def fake_db():
    """Database handle with an in-memory usage_stats collection."""
    return SimpleNamespace(usage_stats=FakeCollection())


@pytest.fixture
def key_env():
    """Environment with three valid, distinct Gemini keys."""
    return {
        "GEMINI_API_KEY_1": "AIzaSyAAAAAAAAAAAAA-key1",
        "GEMINI_API_KEY_2": "AIzaSyBBBBBBBBBBBBB-key2",
        "GEMINI_API_KEY_3": "AIzaSyCCCCCCCCCCCCC-key3",
    }
