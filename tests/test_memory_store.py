# tests/test_memory_store.py
import pytest

from boxoffice.store.base import DuplicateDocument, matches
from boxoffice.store.memory import MemoryStore

pytestmark = pytest.mark.anyio


def test_query_operators():
    doc = {"id": "1", "status": "active", "qty": 3, "nested": {"flag": True}}

    assert matches(doc, {"status": {"$in": ["active", "converted"]}})
    assert matches(doc, {"qty": {"$gt": 2, "$lte": 3}})
    assert matches(doc, {"nested.flag": True})
    assert matches(doc, {"settled": {"$ne": True}})
    assert not matches(doc, {"qty": {"$lt": 3}})
    assert not matches(doc, {"missing": "x"})
    assert matches(doc, {"missing": None})


async def test_reads_are_copies():
    store = MemoryStore()
    await store.insert("things", {"id": "a", "tags": ["x"]})

    doc = await store.get("things", "a")
    doc["tags"].append("y")

    assert (await store.get("things", "a"))["tags"] == ["x"]


async def test_duplicate_ids_are_rejected():
    store = MemoryStore()
    await store.insert("things", {"id": "a"})
    with pytest.raises(DuplicateDocument):
        await store.insert("things", {"id": "a"})


async def test_transaction_rolls_back_on_error():
    store = MemoryStore()
    await store.insert("counters", {"id": "c", "value": 1})

    with pytest.raises(RuntimeError):
        async with store.transaction() as txn:
            await txn.update("counters", "c", inc={"value": 5})
            await txn.insert("counters", {"id": "d", "value": 0})
            raise RuntimeError("abort")

    assert (await store.get("counters", "c"))["value"] == 1
    assert await store.get("counters", "d") is None


async def test_transaction_commits_and_conditional_update_counts():
    store = MemoryStore()
    await store.insert("rows", {"id": "a", "status": "active"})
    await store.insert("rows", {"id": "b", "status": "done"})

    async with store.transaction() as txn:
        changed = await txn.update_where("rows", {"status": "active"}, set={"status": "done"})

    assert changed == 1
    assert await store.update_where("rows", {"status": "active"}, set={"status": "x"}) == 0
    assert len(await store.find("rows", {"status": "done"})) == 2
