# boxoffice/store/memory.py
"""
In-memory fallback for development and tests.

Not durable and not shared between processes. Transactions are serialized by a
process-local lock and rolled back from an undo journal when the block raises;
plain (non-transactional) calls do not wait for running transactions. Never
point a production deployment at this store.
"""
import asyncio
import copy
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Tuple

from boxoffice.store.base import Document, DuplicateDocument, Query, matches


class _Collections:
    def __init__(self) -> None:
        self.data: Dict[str, Dict[str, Document]] = {}

    def bucket(self, collection: str) -> Dict[str, Document]:
        return self.data.setdefault(collection, {})


class _MemoryOps:
    def __init__(self, collections: _Collections) -> None:
        self._collections = collections

    def _remember(self, collection: str, doc_id: str) -> None:
        pass

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        doc = self._collections.bucket(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def find_one(self, collection: str, query: Query) -> Optional[Document]:
        found = await self.find(collection, query, limit=1)
        return found[0] if found else None

    async def find(self, collection: str, query: Query, limit: Optional[int] = None) -> List[Document]:
        results = []
        for doc in self._collections.bucket(collection).values():
            if matches(doc, query):
                results.append(copy.deepcopy(doc))
                if limit is not None and len(results) >= limit:
                    break
        return results

    async def insert(self, collection: str, doc: Document) -> None:
        bucket = self._collections.bucket(collection)
        doc_id = doc["id"]
        if doc_id in bucket:
            raise DuplicateDocument(collection, doc_id)
        self._remember(collection, doc_id)
        bucket[doc_id] = copy.deepcopy(doc)

    async def update(self, collection, doc_id, set=None, inc=None) -> None:
        doc = self._collections.bucket(collection).get(doc_id)
        if doc is None:
            return
        self._remember(collection, doc_id)
        for key, value in (set or {}).items():
            doc[key] = copy.deepcopy(value)
        for key, amount in (inc or {}).items():
            doc[key] = doc.get(key, 0) + amount

    async def update_where(self, collection: str, query: Query, set: Document) -> int:
        matched = [doc_id for doc_id, doc in self._collections.bucket(collection).items() if matches(doc, query)]
        for doc_id in matched:
            await self.update(collection, doc_id, set=set)
        return len(matched)


class MemoryTransaction(_MemoryOps):
    def __init__(self, collections: _Collections) -> None:
        super().__init__(collections)
        self._journal: List[Tuple[str, str, Optional[Document]]] = []
        self._seen = set()

    def _remember(self, collection: str, doc_id: str) -> None:
        if (collection, doc_id) in self._seen:
            return
        self._seen.add((collection, doc_id))
        previous = self._collections.bucket(collection).get(doc_id)
        self._journal.append((collection, doc_id, copy.deepcopy(previous)))

    def rollback(self) -> None:
        for collection, doc_id, previous in reversed(self._journal):
            bucket = self._collections.bucket(collection)
            if previous is None:
                bucket.pop(doc_id, None)
            else:
                bucket[doc_id] = previous
        self._journal.clear()
        self._seen.clear()


class MemoryStore(_MemoryOps):
    def __init__(self) -> None:
        super().__init__(_Collections())
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self):
        async with self._lock:
            txn = MemoryTransaction(self._collections)
            try:
                yield txn
            except BaseException:
                txn.rollback()
                raise
