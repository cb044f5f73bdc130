# boxoffice/store/mongo.py
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession
from pymongo.errors import DuplicateKeyError, PyMongoError

from boxoffice.store.base import Document, DuplicateDocument, Query, TransactionConflict


def _to_mongo(doc: Document) -> Document:
    stored = dict(doc)
    stored["_id"] = doc["id"]
    return stored


def _from_mongo(doc: Optional[Dict[str, Any]]) -> Optional[Document]:
    """Drop Mongo's _id; the domain id lives in ``id``."""
    if doc is None:
        return None
    doc.pop("_id", None)
    return doc


class _MongoOps:
    def __init__(self, client: AsyncIOMotorClient, database_name: str,
                 session: Optional[AsyncIOMotorClientSession] = None) -> None:
        self._client = client
        self._db = client[database_name]
        self._session = session

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        doc = await self._db[collection].find_one({"_id": doc_id}, session=self._session)
        return _from_mongo(doc)

    async def find_one(self, collection: str, query: Query) -> Optional[Document]:
        doc = await self._db[collection].find_one(query, session=self._session)
        return _from_mongo(doc)

    async def find(self, collection: str, query: Query, limit: Optional[int] = None) -> List[Document]:
        cursor = self._db[collection].find(query, session=self._session)
        if limit is not None:
            cursor = cursor.limit(limit)
        docs = await cursor.to_list(length=limit)
        return [_from_mongo(doc) for doc in docs]

    async def insert(self, collection: str, doc: Document) -> None:
        try:
            await self._db[collection].insert_one(_to_mongo(doc), session=self._session)
        except DuplicateKeyError as exc:
            raise DuplicateDocument(collection, doc["id"]) from exc

    async def update(self, collection, doc_id, set=None, inc=None) -> None:
        changes: Dict[str, Any] = {}
        if set:
            changes["$set"] = set
        if inc:
            changes["$inc"] = inc
        if changes:
            await self._db[collection].update_one({"_id": doc_id}, changes, session=self._session)

    async def update_where(self, collection: str, query: Query, set: Document) -> int:
        result = await self._db[collection].update_many(query, {"$set": set}, session=self._session)
        return result.matched_count


class MongoStore(_MongoOps):
    """
    Motor-backed store. Transactions need a replica set (or mongos); a
    transient write conflict aborts the transaction and surfaces as
    TransactionConflict rather than being retried here.
    """

    def __init__(self, client: AsyncIOMotorClient, database_name: str) -> None:
        super().__init__(client, database_name)
        self._database_name = database_name

    @asynccontextmanager
    async def transaction(self):
        async with await self._client.start_session() as session:
            try:
                async with session.start_transaction():
                    yield _MongoOps(self._client, self._database_name, session=session)
            except PyMongoError as exc:
                if exc.has_error_label("TransientTransactionError"):
                    raise TransactionConflict(str(exc)) from exc
                raise
