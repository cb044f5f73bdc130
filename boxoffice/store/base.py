# boxoffice/store/base.py
"""
Document store interface shared by the Motor-backed store and the in-memory
fallback.

Documents are plain dicts keyed by their ``id`` field. Queries use the MongoDB
filter dialect, restricted to equality and the ``$in``, ``$ne``, ``$gt``,
``$gte``, ``$lt`` and ``$lte`` operators.
"""
from typing import Any, AsyncContextManager, Dict, List, Optional, Protocol

Document = Dict[str, Any]
Query = Dict[str, Any]


class StoreError(Exception):
    pass


class DuplicateDocument(StoreError):
    """Raised when inserting a document whose id already exists."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"{collection}/{doc_id} already exists")
        self.collection = collection
        self.doc_id = doc_id


class TransactionConflict(StoreError):
    """A concurrent transaction touched the same documents; this one was aborted."""


class DocumentReader(Protocol):
    async def get(self, collection: str, doc_id: str) -> Optional[Document]: ...

    async def find_one(self, collection: str, query: Query) -> Optional[Document]: ...

    async def find(self, collection: str, query: Query, limit: Optional[int] = None) -> List[Document]: ...


class DocumentWriter(DocumentReader, Protocol):
    async def insert(self, collection: str, doc: Document) -> None: ...

    async def update(
        self,
        collection: str,
        doc_id: str,
        set: Optional[Document] = None,
        inc: Optional[Dict[str, float]] = None,
    ) -> None: ...

    async def update_where(self, collection: str, query: Query, set: Document) -> int: ...


class Transaction(DocumentWriter, Protocol):
    """Reads and writes bound to a single store transaction."""


class DocumentStore(DocumentWriter, Protocol):
    def transaction(self) -> AsyncContextManager[Transaction]: ...


_MISSING = object()


def _compare(op: str, actual: Any, expected: Any) -> bool:
    if op == "$in":
        return actual in expected
    if op == "$ne":
        return actual != expected
    if actual is None or actual is _MISSING:
        return False
    if op == "$gt":
        return actual > expected
    if op == "$gte":
        return actual >= expected
    if op == "$lt":
        return actual < expected
    if op == "$lte":
        return actual <= expected
    raise ValueError(f"Unsupported query operator: {op}")


def _lookup(doc: Document, dotted: str) -> Any:
    value: Any = doc
    for part in dotted.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def matches(doc: Document, query: Query) -> bool:
    """Evaluate a filter document against ``doc`` the way MongoDB would."""
    for field, condition in query.items():
        actual = _lookup(doc, field)
        if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            for op, expected in condition.items():
                if op == "$ne" and actual is _MISSING:
                    continue
                if not _compare(op, None if actual is _MISSING else actual, expected):
                    return False
        elif actual is _MISSING:
            if condition is not None:
                return False
        elif actual != condition:
            return False
    return True
