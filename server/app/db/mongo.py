"""
MongoDB backend for the document store.

Every collection id maps to one Mongo collection. A document's full path
is its ``_id`` and its parent path is kept in ``_parent``, so
``clients/c1/bills/b1`` is stored in collection ``bills`` with
``_id="clients/c1/bills/b1"`` and ``_parent="clients/c1"``.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.core.errors import StoreUnavailableError
from app.db.base import (
    DocumentExistsError,
    DocumentStore,
    Filter,
    parse_order_by,
    split_collection_path,
    split_document_path,
    validate_filters,
)

logger = logging.getLogger(__name__)

_MONGO_OPERATORS = {
    "==": "$eq",
    "!=": "$ne",
    "<": "$lt",
    "<=": "$lte",
    ">": "$gt",
    ">=": "$gte",
    "in": "$in",
}

_INTERNAL_FIELDS = ("_id", "_parent")


def build_mongo_filter(filters: Optional[Sequence[Filter]], parent: Optional[str] = None) -> Dict[str, Any]:
    """Translate store filters into a Mongo query document."""
    query: Dict[str, Any] = {}
    if parent is not None:
        query["_parent"] = parent
    for field, op, value in validate_filters(filters):
        if op == "in":
            value = list(value)
        query.setdefault(field, {})[_MONGO_OPERATORS[op]] = value
    return query


def build_mongo_sort(order_by: Optional[Sequence[str]]) -> List[tuple]:
    return [(field, DESCENDING if descending else ASCENDING) for field, descending in parse_order_by(order_by)]


def strip_internal(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    return {k: v for k, v in doc.items() if k not in _INTERNAL_FIELDS}


class MongoDocumentStore(DocumentStore):
    """DocumentStore backed by a motor database handle."""

    def __init__(self, database: AsyncIOMotorDatabase, client=None):
        self.database = database
        self.client = client

    @contextmanager
    def _guard(self, operation: str, path: str, write: bool):
        try:
            yield
        except DuplicateKeyError as e:
            field = None
            key_value = (e.details or {}).get("keyValue") or {}
            if key_value:
                field = next(iter(key_value))
            raise DocumentExistsError(path, field) from e
        except PyMongoError as e:
            logger.error(f"MongoDB {operation} failed for {path}: {e}")
            raise StoreUnavailableError(f"{operation} {path}: {e}", write=write) from e

    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        _, collection_id, _ = split_document_path(path)
        with self._guard("get", path, write=False):
            doc = await self.database[collection_id].find_one({"_id": path})
        return strip_internal(doc)

    async def set(self, path: str, doc: Dict[str, Any]) -> None:
        parent, collection_id, _ = split_document_path(path)
        with self._guard("set", path, write=True):
            await self.database[collection_id].replace_one(
                {"_id": path},
                {**doc, "_id": path, "_parent": parent},
                upsert=True,
            )

    async def create(self, path: str, doc: Dict[str, Any]) -> None:
        parent, collection_id, _ = split_document_path(path)
        with self._guard("create", path, write=True):
            await self.database[collection_id].insert_one({**doc, "_id": path, "_parent": parent})

    async def update(
        self,
        path: str,
        patch: Dict[str, Any],
        conditions: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        _, collection_id, _ = split_document_path(path)
        query = {"_id": path, **(conditions or {})}
        with self._guard("update", path, write=True):
            doc = await self.database[collection_id].find_one_and_update(
                query,
                {"$set": patch},
                return_document=ReturnDocument.AFTER,
            )
        return strip_internal(doc)

    async def _find(self, collection_id: str, query: Dict[str, Any], order_by, limit) -> List[Dict[str, Any]]:
        cursor = self.database[collection_id].find(query)
        sort = build_mongo_sort(order_by)
        if sort:
            cursor = cursor.sort(sort)
        if limit is not None:
            cursor = cursor.limit(limit)
        with self._guard("query", collection_id, write=False):
            docs = await cursor.to_list(length=None)
        return [strip_internal(doc) for doc in docs]

    async def query(
        self,
        collection_path: str,
        filters: Optional[Sequence[Filter]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        parent, collection_id = split_collection_path(collection_path)
        return await self._find(collection_id, build_mongo_filter(filters, parent), order_by, limit)

    async def query_group(
        self,
        collection_id: str,
        filters: Optional[Sequence[Filter]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await self._find(collection_id, build_mongo_filter(filters), order_by, limit)

    async def ensure_unique_index(self, collection_id: str, field: str) -> None:
        with self._guard("create_index", collection_id, write=True):
            await self.database[collection_id].create_index(
                [(field, ASCENDING)],
                name=f"unique_{field}",
                unique=True,
                partialFilterExpression={field: {"$type": "string"}},
            )
            await self.database[collection_id].create_index([("_parent", ASCENDING)], name="parent")

    async def ping(self) -> bool:
        with self._guard("ping", "admin", write=False):
            await self.database.command("ping")
        return True
