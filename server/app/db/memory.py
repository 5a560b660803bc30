"""
In-process document store.

Used for local development (``STORE_BACKEND=memory``) and the test suite.
All mutations run under one asyncio lock, which gives the same
single-document atomicity the Mongo backend gets from findOneAndUpdate.
"""

import asyncio
import copy
from typing import Any, Dict, List, Optional, Sequence, Set

from app.db.base import (
    DocumentExistsError,
    DocumentStore,
    Filter,
    parse_order_by,
    split_collection_path,
    split_document_path,
    validate_filters,
)

_MISSING = object()


def _matches(doc: Dict[str, Any], filters: Sequence[Filter]) -> bool:
    for field, op, value in filters:
        current = doc.get(field, _MISSING)
        if op == "==":
            if current is _MISSING or current != value:
                return False
        elif op == "!=":
            if current is not _MISSING and current == value:
                return False
        elif op == "in":
            if current is _MISSING or current not in value:
                return False
        else:
            if current is _MISSING or current is None:
                return False
            if op == "<" and not current < value:
                return False
            if op == "<=" and not current <= value:
                return False
            if op == ">" and not current > value:
                return False
            if op == ">=" and not current >= value:
                return False
    return True


def _sort(docs: List[Dict[str, Any]], order_by: Optional[Sequence[str]]) -> List[Dict[str, Any]]:
    # Stable sorts applied from the least significant key
    for field, descending in reversed(parse_order_by(order_by)):
        present = [d for d in docs if d.get(field) is not None]
        absent = [d for d in docs if d.get(field) is None]
        present.sort(key=lambda d: d[field], reverse=descending)
        docs = present + absent if descending else absent + present
    return docs


class InMemoryDocumentStore(DocumentStore):
    """Dictionary backed DocumentStore."""

    def __init__(self):
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._unique: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    def _group(self, collection_id: str, parent: Optional[str] = None):
        for path, doc in self._docs.items():
            doc_parent, doc_collection, _ = split_document_path(path)
            if doc_collection != collection_id:
                continue
            if parent is not None and doc_parent != parent:
                continue
            yield path, doc

    def _check_unique(self, path: str, doc: Dict[str, Any]) -> None:
        _, collection_id, _ = split_document_path(path)
        for field in self._unique.get(collection_id, ()):
            value = doc.get(field)
            if value is None:
                continue
            for other_path, other in self._group(collection_id):
                if other_path != path and other.get(field) == value:
                    raise DocumentExistsError(path, field)

    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        split_document_path(path)
        doc = self._docs.get(path)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, path: str, doc: Dict[str, Any]) -> None:
        async with self._lock:
            self._check_unique(path, doc)
            self._docs[path] = copy.deepcopy(doc)

    async def create(self, path: str, doc: Dict[str, Any]) -> None:
        async with self._lock:
            split_document_path(path)
            if path in self._docs:
                raise DocumentExistsError(path)
            self._check_unique(path, doc)
            self._docs[path] = copy.deepcopy(doc)

    async def update(
        self,
        path: str,
        patch: Dict[str, Any],
        conditions: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        async with self._lock:
            current = self._docs.get(path)
            if current is None:
                return None
            for field, expected in (conditions or {}).items():
                if current.get(field) != expected:
                    return None
            updated = {**current, **copy.deepcopy(patch)}
            self._check_unique(path, updated)
            self._docs[path] = updated
            return copy.deepcopy(updated)

    async def query(
        self,
        collection_path: str,
        filters: Optional[Sequence[Filter]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        parent, collection_id = split_collection_path(collection_path)
        return self._select(self._group(collection_id, parent), filters, order_by, limit)

    async def query_group(
        self,
        collection_id: str,
        filters: Optional[Sequence[Filter]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return self._select(self._group(collection_id), filters, order_by, limit)

    def _select(self, candidates, filters, order_by, limit) -> List[Dict[str, Any]]:
        checked = validate_filters(filters)
        docs = [doc for _, doc in candidates if _matches(doc, checked)]
        docs = _sort(docs, order_by)
        if limit is not None:
            docs = docs[:limit]
        return copy.deepcopy(docs)

    async def ensure_unique_index(self, collection_id: str, field: str) -> None:
        self._unique.setdefault(collection_id, set()).add(field)

    async def close(self) -> None:
        self._docs.clear()
