"""In-memory document store.

Implements :class:`DocumentStorePort` over plain dicts for tests, local
development and dry-run tooling. Semantics follow the managed store the
engine targets: documents are handed out as copies, ``update`` requires an
existing document, ``batch_write`` is all-or-nothing, and compound queries
can be made to fail the way they do when a composite index is missing.
"""

from __future__ import annotations

import copy
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from concordia.foundation.domain.exceptions import DocumentNotFoundError, MissingIndexError
from concordia.foundation.domain.ports import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    Document,
    FieldFilter,
    FilterOp,
    OrderBy,
    WriteKind,
    WriteOp,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

MAX_BATCH_SIZE = 500


def _same(stored: Any, expected: Any) -> bool:
    # The store compares typed values: True never equals 1.
    if isinstance(stored, bool) or isinstance(expected, bool):
        return stored is expected
    return bool(stored == expected)


def _matches(data: Mapping[str, Any], flt: FieldFilter) -> bool:
    if flt.field not in data:
        return False
    value = data[flt.field]
    if flt.op is FilterOp.EQ:
        return _same(value, flt.value)
    if flt.op is FilterOp.IN:
        return any(_same(value, candidate) for candidate in flt.value)
    if flt.op is FilterOp.ARRAY_CONTAINS:
        return isinstance(value, list) and any(_same(item, flt.value) for item in value)
    msg = f"Unsupported filter operator: {flt.op}"
    raise ValueError(msg)


def _sort_key(field: str) -> Callable[[Document], tuple[int, Any]]:
    def key(document: Document) -> tuple[int, Any]:
        value = document.data.get(field)
        if value is None:
            return (0, "")
        if isinstance(value, datetime):
            return (1, value.timestamp())
        return (1, value)

    return key


class InMemoryDocumentStore:
    """Dict-backed document store.

    Args:
        indexed_compound_queries: When False, queries with more than one
            filter, or with a filter and an ordering, raise
            :class:`MissingIndexError` like an unindexed managed store.
        clock: Source for ``SERVER_TIMESTAMP`` values.

    Attributes:
        write_count: Number of document writes applied so far (each batch
            operation counts once). Tests use it to assert that a pass wrote
            nothing.
    """

    max_batch_size = MAX_BATCH_SIZE

    def __init__(
        self,
        *,
        indexed_compound_queries: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self.indexed_compound_queries = indexed_compound_queries
        self._clock = clock or (lambda: datetime.now(UTC))
        self.write_count = 0

    # -- test helpers -----------------------------------------------------

    def seed(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        """Insert a document as-is, bypassing write accounting."""
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(dict(data))

    def dump(self, collection: str) -> dict[str, dict[str, Any]]:
        return copy.deepcopy(self._collections.get(collection, {}))

    def ids(self, collection: str) -> set[str]:
        return set(self._collections.get(collection, {}))

    # -- reads --------------------------------------------------------------

    async def get(self, collection: str, doc_id: str) -> Document | None:
        data = self._collections.get(collection, {}).get(doc_id)
        if data is None:
            return None
        return Document(doc_id, copy.deepcopy(data))

    async def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        *,
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        needs_index = len(filters) > 1 or (order_by is not None and len(filters) > 0)
        if needs_index and not self.indexed_compound_queries:
            raise MissingIndexError(
                "query",
                collection,
                "The query requires an index",
                fields=[flt.field for flt in filters],
            )
        results = [
            Document(doc_id, copy.deepcopy(data))
            for doc_id, data in sorted(self._collections.get(collection, {}).items())
            if all(_matches(data, flt) for flt in filters)
        ]
        if order_by is not None:
            results.sort(key=_sort_key(order_by.field), reverse=order_by.descending)
        if limit is not None:
            results = results[:limit]
        return results

    async def list_page(
        self,
        collection: str,
        *,
        page_size: int,
        start_after: str | None = None,
    ) -> list[Document]:
        ids = sorted(self._collections.get(collection, {}))
        if start_after is not None:
            ids = [doc_id for doc_id in ids if doc_id > start_after]
        return [
            Document(doc_id, copy.deepcopy(self._collections[collection][doc_id]))
            for doc_id in ids[:page_size]
        ]

    # -- writes -------------------------------------------------------------

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        self._apply(self._collections, WriteOp.set(collection, doc_id, dict(data), merge=merge))
        self.write_count += 1

    async def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        self._apply(self._collections, WriteOp.update(collection, doc_id, dict(data)))
        self.write_count += 1

    async def delete(self, collection: str, doc_id: str) -> None:
        self._apply(self._collections, WriteOp.delete(collection, doc_id))
        self.write_count += 1

    async def batch_write(self, ops: Sequence[WriteOp]) -> None:
        if len(ops) > self.max_batch_size:
            msg = f"batch of {len(ops)} exceeds the limit of {self.max_batch_size} operations"
            raise ValueError(msg)
        staged = copy.deepcopy(self._collections)
        for op in ops:
            self._apply(staged, op)
        self._collections = staged
        self.write_count += len(ops)

    def _apply(self, collections: dict[str, dict[str, dict[str, Any]]], op: WriteOp) -> None:
        documents = collections.setdefault(op.collection, {})
        if op.kind is WriteKind.DELETE:
            documents.pop(op.doc_id, None)
        elif op.kind is WriteKind.UPDATE:
            if op.doc_id not in documents:
                raise DocumentNotFoundError(
                    "update", op.collection, f"No document to update: {op.doc_id}"
                )
            documents[op.doc_id] = self._resolve(documents[op.doc_id], op.data or {})
        else:
            base = documents.get(op.doc_id, {}) if op.merge else {}
            documents[op.doc_id] = self._resolve(base, op.data or {})

    def _resolve(self, base: Mapping[str, Any], changes: Mapping[str, Any]) -> dict[str, Any]:
        result = copy.deepcopy(dict(base))
        for name, value in changes.items():
            if value is DELETE_FIELD:
                result.pop(name, None)
            elif value is SERVER_TIMESTAMP:
                result[name] = self._clock()
            else:
                result[name] = copy.deepcopy(value)
        return result
