"""Retry decorator for document stores.

Wraps any :class:`DocumentStorePort` so every call retries transient
failures (unavailable, deadline exceeded) with the engine's bounded
backoff. Every store operation the engine issues is idempotent: ``set``
and ``update`` write fixed values and ``delete`` of a missing document is
a no-op. A retried call therefore cannot apply twice.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from concordia.foundation.application.retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from concordia.foundation.domain.ports import (
        Document,
        DocumentStorePort,
        FieldFilter,
        OrderBy,
        WriteOp,
    )


class RetryingDocumentStore:
    """Document store decorator applying a :class:`RetryPolicy` to each call.

    Example:
        >>> store = RetryingDocumentStore(FirestoreDocumentStore(client), RetryPolicy())
    """

    def __init__(self, inner: DocumentStorePort, policy: RetryPolicy | None = None) -> None:
        self._inner = inner
        self._policy = policy or RetryPolicy()

    @property
    def inner(self) -> DocumentStorePort:
        return self._inner

    @property
    def max_batch_size(self) -> int:
        return self._inner.max_batch_size

    async def get(self, collection: str, doc_id: str) -> Document | None:
        return await self._policy.call(self._inner.get, collection, doc_id)

    async def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        *,
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        return await self._policy.call(
            self._inner.query, collection, filters, order_by=order_by, limit=limit
        )

    async def list_page(
        self,
        collection: str,
        *,
        page_size: int,
        start_after: str | None = None,
    ) -> list[Document]:
        return await self._policy.call(
            self._inner.list_page, collection, page_size=page_size, start_after=start_after
        )

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        await self._policy.call(self._inner.set, collection, doc_id, data, merge=merge)

    async def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        await self._policy.call(self._inner.update, collection, doc_id, data)

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._policy.call(self._inner.delete, collection, doc_id)

    async def batch_write(self, ops: Sequence[WriteOp]) -> None:
        await self._policy.call(self._inner.batch_write, ops)
