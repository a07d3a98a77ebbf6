"""Firestore adapter for the document store port.

Translates the port's operations onto ``google.cloud.firestore.AsyncClient``
and the client library's ``google.api_core`` exceptions onto the engine's
store error taxonomy.

Example:
    >>> manager = FirestoreManager(FirestoreSettings(project="demo"))
    >>> store = FirestoreDocumentStore(manager.get_client())
    >>> await store.get("users", "uid-1")
"""

from __future__ import annotations

import inspect
import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from google.api_core import exceptions as gexc
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter as FirestoreFieldFilter

from concordia.foundation.domain.exceptions import (
    DocumentNotFoundError,
    MissingIndexError,
    PermissionDeniedError,
    StoreError,
    TransientStoreError,
)
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
from concordia.infra.persistence.settings import FirestoreSettings, get_firestore_settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping, Sequence

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 500

_OPERATORS: dict[FilterOp, str] = {
    FilterOp.EQ: "==",
    FilterOp.IN: "in",
    FilterOp.ARRAY_CONTAINS: "array_contains",
}

_TRANSIENT: tuple[tuple[type[gexc.GoogleAPICallError], str], ...] = (
    (gexc.ServiceUnavailable, "unavailable"),
    (gexc.DeadlineExceeded, "deadline-exceeded"),
    (gexc.Aborted, "aborted"),
    (gexc.ResourceExhausted, "resource-exhausted"),
    (gexc.InternalServerError, "internal"),
)


def translate_error(exc: gexc.GoogleAPICallError, operation: str, collection: str) -> StoreError:
    """Map a client library error onto the store error taxonomy."""
    detail = exc.message or str(exc)
    if isinstance(exc, gexc.PermissionDenied):
        return PermissionDeniedError(operation, collection, detail)
    if isinstance(exc, gexc.NotFound):
        return DocumentNotFoundError(operation, collection, detail)
    if isinstance(exc, gexc.FailedPrecondition):
        return MissingIndexError(operation, collection, detail)
    for error_type, code in _TRANSIENT:
        if isinstance(exc, error_type):
            return TransientStoreError(operation, collection, detail, code=code)
    return StoreError(operation, collection, detail, status=type(exc).__name__)


@asynccontextmanager
async def _translated(operation: str, collection: str) -> AsyncIterator[None]:
    try:
        yield
    except gexc.GoogleAPICallError as exc:
        raise translate_error(exc, operation, collection) from exc


def _to_firestore(data: Mapping[str, Any]) -> dict[str, Any]:
    converted: dict[str, Any] = {}
    for name, value in data.items():
        if value is SERVER_TIMESTAMP:
            converted[name] = firestore.SERVER_TIMESTAMP
        elif value is DELETE_FIELD:
            converted[name] = firestore.DELETE_FIELD
        else:
            converted[name] = value
    return converted


def _snapshot(snapshot: Any) -> Document:
    return Document(snapshot.id, snapshot.to_dict() or {})


class FirestoreDocumentStore:
    """Document store backed by a Firestore ``AsyncClient``.

    Args:
        client: Async Firestore client. The store does not own it; close it
            through :class:`FirestoreManager`.
    """

    max_batch_size = MAX_BATCH_SIZE

    def __init__(self, client: firestore.AsyncClient) -> None:
        self._client = client

    def _ref(self, collection: str, doc_id: str) -> Any:
        return self._client.collection(collection).document(doc_id)

    async def get(self, collection: str, doc_id: str) -> Document | None:
        async with _translated("get", collection):
            snapshot = await self._ref(collection, doc_id).get()
        if not snapshot.exists:
            return None
        return _snapshot(snapshot)

    async def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        *,
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        query: Any = self._client.collection(collection)
        for flt in filters:
            query = query.where(
                filter=FirestoreFieldFilter(flt.field, _OPERATORS[flt.op], flt.value)
            )
        if order_by is not None:
            direction = (
                firestore.Query.DESCENDING if order_by.descending else firestore.Query.ASCENDING
            )
            query = query.order_by(order_by.field, direction=direction)
        if limit is not None:
            query = query.limit(limit)
        async with _translated("query", collection):
            return [_snapshot(snapshot) async for snapshot in query.stream()]

    async def list_page(
        self,
        collection: str,
        *,
        page_size: int,
        start_after: str | None = None,
    ) -> list[Document]:
        ref = self._client.collection(collection)
        document_id = firestore.FieldPath.document_id()
        query = ref.order_by(document_id).limit(page_size)
        if start_after is not None:
            query = query.start_after({document_id: ref.document(start_after)})
        async with _translated("list_page", collection):
            return [_snapshot(snapshot) async for snapshot in query.stream()]

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        async with _translated("set", collection):
            await self._ref(collection, doc_id).set(_to_firestore(data), merge=merge)

    async def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        async with _translated("update", collection):
            await self._ref(collection, doc_id).update(_to_firestore(data))

    async def delete(self, collection: str, doc_id: str) -> None:
        async with _translated("delete", collection):
            await self._ref(collection, doc_id).delete()

    async def batch_write(self, ops: Sequence[WriteOp]) -> None:
        if len(ops) > self.max_batch_size:
            msg = f"batch of {len(ops)} exceeds the limit of {self.max_batch_size} operations"
            raise ValueError(msg)
        if not ops:
            return
        batch = self._client.batch()
        for op in ops:
            ref = self._ref(op.collection, op.doc_id)
            if op.kind is WriteKind.DELETE:
                batch.delete(ref)
            elif op.kind is WriteKind.UPDATE:
                batch.update(ref, _to_firestore(op.data or {}))
            else:
                batch.set(ref, _to_firestore(op.data or {}), merge=op.merge)
        async with _translated("batch_write", ops[0].collection):
            await batch.commit()


class FirestoreManager:
    """Owns the Firestore ``AsyncClient`` lifecycle.

    Usage:
        manager = FirestoreManager(FirestoreSettings())
        store = FirestoreDocumentStore(manager.get_client())
        await manager.close()
    """

    def __init__(self, settings: FirestoreSettings) -> None:
        self._settings = settings
        self._client: firestore.AsyncClient | None = None

    @property
    def settings(self) -> FirestoreSettings:
        return self._settings

    def get_client(self) -> firestore.AsyncClient:
        """Get or create the async client."""
        if self._client is None:
            self._client = firestore.AsyncClient(
                project=self._settings.project,
                database=self._settings.database,
            )
            logger.info(
                "firestore_client_created",
                extra={"project": self._settings.project, "database": self._settings.database},
            )
        return self._client

    async def close(self) -> None:
        """Close the client. Safe to call multiple times."""
        if self._client is None:
            return
        closing = self._client.close()
        if inspect.isawaitable(closing):
            await closing
        self._client = None


@lru_cache(maxsize=1)
def get_firestore_manager() -> FirestoreManager:
    """Get the default FirestoreManager singleton configured from the environment."""
    return FirestoreManager(get_firestore_settings())
