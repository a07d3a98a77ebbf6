"""Port interface for the document store.

The store is a schemaless collection/document database with single-field
and compound equality queries, merge writes and atomic batched writes of
bounded size. It has no multi-document transactions and no joins, which is
why every multi-collection workflow in this package is a saga.

Example:
    >>> from concordia.foundation.domain.ports import DocumentStorePort, FieldFilter
    >>> async def listings_for(store: DocumentStorePort, uid: str) -> list[Document]:
    ...     return await store.query("gigs", [FieldFilter("freelancerId", uid)])
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


class _Sentinel:
    """Marker value understood by every store adapter."""

    __slots__ = ("_name",)

    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name


SERVER_TIMESTAMP: Final = _Sentinel("SERVER_TIMESTAMP")
"""Replaced by the store's commit time when written."""

DELETE_FIELD: Final = _Sentinel("DELETE_FIELD")
"""Removes the field when used as a value in ``update`` or merge ``set``."""


@dataclass(frozen=True, slots=True)
class Document:
    """A document snapshot.

    Attributes:
        id: Document id within its collection.
        data: Field values. Adapters hand out copies, so mutation is local.
    """

    id: str
    data: dict[str, Any]


class FilterOp(StrEnum):
    """Supported query operators."""

    EQ = "=="
    IN = "in"
    ARRAY_CONTAINS = "array-contains"


@dataclass(frozen=True, slots=True)
class FieldFilter:
    """A single query predicate."""

    field: str
    value: Any
    op: FilterOp = FilterOp.EQ


@dataclass(frozen=True, slots=True)
class OrderBy:
    """Sort order for a query."""

    field: str
    descending: bool = False


class WriteKind(StrEnum):
    SET = "set"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class WriteOp:
    """One operation inside an atomic batch."""

    kind: WriteKind
    collection: str
    doc_id: str
    data: dict[str, Any] | None = None
    merge: bool = False

    @classmethod
    def set(
        cls, collection: str, doc_id: str, data: dict[str, Any], *, merge: bool = False
    ) -> WriteOp:
        return cls(WriteKind.SET, collection, doc_id, data, merge)

    @classmethod
    def update(cls, collection: str, doc_id: str, data: dict[str, Any]) -> WriteOp:
        return cls(WriteKind.UPDATE, collection, doc_id, data)

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> WriteOp:
        return cls(WriteKind.DELETE, collection, doc_id)


@runtime_checkable
class DocumentStorePort(Protocol):
    """Port for the document store.

    Implementations raise the store errors from
    :mod:`concordia.foundation.domain.exceptions`:
    ``TransientStoreError`` for unavailable/deadline-exceeded,
    ``PermissionDeniedError``, ``DocumentNotFoundError`` (``update`` of a
    missing document) and ``MissingIndexError`` for compound queries the
    deployed indexes cannot serve.

    Attributes:
        max_batch_size: Maximum number of operations in one ``batch_write``.
    """

    max_batch_size: int

    async def get(self, collection: str, doc_id: str) -> Document | None:
        """Read one document, or None when it does not exist."""
        ...

    async def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        *,
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        """Return documents matching every filter."""
        ...

    async def list_page(
        self,
        collection: str,
        *,
        page_size: int,
        start_after: str | None = None,
    ) -> list[Document]:
        """Return one page of a collection ordered by document id.

        Args:
            collection: Collection to scan.
            page_size: Maximum documents in the page.
            start_after: Resume cursor: the last document id of the previous page.
        """
        ...

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        """Create or overwrite a document. ``merge=True`` upserts field-wise."""
        ...

    async def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        """Update fields of an existing document."""
        ...

    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is a no-op."""
        ...

    async def batch_write(self, ops: Sequence[WriteOp]) -> None:
        """Apply up to ``max_batch_size`` operations atomically."""
        ...
