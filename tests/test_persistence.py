"""Tests for the document store adapters."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import FIXED_NOW, FlakyStore
from google.api_core import exceptions as gexc
from google.cloud import firestore

from concordia.foundation.application.retry import RetryPolicy
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
    FieldFilter,
    FilterOp,
    OrderBy,
    WriteOp,
)
from concordia.infra.persistence import lifespan as persistence_lifespan
from concordia.infra.persistence.firestore import (
    FirestoreDocumentStore,
    FirestoreManager,
    translate_error,
)
from concordia.infra.persistence.memory import InMemoryDocumentStore
from concordia.infra.persistence.retrying import RetryingDocumentStore
from concordia.infra.persistence.settings import FirestoreSettings, get_firestore_settings

FAST = RetryPolicy(attempts=3, initial_wait=0.0, max_wait=0.0)


@pytest.mark.unit
class TestInMemoryQueries:
    @pytest.mark.asyncio
    async def test_bool_never_equals_int(self, store: InMemoryDocumentStore) -> None:
        store.seed("gigs", "a", {"isActive": True})
        store.seed("gigs", "b", {"isActive": 1})
        found = await store.query("gigs", [FieldFilter("isActive", True)])
        assert [doc.id for doc in found] == ["a"]

    @pytest.mark.asyncio
    async def test_in_and_array_contains(self, store: InMemoryDocumentStore) -> None:
        store.seed("users", "a", {"roles": ["client"], "gender": "f"})
        store.seed("users", "b", {"roles": ["client", "freelancer"], "gender": "m"})
        contains = await store.query(
            "users", [FieldFilter("roles", "freelancer", FilterOp.ARRAY_CONTAINS)]
        )
        within = await store.query("users", [FieldFilter("gender", ["f", "x"], FilterOp.IN)])
        assert [doc.id for doc in contains] == ["b"]
        assert [doc.id for doc in within] == ["a"]

    @pytest.mark.asyncio
    async def test_missing_field_never_matches(self, store: InMemoryDocumentStore) -> None:
        store.seed("gigs", "a", {})
        assert await store.query("gigs", [FieldFilter("userId", None)]) == []

    @pytest.mark.asyncio
    async def test_order_and_limit(self, store: InMemoryDocumentStore) -> None:
        for doc_id, created in [("a", 2), ("b", 3), ("c", 1)]:
            store.seed("reviews", doc_id, {"createdAt": created})
        found = await store.query(
            "reviews", order_by=OrderBy("createdAt", descending=True), limit=2
        )
        assert [doc.id for doc in found] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_compound_query_without_index(self) -> None:
        store = InMemoryDocumentStore(indexed_compound_queries=False)
        with pytest.raises(MissingIndexError) as exc_info:
            await store.query("gigs", [FieldFilter("userId", "u"), FieldFilter("isActive", True)])
        assert exc_info.value.code == "failed-precondition"
        with pytest.raises(MissingIndexError):
            await store.query("reviews", [FieldFilter("gigId", "g")], order_by=OrderBy("createdAt"))
        assert await store.query("gigs", [FieldFilter("userId", "u")]) == []

    @pytest.mark.asyncio
    async def test_list_page(self, store: InMemoryDocumentStore) -> None:
        for doc_id in ["c", "a", "b", "d"]:
            store.seed("users", doc_id, {})
        first = await store.list_page("users", page_size=2)
        second = await store.list_page("users", page_size=2, start_after=first[-1].id)
        assert [doc.id for doc in first] == ["a", "b"]
        assert [doc.id for doc in second] == ["c", "d"]

    @pytest.mark.asyncio
    async def test_returns_copies(self, store: InMemoryDocumentStore) -> None:
        store.seed("users", "a", {"roles": ["client"]})
        doc = await store.get("users", "a")
        assert doc is not None
        doc.data["roles"].append("admin")
        assert store.dump("users")["a"]["roles"] == ["client"]


@pytest.mark.unit
class TestInMemoryWrites:
    @pytest.mark.asyncio
    async def test_sentinels(self, store: InMemoryDocumentStore) -> None:
        store.seed("users", "a", {"legacy": True, "email": "a@x"})
        await store.set(
            "users", "a", {"legacy": DELETE_FIELD, "updatedAt": SERVER_TIMESTAMP}, merge=True
        )
        assert store.dump("users")["a"] == {"email": "a@x", "updatedAt": FIXED_NOW}

    @pytest.mark.asyncio
    async def test_set_without_merge_replaces(self, store: InMemoryDocumentStore) -> None:
        store.seed("users", "a", {"email": "a@x"})
        await store.set("users", "a", {"username": "a"})
        assert store.dump("users")["a"] == {"username": "a"}

    @pytest.mark.asyncio
    async def test_update_requires_document(self, store: InMemoryDocumentStore) -> None:
        with pytest.raises(DocumentNotFoundError):
            await store.update("users", "ghost", {"email": "x"})
        assert store.write_count == 0

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self, store: InMemoryDocumentStore) -> None:
        await store.delete("users", "ghost")
        assert store.ids("users") == set()

    @pytest.mark.asyncio
    async def test_batch_is_atomic(self, store: InMemoryDocumentStore) -> None:
        store.seed("users", "a", {})
        with pytest.raises(DocumentNotFoundError):
            await store.batch_write(
                [
                    WriteOp.delete("users", "a"),
                    WriteOp.update("users", "ghost", {"x": 1}),
                ]
            )
        assert store.ids("users") == {"a"}
        assert store.write_count == 0

    @pytest.mark.asyncio
    async def test_batch_size_limit(self, store: InMemoryDocumentStore) -> None:
        ops = [WriteOp.delete("users", str(n)) for n in range(store.max_batch_size + 1)]
        with pytest.raises(ValueError, match="exceeds the limit"):
            await store.batch_write(ops)


@pytest.mark.unit
class TestRetryingStore:
    @pytest.mark.asyncio
    async def test_retries_transient_failures(self, flaky_store: FlakyStore) -> None:
        flaky_store.inner.seed("users", "a", {"email": "a@x"})
        flaky_store.inject("get", "users", TransientStoreError("get", "users"), times=2)
        store = RetryingDocumentStore(flaky_store, FAST)

        doc = await store.get("users", "a")

        assert doc is not None
        assert flaky_store.calls == [("get", "users")] * 3

    @pytest.mark.asyncio
    async def test_permanent_failure_not_retried(self, flaky_store: FlakyStore) -> None:
        flaky_store.inject("set", None, PermissionDeniedError("set", "users"))
        store = RetryingDocumentStore(flaky_store, FAST)

        with pytest.raises(PermissionDeniedError):
            await store.set("users", "a", {})
        assert flaky_store.calls == [("set", "users")]

    def test_exposes_inner_batch_limit(self, store: InMemoryDocumentStore) -> None:
        wrapped = RetryingDocumentStore(store)
        assert wrapped.inner is store
        assert wrapped.max_batch_size == 500


@pytest.mark.unit
class TestTranslateError:
    @pytest.mark.parametrize(
        ("error", "expected", "code"),
        [
            (gexc.PermissionDenied("denied"), PermissionDeniedError, "permission-denied"),
            (gexc.NotFound("gone"), DocumentNotFoundError, "not-found"),
            (gexc.FailedPrecondition("index"), MissingIndexError, "failed-precondition"),
            (gexc.ServiceUnavailable("down"), TransientStoreError, "unavailable"),
            (gexc.DeadlineExceeded("slow"), TransientStoreError, "deadline-exceeded"),
            (gexc.InvalidArgument("bad"), StoreError, "unknown"),
        ],
    )
    def test_maps_status(
        self, error: gexc.GoogleAPICallError, expected: type[StoreError], code: str
    ) -> None:
        translated = translate_error(error, "get", "users")
        assert type(translated) is expected
        assert translated.code == code
        assert translated.collection == "users"


def _client_with_ref() -> tuple[MagicMock, MagicMock]:
    client = MagicMock()
    ref = client.collection.return_value.document.return_value
    return client, ref


@pytest.mark.unit
class TestFirestoreDocumentStore:
    @pytest.mark.asyncio
    async def test_get_existing(self) -> None:
        client, ref = _client_with_ref()
        snapshot = MagicMock(exists=True, id="uid-1")
        snapshot.to_dict.return_value = {"email": "a@x"}
        ref.get = AsyncMock(return_value=snapshot)

        doc = await FirestoreDocumentStore(client).get("users", "uid-1")

        assert doc is not None
        assert doc.data == {"email": "a@x"}
        client.collection.assert_called_with("users")

    @pytest.mark.asyncio
    async def test_get_missing(self) -> None:
        client, ref = _client_with_ref()
        ref.get = AsyncMock(return_value=MagicMock(exists=False))
        assert await FirestoreDocumentStore(client).get("users", "uid-1") is None

    @pytest.mark.asyncio
    async def test_errors_are_translated(self) -> None:
        client, ref = _client_with_ref()
        ref.get = AsyncMock(side_effect=gexc.ServiceUnavailable("down"))
        with pytest.raises(TransientStoreError) as exc_info:
            await FirestoreDocumentStore(client).get("users", "uid-1")
        assert exc_info.value.operation == "get"

    @pytest.mark.asyncio
    async def test_set_converts_sentinels(self) -> None:
        client, ref = _client_with_ref()
        ref.set = AsyncMock()

        await FirestoreDocumentStore(client).set(
            "users", "uid-1", {"a": SERVER_TIMESTAMP, "b": DELETE_FIELD, "c": 1}, merge=True
        )

        ref.set.assert_awaited_once_with(
            {"a": firestore.SERVER_TIMESTAMP, "b": firestore.DELETE_FIELD, "c": 1}, merge=True
        )

    @pytest.mark.asyncio
    async def test_batch_write(self) -> None:
        client, ref = _client_with_ref()
        batch = client.batch.return_value
        batch.commit = AsyncMock()

        await FirestoreDocumentStore(client).batch_write(
            [
                WriteOp.delete("orders", "o1"),
                WriteOp.update("users", "u1", {"x": 1}),
                WriteOp.set("users", "u2", {"y": 2}, merge=True),
            ]
        )

        batch.delete.assert_called_once_with(ref)
        batch.update.assert_called_once_with(ref, {"x": 1})
        batch.set.assert_called_once_with(ref, {"y": 2}, merge=True)
        batch.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_batch_skips_commit(self) -> None:
        client = MagicMock()
        await FirestoreDocumentStore(client).batch_write([])
        client.batch.assert_not_called()


@pytest.mark.unit
class TestFirestoreManager:
    def test_creates_client_once(self) -> None:
        settings = FirestoreSettings(project="demo", database="db")
        with patch("concordia.infra.persistence.firestore.firestore.AsyncClient") as client_cls:
            manager = FirestoreManager(settings)
            first = manager.get_client()
            second = manager.get_client()

        assert first is second
        client_cls.assert_called_once_with(project="demo", database="db")

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        with patch("concordia.infra.persistence.firestore.firestore.AsyncClient") as client_cls:
            manager = FirestoreManager(FirestoreSettings(project="demo"))
            manager.get_client()
            await manager.close()
            await manager.close()

        client_cls.return_value.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_lifespan_opens_and_closes(self) -> None:
        manager = MagicMock()
        manager.close = AsyncMock()
        with patch.object(persistence_lifespan, "get_firestore_manager", return_value=manager):
            async with persistence_lifespan.lifespan_contribution.hook(None):
                manager.get_client.assert_called_once()
                manager.close.assert_not_awaited()

        manager.close.assert_awaited_once()


@pytest.mark.unit
class TestFirestoreSettings:
    def test_defaults(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            settings = FirestoreSettings(_env_file=None)  # type: ignore[call-arg]
        assert settings.project is None
        assert settings.database == "(default)"

    def test_from_env(self) -> None:
        env: dict[str, Any] = {"FIRESTORE_PROJECT": "demo", "FIRESTORE_DATABASE": "accounts"}
        with patch.dict("os.environ", env, clear=True):
            get_firestore_settings.cache_clear()
            settings = get_firestore_settings()
        get_firestore_settings.cache_clear()
        assert settings.project == "demo"
        assert settings.database == "accounts"
