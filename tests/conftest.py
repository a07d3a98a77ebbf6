"""Shared fixtures: in-memory store, scripted identity provider and media storage."""

from __future__ import annotations

from collections import defaultdict
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import pytest

from concordia.domain.accounts.collections import CLIENT_PROFILES, FREELANCER_PROFILES, USERS
from concordia.foundation.application.retry import RetryPolicy
from concordia.foundation.domain.exceptions import (
    IdentityErrorReason,
    IdentityProviderError,
    MediaNotFoundError,
)
from concordia.foundation.domain.ports import Identity
from concordia.infra.persistence.memory import InMemoryDocumentStore

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from concordia.foundation.domain.ports import Document, FieldFilter, OrderBy, WriteOp

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

# Backoff that never sleeps long enough to slow a test down.
FAST_RETRY = RetryPolicy(attempts=3, initial_wait=0.0, max_wait=0.0)


class FakeIdentityProvider:
    """Identity provider double with per-operation scripted failures.

    ``failures[operation]`` is a list of exceptions raised (one per call)
    before the operation starts succeeding.
    """

    def __init__(self) -> None:
        self.identities: dict[str, Identity] = {}
        self.display_names: dict[str, str] = {}
        self.verified: list[str] = []
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[str, list[Exception]] = defaultdict(list)
        self._next = 0

    def fail(self, operation: str, *errors: Exception) -> None:
        self.failures[operation].extend(errors)

    def _maybe_fail(self, operation: str) -> None:
        if self.failures[operation]:
            raise self.failures[operation].pop(0)

    async def create_identity(self, email: str, secret: str) -> Identity:
        self.calls.append(("create_identity", email))
        self._maybe_fail("create_identity")
        if any(identity.email == email for identity in self.identities.values()):
            raise IdentityProviderError(IdentityErrorReason.EMAIL_EXISTS)
        self._next += 1
        identity = Identity(uid=f"uid-{self._next}", email=email, id_token=f"token-{self._next}")
        self.identities[identity.uid] = identity
        return identity

    async def delete_identity(self, identity: Identity) -> None:
        self.calls.append(("delete_identity", identity.uid))
        self._maybe_fail("delete_identity")
        if identity.uid not in self.identities:
            raise IdentityProviderError(IdentityErrorReason.NOT_FOUND)
        del self.identities[identity.uid]

    async def set_display_name(self, identity: Identity, display_name: str) -> None:
        self.calls.append(("set_display_name", identity.uid))
        self._maybe_fail("set_display_name")
        self.display_names[identity.uid] = display_name

    async def send_verification_notice(self, identity: Identity) -> None:
        self.calls.append(("send_verification_notice", identity.uid))
        self._maybe_fail("send_verification_notice")
        self.verified.append(identity.uid)


class FakeMediaStorage:
    """Media storage double remembering which assets exist."""

    def __init__(self, assets: set[str] | None = None) -> None:
        self.assets = set(assets or ())
        self.deleted: list[str] = []
        self.errors: dict[str, Exception] = {}

    async def delete_asset(self, asset_id: str) -> None:
        if asset_id in self.errors:
            raise self.errors[asset_id]
        if asset_id not in self.assets:
            raise MediaNotFoundError(asset_id)
        self.assets.discard(asset_id)
        self.deleted.append(asset_id)


class FlakyStore:
    """Wraps a store and raises scripted errors for matching calls.

    ``inject(operation, collection, error, times=1)`` makes the next
    ``times`` calls of ``operation`` on ``collection`` raise ``error``.
    ``collection=None`` matches any collection. ``times=None`` fails forever.
    """

    def __init__(self, inner: InMemoryDocumentStore) -> None:
        self.inner = inner
        self._faults: list[list[Any]] = []
        self.calls: list[tuple[str, str]] = []

    @property
    def max_batch_size(self) -> int:
        return self.inner.max_batch_size

    def inject(
        self,
        operation: str,
        collection: str | None,
        error: Exception,
        times: int | None = 1,
    ) -> None:
        self._faults.append([operation, collection, error, times])

    def _check(self, operation: str, collection: str) -> None:
        self.calls.append((operation, collection))
        for fault in self._faults:
            op, coll, error, times = fault
            if op != operation or (coll is not None and coll != collection):
                continue
            if times is None:
                raise error
            if times > 0:
                fault[3] = times - 1
                raise error

    async def get(self, collection: str, doc_id: str) -> Document | None:
        self._check("get", collection)
        return await self.inner.get(collection, doc_id)

    async def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        *,
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        self._check("query", collection)
        return await self.inner.query(collection, filters, order_by=order_by, limit=limit)

    async def list_page(
        self,
        collection: str,
        *,
        page_size: int,
        start_after: str | None = None,
    ) -> list[Document]:
        self._check("list_page", collection)
        return await self.inner.list_page(
            collection, page_size=page_size, start_after=start_after
        )

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        self._check("set", collection)
        await self.inner.set(collection, doc_id, data, merge=merge)

    async def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        self._check("update", collection)
        await self.inner.update(collection, doc_id, data)

    async def delete(self, collection: str, doc_id: str) -> None:
        self._check("delete", collection)
        await self.inner.delete(collection, doc_id)

    async def batch_write(self, ops: Sequence[WriteOp]) -> None:
        self._check("batch_write", ops[0].collection if ops else "")
        await self.inner.batch_write(ops)


def canonical_user(uid: str, **overrides: Any) -> dict[str, Any]:
    """A stored UserRecord that is already canonical."""
    data: dict[str, Any] = {
        "uid": uid,
        "email": f"{uid}@example.com",
        "username": uid,
        "displayName": uid.title(),
        "roles": ["client"],
        "activeRole": "client",
        "isFreelancer": False,
        "profilePhoto": "/images/default-profile.jpg",
        "phoneNumber": "",
        "dateOfBirth": None,
        "gender": "",
        "location": "",
        "isActive": True,
        "emailVerified": False,
        "isOnline": False,
    }
    data.update(overrides)
    return data


def seed_freelancer(store: InMemoryDocumentStore, uid: str, **overrides: Any) -> None:
    store.seed(
        USERS,
        uid,
        canonical_user(
            uid, roles=["client", "freelancer"], isFreelancer=True, **overrides
        ),
    )
    store.seed(CLIENT_PROFILES, uid, {"userId": uid, "bio": ""})
    store.seed(FREELANCER_PROFILES, uid, {"userId": uid, "rating": 0, "totalReviews": 0})


@pytest.fixture()
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore(clock=lambda: FIXED_NOW)


@pytest.fixture()
def flaky_store(store: InMemoryDocumentStore) -> FlakyStore:
    return FlakyStore(store)


@pytest.fixture()
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture()
def media() -> FakeMediaStorage:
    return FakeMediaStorage()
