"""Tests for drift repair, the orphan sweep and read-time healing."""

from __future__ import annotations

import asyncio

import pytest
from conftest import FlakyStore, canonical_user

from concordia.domain.accounts.collections import (
    CHATS,
    CLIENT_PROFILES,
    FREELANCER_PROFILES,
    LISTINGS,
    ORDERS,
    REVIEWS,
    USERS,
    OrphanRule,
)
from concordia.domain.accounts.reconciliation import (
    BatchWriter,
    OrphanRecord,
    ReconciliationMode,
    ReconciliationScanner,
    owner_ids,
)
from concordia.foundation.domain.exceptions import PermissionDeniedError, TransientStoreError
from concordia.foundation.domain.ports import Document, WriteOp
from concordia.infra.persistence.memory import InMemoryDocumentStore


def _seed_drifted(store: InMemoryDocumentStore, count: int = 5) -> None:
    for n in range(count):
        uid = f"uid-{n:03d}"
        store.seed(
            USERS,
            uid,
            {
                "id": uid,
                "email": f"User{n}@Example.com",
                "username": f"user{n}",
                "fullName": f"User {n}",
                "city": "Oslo",
                "isFreelancer": n % 2 == 0,
                "profilePhoto": "data:image/png;base64,AAAA",
            },
        )


@pytest.mark.unit
class TestBatchWriter:
    @pytest.mark.asyncio
    async def test_flushes_at_limit(self, store: InMemoryDocumentStore) -> None:
        writer = BatchWriter(store, limit=2)
        for n in range(5):
            await writer.add(WriteOp.set(ORDERS, f"o{n}", {"n": n}))
        assert writer.commits == 2
        assert writer.pending == 1
        await writer.flush()
        assert (writer.commits, writer.written, writer.pending) == (3, 5, 0)

    def test_limit_bounded_by_store(self, store: InMemoryDocumentStore) -> None:
        with pytest.raises(ValueError, match="between 1 and 500"):
            BatchWriter(store, limit=501)
        with pytest.raises(ValueError):
            BatchWriter(store, limit=0)

    @pytest.mark.asyncio
    async def test_failed_commit_recorded(self, flaky_store: FlakyStore) -> None:
        flaky_store.inject("batch_write", ORDERS, TransientStoreError("batch_write", ORDERS))
        writer = BatchWriter(flaky_store, limit=10)
        await writer.add(WriteOp.set(ORDERS, "o1", {}))
        await writer.flush()
        assert writer.commits == 0
        assert writer.failures[0].code == "unavailable"
        assert flaky_store.inner.ids(ORDERS) == set()


@pytest.mark.unit
class TestDriftRepair:
    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, store: InMemoryDocumentStore) -> None:
        _seed_drifted(store)
        report = await ReconciliationScanner(store).repair_drift(dry_run=True)

        assert report.scanned == 5
        assert report.needing_fixes == 5
        assert report.fixed == 0
        assert report.issue_counts["migrate_city_to_location"] == 5
        assert report.issue_counts["convert_base64_photo"] == 5
        assert store.write_count == 0

    @pytest.mark.asyncio
    async def test_apply_then_second_pass_is_clean(self, store: InMemoryDocumentStore) -> None:
        _seed_drifted(store, count=7)
        scanner = ReconciliationScanner(store, page_size=3, batch_limit=2)

        first = await scanner.repair_drift()
        assert first.fixed == 7
        assert first.commits == 4
        assert first.pages == 3
        assert first.completed is True

        writes_after_first = store.write_count
        second = await scanner.repair_drift()
        assert second.needing_fixes == 0
        assert second.fixed == 0
        assert store.write_count == writes_after_first

        record = store.dump(USERS)["uid-000"]
        assert record["uid"] == "uid-000"
        assert "id" not in record
        assert "city" not in record
        assert record["location"] == "Oslo"
        assert record["displayName"] == "User 0"
        assert record["roles"] == ["client", "freelancer"]
        assert record["profilePhoto"] == "/images/default-profile.jpg"
        assert store.dump(USERS)["uid-001"]["roles"] == ["client"]

    @pytest.mark.asyncio
    async def test_unrecoverable_record_skipped(self, store: InMemoryDocumentStore) -> None:
        store.seed(USERS, "uid-bad", {"uid": "uid-bad"})
        store.seed(USERS, "uid-ok", canonical_user("uid-ok", city="Oslo"))
        report = await ReconciliationScanner(store).repair_drift()

        assert report.fixed == 1
        assert [error.doc_id for error in report.errors] == ["uid-bad"]
        assert store.dump(USERS)["uid-bad"] == {"uid": "uid-bad"}

    @pytest.mark.asyncio
    async def test_cancel_between_pages_and_resume(self, store: InMemoryDocumentStore) -> None:
        _seed_drifted(store, count=6)
        cancel = asyncio.Event()
        scanner = ReconciliationScanner(store, page_size=2)

        original = store.list_page
        pages_seen = 0

        async def list_page_then_cancel(*args: object, **kwargs: object) -> list[Document]:
            nonlocal pages_seen
            pages_seen += 1
            if pages_seen == 2:
                cancel.set()
            return await original(*args, **kwargs)  # type: ignore[arg-type]

        store.list_page = list_page_then_cancel  # type: ignore[method-assign]
        first = await scanner.repair_drift(cancel=cancel)
        store.list_page = original  # type: ignore[method-assign]

        assert first.cancelled is True
        assert first.completed is False
        assert first.scanned == 4
        assert first.resume_after == "uid-003"

        rest = await scanner.repair_drift(start_after=first.resume_after)
        assert rest.scanned == 2
        assert rest.completed is True
        assert (await scanner.repair_drift(dry_run=True)).needing_fixes == 0

    @pytest.mark.asyncio
    async def test_page_read_failure_stops_scan(self, flaky_store: FlakyStore) -> None:
        _seed_drifted(flaky_store.inner, count=2)
        flaky_store.inject("list_page", USERS, TransientStoreError("list_page", USERS))
        report = await ReconciliationScanner(flaky_store).repair_drift()
        assert report.scanned == 0
        assert report.completed is False
        assert report.errors[0].collection == USERS

    @pytest.mark.asyncio
    async def test_report_serializes(self, store: InMemoryDocumentStore) -> None:
        _seed_drifted(store, count=1)
        report = await ReconciliationScanner(store).run(ReconciliationMode.ANALYZE)
        data = report.to_dict()
        assert data["mode"] == "analyze"
        assert data["drift"]["needing_fixes"] == 1
        assert data["orphans"]["dry_run"] is True


@pytest.mark.unit
class TestHealRecord:
    @pytest.mark.asyncio
    async def test_heals_and_returns_view(self, store: InMemoryDocumentStore) -> None:
        store.seed(USERS, "uid-1", canonical_user("uid-1", city="Oslo", location=""))
        document = await store.get(USERS, "uid-1")
        assert document is not None

        healed = await ReconciliationScanner(store).heal_record(document)

        assert healed["location"] == "Oslo"
        assert "city" not in healed
        assert "city" not in store.dump(USERS)["uid-1"]

    @pytest.mark.asyncio
    async def test_clean_record_not_written(self, store: InMemoryDocumentStore) -> None:
        store.seed(USERS, "uid-1", canonical_user("uid-1"))
        document = await store.get(USERS, "uid-1")
        assert document is not None
        await ReconciliationScanner(store).heal_record(document)
        assert store.write_count == 0

    @pytest.mark.asyncio
    async def test_write_failure_still_returns_view(self, flaky_store: FlakyStore) -> None:
        flaky_store.inner.seed(USERS, "uid-1", canonical_user("uid-1", isOnline=None))
        flaky_store.inject("update", USERS, PermissionDeniedError("update", USERS))
        document = Document("uid-1", flaky_store.inner.dump(USERS)["uid-1"])

        healed = await ReconciliationScanner(flaky_store).heal_record(document)

        assert healed["isOnline"] is False
        assert flaky_store.inner.dump(USERS)["uid-1"]["isOnline"] is None


@pytest.mark.unit
class TestOwnerIds:
    def test_fallback_only_takes_first_present(self) -> None:
        rule = OrphanRule(LISTINGS, ("freelancerId", "userId"), fallback_only=True)
        assert owner_ids(rule, Document("g", {"userId": "u2"})) == ["u2"]
        assert owner_ids(rule, Document("g", {"freelancerId": "u1", "userId": "u2"})) == ["u1"]

    def test_all_owners_checked(self) -> None:
        rule = OrphanRule(ORDERS, ("clientId", "freelancerId"))
        assert owner_ids(rule, Document("o", {"clientId": "a", "freelancerId": "b"})) == ["a", "b"]

    def test_participant_lists_skip_system_accounts(self) -> None:
        rule = OrphanRule(CHATS, ("participants",))
        chat = Document("c", {"participants": ["a", "skillbot", "", 7, "b"]})
        assert owner_ids(rule, chat) == ["a", "b"]


@pytest.mark.unit
class TestOrphanSweep:
    @pytest.mark.asyncio
    async def test_finds_and_deletes_orphans(self, store: InMemoryDocumentStore) -> None:
        store.seed(USERS, "alive", canonical_user("alive"))
        store.seed(CLIENT_PROFILES, "alive", {"userId": "alive"})
        store.seed(CLIENT_PROFILES, "gone", {"userId": "gone"})
        store.seed(FREELANCER_PROFILES, "gone", {"userId": "gone"})
        store.seed(LISTINGS, "gig-live", {"freelancerId": "alive"})
        store.seed(LISTINGS, "gig-legacy", {"userId": "gone"})
        store.seed(ORDERS, "o-ok", {"clientId": "alive", "freelancerId": "alive"})
        store.seed(ORDERS, "o-half", {"clientId": "alive", "freelancerId": "gone"})
        store.seed(REVIEWS, "r-ok", {"clientId": "alive", "gigId": "gig-live"})
        store.seed(REVIEWS, "r-parent", {"clientId": "alive", "gigId": "gig-legacy"})

        dry = await ReconciliationScanner(store).sweep_orphans(dry_run=True)
        assert store.write_count == 0
        assert OrphanRecord(ORDERS, "o-half", "owner:gone") in dry.orphans
        assert OrphanRecord(REVIEWS, "r-parent", "parent:gig-legacy") in dry.orphans

        report = await ReconciliationScanner(store).sweep_orphans()

        assert report.deleted == 5
        assert store.ids(CLIENT_PROFILES) == {"alive"}
        assert store.ids(FREELANCER_PROFILES) == set()
        assert store.ids(LISTINGS) == {"gig-live"}
        assert store.ids(ORDERS) == {"o-ok"}
        assert store.ids(REVIEWS) == {"r-ok"}
        assert report.scanned[ORDERS] == 2

        again = await ReconciliationScanner(store).sweep_orphans()
        assert again.orphans == []

    @pytest.mark.asyncio
    async def test_reviews_and_chats_of_deleted_users(self, store: InMemoryDocumentStore) -> None:
        store.seed(USERS, "alive", canonical_user("alive"))
        store.seed(LISTINGS, "gig-live", {"freelancerId": "alive"})
        store.seed(REVIEWS, "r-gone", {"clientId": "gone", "gigId": "gig-live"})
        store.seed(CHATS, "c-ok", {"participants": ["alive", "skillbot"]})
        store.seed(CHATS, "c-half", {"participants": ["alive", "gone"]})

        report = await ReconciliationScanner(store).sweep_orphans()

        assert OrphanRecord(REVIEWS, "r-gone", "owner:gone") in report.orphans
        assert OrphanRecord(CHATS, "c-half", "owner:gone") in report.orphans
        assert store.ids(REVIEWS) == set()
        assert store.ids(CHATS) == {"c-ok"}

    @pytest.mark.asyncio
    async def test_user_created_mid_sweep_is_kept(self, store: InMemoryDocumentStore) -> None:
        store.seed(USERS, "alive", canonical_user("alive"))
        store.seed(ORDERS, "o-new", {"clientId": "newcomer"})
        scanner = ReconciliationScanner(store)

        original = store.list_page

        async def list_page(collection: str, **kwargs: object) -> list[Document]:
            page = await original(collection, **kwargs)  # type: ignore[arg-type]
            if collection == USERS:
                # Registration lands right after the id snapshot was taken.
                store.seed(USERS, "newcomer", canonical_user("newcomer"))
            return page

        store.list_page = list_page  # type: ignore[method-assign]
        report = await scanner.sweep_orphans()

        assert report.orphans == []
        assert store.ids(ORDERS) == {"o-new"}

    @pytest.mark.asyncio
    async def test_aborts_when_user_ids_unreadable(self, flaky_store: FlakyStore) -> None:
        flaky_store.inner.seed(ORDERS, "o1", {"clientId": "someone"})
        flaky_store.inject("list_page", USERS, TransientStoreError("list_page", USERS))

        report = await ReconciliationScanner(flaky_store).sweep_orphans()

        assert report.orphans == []
        assert report.errors[0].collection == USERS
        assert flaky_store.inner.ids(ORDERS) == {"o1"}

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, store: InMemoryDocumentStore) -> None:
        store.seed(ORDERS, "o1", {"clientId": "someone"})
        cancel = asyncio.Event()
        cancel.set()
        report = await ReconciliationScanner(store).sweep_orphans(cancel=cancel)
        assert report.cancelled is True
        assert store.ids(ORDERS) == {"o1"}

    @pytest.mark.asyncio
    async def test_unreadable_collection_skipped(self, flaky_store: FlakyStore) -> None:
        flaky_store.inner.seed(ORDERS, "o1", {"clientId": "someone"})
        flaky_store.inner.seed(REVIEWS, "r1", {"clientId": "someone"})
        flaky_store.inject("list_page", ORDERS, PermissionDeniedError("list_page", ORDERS))

        report = await ReconciliationScanner(flaky_store).sweep_orphans()

        assert [error.collection for error in report.errors] == [ORDERS]
        assert flaky_store.inner.ids(REVIEWS) == set()
        assert flaky_store.inner.ids(ORDERS) == {"o1"}


@pytest.mark.unit
class TestRun:
    @pytest.mark.asyncio
    async def test_apply_mode_runs_both_passes(self, store: InMemoryDocumentStore) -> None:
        _seed_drifted(store, count=2)
        store.seed(ORDERS, "o1", {"clientId": "gone"})

        report = await ReconciliationScanner(store).run(ReconciliationMode.APPLY)

        assert report.drift.fixed == 2
        assert report.orphans.deleted == 1
        assert report.drift.dry_run is False
