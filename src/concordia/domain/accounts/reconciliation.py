"""Background reconciliation: drift repair, orphan sweep and read-time healing.

The engine never holds a lock across collections, so the only guarantee it
can give is that every inconsistency is eventually repaired. This module is
the repair half of that guarantee:

- Drift repair pages through UserRecords and rewrites any record whose
  stored shape deviates from the canonical schema.
- The orphan sweep deletes documents whose owning user no longer exists.
- Single records are healed opportunistically when read.

Both scans are safe to run against live traffic. They page by document id,
write through bounded atomic batches, re-check candidate orphans with a
point read before deleting them, and stop cooperatively between pages.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from concordia.domain.accounts.collections import (
    DOCUMENT_ID,
    LISTINGS,
    ORPHAN_RULES,
    SYSTEM_PARTICIPANTS,
    USERS,
    OrphanRule,
)
from concordia.domain.accounts.schema import SchemaValidator
from concordia.foundation.domain.exceptions import StoreError, ValidationError
from concordia.foundation.domain.ports import DELETE_FIELD, SERVER_TIMESTAMP, WriteOp

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Sequence

    from concordia.foundation.domain.ports import Document, DocumentStorePort

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 200
DEFAULT_BATCH_LIMIT = 450


class ReconciliationMode(StrEnum):
    """``analyze`` reports without writing; ``apply`` repairs."""

    ANALYZE = "analyze"
    APPLY = "apply"


@dataclass(frozen=True, slots=True)
class ScanError:
    collection: str
    doc_id: str | None
    error: str
    code: str


def _scan_error(collection: str, doc_id: str | None, exc: BaseException) -> ScanError:
    code = getattr(exc, "code", None) or getattr(exc, "error_code", "unknown")
    return ScanError(collection, doc_id, str(exc), str(code))


class BatchWriter:
    """Accumulates write operations and commits them in bounded batches.

    A batch is committed as soon as it reaches ``limit`` operations and once
    more on :meth:`flush`. A failed commit is recorded and its operations
    dropped; the next scan finds the same documents again.

    Args:
        store: Document store.
        limit: Operations per batch; must not exceed the store ceiling.
    """

    def __init__(self, store: DocumentStorePort, limit: int = DEFAULT_BATCH_LIMIT) -> None:
        if not 1 <= limit <= store.max_batch_size:
            msg = f"batch limit must be between 1 and {store.max_batch_size}, got {limit}"
            raise ValueError(msg)
        self._store = store
        self._limit = limit
        self._pending: list[WriteOp] = []
        self.commits = 0
        self.written = 0
        self.failures: list[ScanError] = []

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def add(self, op: WriteOp) -> None:
        self._pending.append(op)
        if len(self._pending) >= self._limit:
            await self.flush()

    async def flush(self) -> None:
        if not self._pending:
            return
        ops, self._pending = self._pending, []
        try:
            await self._store.batch_write(ops)
        except StoreError as exc:
            logger.warning(
                "batch_commit_failed",
                extra={"size": len(ops), "collection": ops[0].collection, "error": str(exc)},
            )
            self.failures.append(_scan_error(ops[0].collection, None, exc))
            return
        self.commits += 1
        self.written += len(ops)


@dataclass
class DriftReport:
    """Outcome of a drift repair pass.

    Attributes:
        dry_run: True when nothing was written.
        scanned: UserRecords examined.
        needing_fixes: Records with at least one issue.
        fixed: Records rewritten (committed).
        issue_counts: Issue tag -> number of records carrying it.
        resume_after: Last document id fully processed; pass it back as
            ``start_after`` to resume.
        completed: True when the scan reached the end of the collection.
    """

    dry_run: bool
    scanned: int = 0
    needing_fixes: int = 0
    fixed: int = 0
    pages: int = 0
    commits: int = 0
    issue_counts: dict[str, int] = field(default_factory=dict)
    errors: list[ScanError] = field(default_factory=list)
    cancelled: bool = False
    completed: bool = False
    resume_after: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class OrphanRecord:
    collection: str
    id: str
    reason: str


@dataclass
class OrphanReport:
    """Outcome of an orphan sweep."""

    dry_run: bool
    scanned: dict[str, int] = field(default_factory=dict)
    orphans: list[OrphanRecord] = field(default_factory=list)
    deleted: int = 0
    commits: int = 0
    errors: list[ScanError] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ReconciliationReport:
    mode: ReconciliationMode
    drift: DriftReport
    orphans: OrphanReport

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "drift": self.drift.to_dict(),
            "orphans": self.orphans.to_dict(),
        }


def _cancelled(cancel: asyncio.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


def owner_ids(rule: OrphanRule, document: Document) -> list[str]:
    """User ids a document references under ``rule``."""
    owners: list[str] = []
    for name in rule.owner_fields:
        value = document.id if name == DOCUMENT_ID else document.data.get(name)
        if isinstance(value, list):
            owners.extend(
                member
                for member in value
                if isinstance(member, str) and member and member not in SYSTEM_PARTICIPANTS
            )
            continue
        if isinstance(value, str) and value:
            owners.append(value)
            if rule.fallback_only:
                break
    return owners


class ReconciliationScanner:
    """Finds and repairs drift and orphans across the user collections.

    Args:
        store: Document store.
        schema: Schema validator providing ``analyze`` and ``apply_fixes``.
        page_size: Documents per page read.
        batch_limit: Operations per atomic batch commit.
        orphan_rules: Sweep catalogue, in sweep order.
    """

    def __init__(
        self,
        store: DocumentStorePort,
        schema: SchemaValidator | None = None,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        orphan_rules: Sequence[OrphanRule] = ORPHAN_RULES,
    ) -> None:
        self._store = store
        self._schema = schema or SchemaValidator()
        self._page_size = page_size
        self._batch_limit = min(batch_limit, store.max_batch_size)
        self._rules = tuple(orphan_rules)

    async def run(
        self,
        mode: ReconciliationMode,
        cancel: asyncio.Event | None = None,
    ) -> ReconciliationReport:
        """Run drift repair followed by the orphan sweep."""
        dry_run = mode is ReconciliationMode.ANALYZE
        drift = await self.repair_drift(dry_run=dry_run, cancel=cancel)
        orphans = await self.sweep_orphans(dry_run=dry_run, cancel=cancel)
        return ReconciliationReport(mode=mode, drift=drift, orphans=orphans)

    async def repair_drift(
        self,
        *,
        dry_run: bool = False,
        start_after: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> DriftReport:
        """Scan UserRecords and rewrite the ones that drifted.

        Args:
            dry_run: Count issues without writing.
            start_after: Resume cursor from a previous report.
            cancel: Checked between pages; set it to stop the scan.

        Returns:
            DriftReport. Per-record failures are listed in ``errors`` and
            never stop the scan.
        """
        report = DriftReport(dry_run=dry_run, resume_after=start_after)
        writer = BatchWriter(self._store, self._batch_limit)
        issue_counts: Counter[str] = Counter()
        logger.info("drift_repair_started", extra={"dry_run": dry_run, "start_after": start_after})

        cursor = start_after
        while True:
            if _cancelled(cancel):
                report.cancelled = True
                break
            try:
                page = await self._store.list_page(
                    USERS, page_size=self._page_size, start_after=cursor
                )
            except StoreError as exc:
                logger.warning(
                    "drift_repair_page_failed", extra={"cursor": cursor, "error": str(exc)}
                )
                report.errors.append(_scan_error(USERS, None, exc))
                break
            if not page:
                report.completed = True
                break

            report.pages += 1
            for document in page:
                report.scanned += 1
                issues = self._schema.analyze(document.data, document.id)
                if not issues:
                    continue
                report.needing_fixes += 1
                issue_counts.update(issues)
                if dry_run:
                    continue
                try:
                    fixes = self._schema.apply_fixes(document.data, document.id)
                except ValidationError as exc:
                    logger.warning(
                        "drift_repair_record_skipped",
                        extra={"doc_id": document.id, "issues": issues, "error": str(exc)},
                    )
                    report.errors.append(_scan_error(USERS, document.id, exc))
                    continue
                if fixes:
                    await writer.add(WriteOp.update(USERS, document.id, fixes))

            cursor = page[-1].id
            report.resume_after = cursor
            if len(page) < self._page_size:
                report.completed = True
                break

        await writer.flush()
        report.fixed = writer.written
        report.commits = writer.commits
        report.errors.extend(writer.failures)
        report.issue_counts = dict(issue_counts)
        logger.info(
            "drift_repair_completed",
            extra={
                "dry_run": dry_run,
                "scanned": report.scanned,
                "needing_fixes": report.needing_fixes,
                "fixed": report.fixed,
                "errors": len(report.errors),
                "cancelled": report.cancelled,
            },
        )
        return report

    async def heal_record(self, document: Document) -> dict[str, Any]:
        """Repair one UserRecord in place and return its healed data.

        Used on read paths. Failure to write is logged and the healed view is
        still returned; the background scan will retry the write.
        """
        if not self._schema.analyze(document.data, document.id):
            return dict(document.data)
        try:
            fixes = self._schema.apply_fixes(document.data, document.id)
        except ValidationError as exc:
            logger.warning("record_heal_skipped", extra={"doc_id": document.id, "error": str(exc)})
            return dict(document.data)
        try:
            await self._store.update(USERS, document.id, fixes)
        except StoreError as exc:
            logger.warning(
                "record_heal_write_failed", extra={"doc_id": document.id, "error": str(exc)}
            )
        else:
            logger.info("record_healed", extra={"doc_id": document.id, "fields": sorted(fixes)})

        healed = dict(document.data)
        for name, value in fixes.items():
            if value is DELETE_FIELD:
                healed.pop(name, None)
            elif value is not SERVER_TIMESTAMP:
                healed[name] = value
        return healed

    async def sweep_orphans(
        self,
        *,
        dry_run: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> OrphanReport:
        """Delete documents whose owning user (or parent listing) is gone.

        Args:
            dry_run: Report orphans without deleting them.
            cancel: Checked between pages.
        """
        report = OrphanReport(dry_run=dry_run)
        logger.info("orphan_sweep_started", extra={"dry_run": dry_run})

        known_users = await self._collect_ids(USERS, report, cancel)
        if known_users is None:
            return report

        writer = BatchWriter(self._store, self._batch_limit)
        missing_cache: dict[str, bool] = {}
        listing_ids: set[str] | None = None

        for rule in self._rules:
            if _cancelled(cancel):
                report.cancelled = True
                break
            if rule.collection == LISTINGS:
                listing_ids = set()
            scanned = 0
            cursor: str | None = None
            while True:
                if _cancelled(cancel):
                    report.cancelled = True
                    break
                try:
                    page = await self._store.list_page(
                        rule.collection, page_size=self._page_size, start_after=cursor
                    )
                except StoreError as exc:
                    logger.warning(
                        "orphan_sweep_page_failed",
                        extra={"collection": rule.collection, "error": str(exc)},
                    )
                    report.errors.append(_scan_error(rule.collection, None, exc))
                    break

                for document in page:
                    scanned += 1
                    reason = await self._orphan_reason(
                        rule, document, known_users, listing_ids, missing_cache, report
                    )
                    if reason is None:
                        if rule.collection == LISTINGS and listing_ids is not None:
                            listing_ids.add(document.id)
                        continue
                    report.orphans.append(OrphanRecord(rule.collection, document.id, reason))
                    if rule.collection == LISTINGS:
                        # Deletes are batched; children must see the listing as gone now.
                        missing_cache[f"{LISTINGS}/{document.id}"] = True
                    if not dry_run:
                        await writer.add(WriteOp.delete(rule.collection, document.id))

                if len(page) < self._page_size:
                    break
                cursor = page[-1].id
            report.scanned[rule.collection] = scanned

        await writer.flush()
        report.deleted = writer.written
        report.commits = writer.commits
        report.errors.extend(writer.failures)
        logger.info(
            "orphan_sweep_completed",
            extra={
                "dry_run": dry_run,
                "orphans": len(report.orphans),
                "deleted": report.deleted,
                "errors": len(report.errors),
                "cancelled": report.cancelled,
            },
        )
        return report

    async def _collect_ids(
        self,
        collection: str,
        report: OrphanReport,
        cancel: asyncio.Event | None,
    ) -> set[str] | None:
        ids: set[str] = set()
        cursor: str | None = None
        while True:
            if _cancelled(cancel):
                report.cancelled = True
                return None
            try:
                page = await self._store.list_page(
                    collection, page_size=self._page_size, start_after=cursor
                )
            except StoreError as exc:
                # Without the full id set every document would look orphaned.
                logger.error(
                    "orphan_sweep_aborted", extra={"collection": collection, "error": str(exc)}
                )
                report.errors.append(_scan_error(collection, None, exc))
                return None
            ids.update(document.id for document in page)
            if len(page) < self._page_size:
                return ids
            cursor = page[-1].id

    async def _orphan_reason(
        self,
        rule: OrphanRule,
        document: Document,
        known_users: set[str],
        listing_ids: set[str] | None,
        missing_cache: dict[str, bool],
        report: OrphanReport,
    ) -> str | None:
        dangling = [owner for owner in owner_ids(rule, document) if owner not in known_users]
        for owner in dangling:
            if await self._confirmed_missing(USERS, owner, missing_cache, report):
                return f"owner:{owner}"
            known_users.add(owner)

        if rule.parent_field and listing_ids is not None:
            parent = document.data.get(rule.parent_field)
            if isinstance(parent, str) and parent and parent not in listing_ids:
                if await self._confirmed_missing(LISTINGS, parent, missing_cache, report):
                    return f"parent:{parent}"
        return None

    async def _confirmed_missing(
        self,
        collection: str,
        doc_id: str,
        cache: dict[str, bool],
        report: OrphanReport,
    ) -> bool:
        """Point-read ``doc_id`` so records created mid-sweep are never deleted."""
        key = f"{collection}/{doc_id}"
        if key not in cache:
            try:
                cache[key] = await self._store.get(collection, doc_id) is None
            except StoreError as exc:
                report.errors.append(_scan_error(collection, doc_id, exc))
                return False
        return cache[key]
