"""Cascade deletion of a user and everything that references them.

Phases run strictly in order; only the last one can abort:
1. Media assets (profile photo, portfolio images)
2. User-generated content in every catalogued collection
3. ClientProfile and FreelancerProfile
4. UserRecord
5. Identity

Phases 1-4 are best-effort. Failures are recorded in the report and the
next phase still runs, because a half-deleted user is repaired by the
orphan sweep while a user whose identity survives can still sign in. Each
phase is idempotent, so re-running a deletion converges.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

from concordia.domain.accounts.collections import (
    CASCADE_TARGETS,
    CLIENT_PROFILES,
    FREELANCER_PROFILES,
    USERS,
    CascadeTarget,
)
from concordia.foundation.application.concurrency import gather_bounded, step_timeout
from concordia.foundation.application.notifier import ChangeNotifier, ChangeTopic
from concordia.foundation.application.retry import RetryPolicy
from concordia.foundation.domain.exceptions import (
    DomainError,
    FatalIdentityError,
    IdentityErrorReason,
    IdentityProviderError,
    MediaNotFoundError,
    PermissionDeniedError,
    ReauthenticationRequiredError,
    StoreError,
)
from concordia.foundation.domain.ports import FieldFilter, Identity, WriteOp

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from concordia.foundation.domain.ports import (
        Document,
        DocumentStorePort,
        IdentityProviderPort,
        MediaStoragePort,
    )

logger = logging.getLogger(__name__)

IDENTITY_COLLECTION = "identity"


@dataclass(frozen=True, slots=True)
class DeletedRecord:
    collection: str
    id: str


@dataclass(frozen=True, slots=True)
class DeletionFailure:
    """A non-fatal failure recorded during deletion."""

    operation: str
    error: str
    code: str


@dataclass(frozen=True, slots=True)
class SatisfiedOperation:
    """An operation whose goal already held (nothing left to delete)."""

    operation: str
    code: str


@dataclass
class DeletionReport:
    """Result of a cascade deletion.

    Attributes:
        user_id: Deleted user.
        deleted: Every document, asset and identity removed.
        errors: Non-fatal failures; the orphan sweep repairs what they left.
        already_satisfied: Operations that found nothing to do (not-found,
            permission-denied).
    """

    user_id: str
    deleted: list[DeletedRecord] = field(default_factory=list)
    errors: list[DeletionFailure] = field(default_factory=list)
    already_satisfied: list[SatisfiedOperation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def record_deleted(self, collection: str, doc_id: str) -> None:
        record = DeletedRecord(collection, doc_id)
        if record not in self.deleted:
            self.deleted.append(record)

    def record_error(self, operation: str, exc: BaseException) -> None:
        code = getattr(exc, "code", None) or getattr(exc, "error_code", "unknown")
        self.errors.append(DeletionFailure(operation, str(exc), str(code)))

    def record_satisfied(self, operation: str, code: str) -> None:
        self.already_satisfied.append(SatisfiedOperation(operation, code))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def media_asset_ids(*documents: Document | None) -> list[str]:
    """Collect media asset ids referenced by user documents, de-duplicated."""
    ids: list[str] = []
    for document in documents:
        if document is None:
            continue
        candidates: list[Any] = [document.data.get("profilePhotoPublicId")]
        images = document.data.get("portfolioImages")
        if isinstance(images, list):
            candidates.extend(image.get("publicId") for image in images if isinstance(image, dict))
        for candidate in candidates:
            if isinstance(candidate, str) and candidate and candidate not in ids:
                ids.append(candidate)
    return ids


def _chunks(items: Sequence[Document], size: int) -> Iterable[Sequence[Document]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class CascadeDeletionEngine:
    """Deletes a user across media, content, profiles, record and identity.

    Args:
        store: Document store.
        identity_provider: Identity provider.
        media: Media storage; phase 1 is skipped when None.
        targets: Content catalogue for phase 2.
        fanout_limit: Maximum concurrent media deletions and content targets.
        retry: Retry policy for the identity deletion.
        media_timeout: Time bound for one asset deletion.
        notifier: Optional change notifier for ``USER_DELETED``.
    """

    def __init__(
        self,
        store: DocumentStorePort,
        identity_provider: IdentityProviderPort,
        media: MediaStoragePort | None = None,
        *,
        targets: Sequence[CascadeTarget] = CASCADE_TARGETS,
        fanout_limit: int = 4,
        retry: RetryPolicy | None = None,
        media_timeout: float | None = 15.0,
        notifier: ChangeNotifier | None = None,
    ) -> None:
        self._store = store
        self._identity = identity_provider
        self._media = media
        self._targets = tuple(targets)
        self._fanout_limit = fanout_limit
        self._retry = retry or RetryPolicy()
        self._media_timeout = media_timeout
        self._notifier = notifier

    @property
    def identity_provider(self) -> IdentityProviderPort:
        return self._identity

    @property
    def media(self) -> MediaStoragePort | None:
        return self._media

    async def delete_user(
        self,
        user_id: str,
        identity: Identity | None = None,
    ) -> DeletionReport:
        """Delete all data belonging to ``user_id``.

        Args:
            user_id: User (identity) id.
            identity: Identity handle with a session token, when the provider
                needs one to delete the identity.

        Returns:
            DeletionReport for phases 1-5.

        Raises:
            ReauthenticationRequiredError: The provider needs a fresh sign-in.
            FatalIdentityError: The identity could not be deleted.
                ``partial_result`` holds the report of the earlier phases.
        """
        report = DeletionReport(user_id=user_id)
        logger.info("cascade_deletion_started", extra={"user_id": user_id})

        # Phase 1: media assets
        user_doc = await self._read(USERS, user_id, report)
        freelancer_doc = await self._read(FREELANCER_PROFILES, user_id, report)
        media = self._media
        if media is not None:
            asset_ids = media_asset_ids(user_doc, freelancer_doc)
            await gather_bounded(
                [lambda a=asset_id: self._delete_asset(media, a, report) for asset_id in asset_ids],
                self._fanout_limit,
            )

        # Phase 2: user-generated content
        await gather_bounded(
            [
                lambda t=target: self._delete_matching(t, user_id, report)
                for target in self._targets
            ],
            self._fanout_limit,
        )

        # Phase 3: profiles
        for collection in (CLIENT_PROFILES, FREELANCER_PROFILES):
            await self._delete_document(collection, user_id, report)

        # Phase 4: user record
        await self._delete_document(USERS, user_id, report)

        # Phase 5: identity
        await self._delete_identity(identity or Identity(uid=user_id), report)

        logger.info(
            "cascade_deletion_completed",
            extra={
                "user_id": user_id,
                "deleted": len(report.deleted),
                "errors": len(report.errors),
                "already_satisfied": len(report.already_satisfied),
            },
        )
        if self._notifier is not None:
            await self._notifier.publish(ChangeTopic.USER_DELETED, user_id=user_id)
        return report

    async def _read(self, collection: str, doc_id: str, report: DeletionReport) -> Document | None:
        try:
            return await self._store.get(collection, doc_id)
        except PermissionDeniedError as exc:
            report.record_satisfied(f"read:{collection}", exc.code)
        except StoreError as exc:
            logger.warning(
                "cascade_deletion_read_failed",
                extra={"user_id": doc_id, "collection": collection, "error": str(exc)},
            )
            report.record_error(f"read:{collection}", exc)
        return None

    async def _delete_asset(
        self,
        media: MediaStoragePort,
        asset_id: str,
        report: DeletionReport,
    ) -> None:
        operation = f"media:{asset_id}"
        try:
            async with step_timeout(operation, self._media_timeout):
                await media.delete_asset(asset_id)
        except MediaNotFoundError:
            report.record_satisfied(operation, "not-found")
        except DomainError as exc:
            logger.warning(
                "cascade_deletion_media_failed",
                extra={"user_id": report.user_id, "asset_id": asset_id, "error": str(exc)},
            )
            report.record_error(operation, exc)
        else:
            report.record_deleted("media", asset_id)

    async def _delete_matching(
        self,
        target: CascadeTarget,
        user_id: str,
        report: DeletionReport,
    ) -> None:
        try:
            documents = await self._store.query(
                target.collection, [FieldFilter(target.field, user_id, target.op)]
            )
        except PermissionDeniedError as exc:
            # The rules may already deny access because the user is half-gone.
            logger.warning(
                "cascade_deletion_permission_denied",
                extra={"user_id": user_id, "operation": target.operation},
            )
            report.record_satisfied(target.operation, exc.code)
            return
        except StoreError as exc:
            logger.warning(
                "cascade_deletion_query_failed",
                extra={"user_id": user_id, "operation": target.operation, "error": str(exc)},
            )
            report.record_error(target.operation, exc)
            return

        for chunk in _chunks(documents, self._store.max_batch_size):
            try:
                await self._store.batch_write(
                    [WriteOp.delete(target.collection, doc.id) for doc in chunk]
                )
            except PermissionDeniedError as exc:
                report.record_satisfied(target.operation, exc.code)
                continue
            except StoreError as exc:
                logger.warning(
                    "cascade_deletion_batch_failed",
                    extra={
                        "user_id": user_id,
                        "operation": target.operation,
                        "size": len(chunk),
                        "error": str(exc),
                    },
                )
                report.record_error(target.operation, exc)
                continue
            for doc in chunk:
                report.record_deleted(target.collection, doc.id)

    async def _delete_document(
        self,
        collection: str,
        doc_id: str,
        report: DeletionReport,
    ) -> None:
        operation = f"delete:{collection}"
        try:
            if await self._store.get(collection, doc_id) is None:
                report.record_satisfied(operation, "not-found")
                return
            await self._store.delete(collection, doc_id)
        except PermissionDeniedError as exc:
            report.record_satisfied(operation, exc.code)
        except StoreError as exc:
            logger.warning(
                "cascade_deletion_document_failed",
                extra={"user_id": doc_id, "collection": collection, "error": str(exc)},
            )
            report.record_error(operation, exc)
        else:
            report.record_deleted(collection, doc_id)

    async def _delete_identity(self, identity: Identity, report: DeletionReport) -> None:
        try:
            await self._retry.call(self._identity.delete_identity, identity)
        except IdentityProviderError as exc:
            if exc.reason is IdentityErrorReason.NOT_FOUND:
                report.record_satisfied(IDENTITY_COLLECTION, exc.reason.value)
                return
            logger.error(
                "cascade_deletion_identity_failed",
                extra={"user_id": identity.uid, "reason": exc.reason.value},
            )
            error: FatalIdentityError
            if exc.reason is IdentityErrorReason.REQUIRES_REAUTH:
                error = ReauthenticationRequiredError(identity.uid)
            else:
                error = FatalIdentityError(identity.uid, exc.reason.value)
            error.partial_result = report
            raise error from exc
        report.record_deleted(IDENTITY_COLLECTION, identity.uid)
