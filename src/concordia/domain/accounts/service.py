"""In-process service surface for the account engine.

Wires the account workflows together around one change notifier and runs
every public call inside an OpenTelemetry span. Callers (request handlers,
scheduled tasks, admin tooling) depend on this class only.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from concordia.domain.accounts.cascade_deletion import CascadeDeletionEngine, DeletionReport
from concordia.domain.accounts.collections import USERS
from concordia.domain.accounts.profile_router import ProfileFieldRouter, ProfileUpdateResult
from concordia.domain.accounts.ratings import RatingAggregator, RatingSummary
from concordia.domain.accounts.reconciliation import (
    DriftReport,
    OrphanReport,
    ReconciliationMode,
    ReconciliationReport,
    ReconciliationScanner,
)
from concordia.domain.accounts.registration import RegistrationOrchestrator
from concordia.domain.accounts.schema import CanonicalUser, SchemaValidator
from concordia.domain.accounts.settings import AccountEngineSettings
from concordia.foundation.application.notifier import ChangeNotifier, ChangeTopic
from concordia.foundation.domain.exceptions import NotFoundError
from concordia.foundation.domain.ports import Document

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Iterator, Mapping

    from concordia.foundation.domain.ports import (
        DocumentStorePort,
        Identity,
        IdentityProviderPort,
        MediaStoragePort,
    )

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@contextmanager
def _span(name: str, **attributes: Any) -> Iterator[trace.Span]:
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            span.set_attribute(key, value)
        try:
            yield span
        except Exception as exc:
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            span.record_exception(exc)
            raise
        span.set_status(Status(StatusCode.OK))


class AccountService:
    """Facade over registration, updates, deletion, reconciliation and ratings.

    Use :meth:`from_ports` to build a fully wired service; the constructor
    takes already-built components for tests that need to swap one out.
    """

    def __init__(
        self,
        *,
        store: DocumentStorePort,
        registration: RegistrationOrchestrator,
        router: ProfileFieldRouter,
        deletion: CascadeDeletionEngine,
        scanner: ReconciliationScanner,
        ratings: RatingAggregator,
        notifier: ChangeNotifier,
    ) -> None:
        self._store = store
        self.registration = registration
        self.router = router
        self.deletion = deletion
        self.scanner = scanner
        self.ratings = ratings
        self.notifier = notifier

    @classmethod
    def from_ports(
        cls,
        store: DocumentStorePort,
        identity_provider: IdentityProviderPort,
        media: MediaStoragePort | None = None,
        settings: AccountEngineSettings | None = None,
        notifier: ChangeNotifier | None = None,
    ) -> AccountService:
        """Build every component from the three collaborator ports."""
        settings = settings or AccountEngineSettings()
        notifier = notifier or ChangeNotifier()
        schema = SchemaValidator(settings.default_profile_photo)
        retry = settings.retry_policy()
        return cls(
            store=store,
            registration=RegistrationOrchestrator(
                store,
                identity_provider,
                schema,
                retry=retry,
                step_timeout_seconds=settings.step_timeout,
                notifier=notifier,
            ),
            router=ProfileFieldRouter(store, schema, notifier),
            deletion=CascadeDeletionEngine(
                store,
                identity_provider,
                media,
                fanout_limit=settings.fanout_limit,
                retry=retry,
                media_timeout=settings.step_timeout,
                notifier=notifier,
            ),
            scanner=ReconciliationScanner(
                store,
                schema,
                page_size=settings.page_size,
                batch_limit=settings.batch_limit,
            ),
            ratings=RatingAggregator(
                store, fanout_limit=settings.fanout_limit, notifier=notifier
            ),
            notifier=notifier,
        )

    async def register(self, raw: Mapping[str, Any]) -> CanonicalUser:
        with _span("accounts.register") as span:
            user = await self.registration.register(raw)
            span.set_attribute("user.id", user.uid)
            return user

    async def apply_update(self, user_id: str, patch: Mapping[str, Any]) -> ProfileUpdateResult:
        with _span("accounts.apply_update", **{"user.id": user_id}):
            return await self.router.apply_update(user_id, patch)

    async def delete_user(self, user_id: str, identity: Identity | None = None) -> DeletionReport:
        with _span("accounts.delete_user", **{"user.id": user_id}) as span:
            report = await self.deletion.delete_user(user_id, identity)
            span.set_attribute("deletion.deleted", len(report.deleted))
            span.set_attribute("deletion.errors", len(report.errors))
            return report

    async def compute_rating(self, user_id: str) -> RatingSummary:
        with _span("accounts.compute_rating", **{"user.id": user_id}):
            return await self.ratings.compute_rating(user_id)

    async def run_reconciliation(
        self,
        mode: ReconciliationMode | str,
        cancel: asyncio.Event | None = None,
    ) -> ReconciliationReport:
        mode = ReconciliationMode(mode)
        with _span("accounts.run_reconciliation", **{"reconciliation.mode": mode.value}):
            return await self.scanner.run(mode, cancel)

    async def repair_drift(
        self,
        *,
        dry_run: bool = False,
        start_after: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> DriftReport:
        with _span("accounts.repair_drift", **{"reconciliation.dry_run": dry_run}):
            return await self.scanner.repair_drift(
                dry_run=dry_run, start_after=start_after, cancel=cancel
            )

    async def sweep_orphans(
        self,
        *,
        dry_run: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> OrphanReport:
        with _span("accounts.sweep_orphans", **{"reconciliation.dry_run": dry_run}):
            return await self.scanner.sweep_orphans(dry_run=dry_run, cancel=cancel)

    async def get_profile(self, user_id: str) -> dict[str, Any]:
        """Read a merged profile, healing the UserRecord on the way.

        Raises:
            NotFoundError: The UserRecord does not exist.
        """
        with _span("accounts.get_profile", **{"user.id": user_id}):
            user_doc = await self._store.get(USERS, user_id)
            if user_doc is None:
                raise NotFoundError("UserRecord", user_id)
            healed = await self.scanner.heal_record(user_doc)
            return await self.router.load_profile(user_id, Document(user_doc.id, healed))

    async def notify_review_changed(self, freelancer_id: str) -> None:
        """Signal that reviews on ``freelancer_id``'s listings changed."""
        with _span("accounts.notify_review_changed", **{"user.id": freelancer_id}):
            delivered = await self.notifier.publish(
                ChangeTopic.REVIEWS_CHANGED, user_id=freelancer_id
            )
            logger.debug(
                "review_change_published",
                extra={"user_id": freelancer_id, "delivered": delivered},
            )
