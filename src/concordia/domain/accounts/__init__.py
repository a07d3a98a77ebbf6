"""Cross-collection user lifecycle for the marketplace.

Registration, routed profile updates, cascade deletion, reconciliation and
rating aggregation over a document store without multi-document
transactions. :class:`AccountService` is the entry point.
"""

from concordia.domain.accounts.cascade_deletion import CascadeDeletionEngine, DeletionReport
from concordia.domain.accounts.profile_router import (
    FIELD_OWNERSHIP,
    ProfileFieldRouter,
    ProfilePatch,
    ProfileUpdateResult,
    merge_profile,
)
from concordia.domain.accounts.ratings import (
    ListingRating,
    RatingAggregator,
    RatingBreakdown,
    RatingSummary,
)
from concordia.domain.accounts.reconciliation import (
    BatchWriter,
    DriftReport,
    OrphanReport,
    ReconciliationMode,
    ReconciliationReport,
    ReconciliationScanner,
)
from concordia.domain.accounts.registration import RegistrationOrchestrator
from concordia.domain.accounts.schema import CanonicalUser, SchemaValidator
from concordia.domain.accounts.service import AccountService
from concordia.domain.accounts.settings import AccountEngineSettings, get_account_settings

__all__ = [
    "FIELD_OWNERSHIP",
    "AccountEngineSettings",
    "AccountService",
    "BatchWriter",
    "CanonicalUser",
    "CascadeDeletionEngine",
    "DeletionReport",
    "DriftReport",
    "ListingRating",
    "OrphanReport",
    "ProfileFieldRouter",
    "ProfilePatch",
    "ProfileUpdateResult",
    "RatingAggregator",
    "RatingBreakdown",
    "RatingSummary",
    "ReconciliationMode",
    "ReconciliationReport",
    "ReconciliationScanner",
    "RegistrationOrchestrator",
    "SchemaValidator",
    "get_account_settings",
    "merge_profile",
]
