"""Collection names and the foreign-key catalogue for user-owned data.

The catalogue is the single place that knows which documents reference a
user. Cascade deletion and the orphan sweep both walk it, so the two can
never disagree about what "belongs to a user" means.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from concordia.foundation.domain.ports import FilterOp

USERS: Final = "users"
CLIENT_PROFILES: Final = "clientProfiles"
FREELANCER_PROFILES: Final = "freelancerProfiles"
LISTINGS: Final = "gigs"
ORDERS: Final = "orders"
REVIEWS: Final = "reviews"
MESSAGES: Final = "messages"
FAVORITES: Final = "favorites"
NOTIFICATIONS: Final = "notifications"
REPORTS: Final = "reports"
CHATS: Final = "chats"

# Listing owner fields, current first. Early listings were keyed by ``userId``.
LISTING_OWNER_FIELDS: Final = ("freelancerId", "userId")

DOCUMENT_ID: Final = "__id__"
"""Pseudo-field meaning "the document id itself" in owner rules."""

SYSTEM_PARTICIPANTS: Final = frozenset({"skillbot"})
"""Chat participants that are not users and never have a UserRecord."""


@dataclass(frozen=True, slots=True)
class CascadeTarget:
    """Documents in ``collection`` whose ``field`` holds the user id.

    ``op`` is ``ARRAY_CONTAINS`` when the field is a list of user ids.
    """

    collection: str
    field: str
    op: FilterOp = FilterOp.EQ

    @property
    def operation(self) -> str:
        return f"{self.collection}.{self.field}"


CASCADE_TARGETS: Final = (
    CascadeTarget(LISTINGS, "freelancerId"),
    CascadeTarget(LISTINGS, "userId"),
    CascadeTarget(ORDERS, "clientId"),
    CascadeTarget(ORDERS, "freelancerId"),
    CascadeTarget(REVIEWS, "clientId"),
    CascadeTarget(REVIEWS, "reviewerId"),
    CascadeTarget(REVIEWS, "freelancerId"),
    CascadeTarget(MESSAGES, "senderId"),
    CascadeTarget(MESSAGES, "receiverId"),
    CascadeTarget(CHATS, "participants", FilterOp.ARRAY_CONTAINS),
    CascadeTarget(FAVORITES, "userId"),
    CascadeTarget(NOTIFICATIONS, "userId"),
    CascadeTarget(REPORTS, "reporterId"),
    CascadeTarget(REPORTS, "reportedUserId"),
)


@dataclass(frozen=True, slots=True)
class OrphanRule:
    """How to find the owners of documents in one collection.

    Attributes:
        collection: Collection to sweep.
        owner_fields: Fields holding user ids, or lists of them. A document
            is orphaned when any present owner field references an unknown
            user. ``DOCUMENT_ID`` stands for the document id.
        parent_field: Optional field referencing a listing; the document is
            orphaned when that listing no longer exists.
        fallback_only: When True, only the first present owner field is
            considered (profiles keyed by user id with a ``userId`` copy).
    """

    collection: str
    owner_fields: tuple[str, ...]
    parent_field: str | None = None
    fallback_only: bool = False


# Listings are swept before reviews so reviews of swept listings are caught
# in the same run.
ORPHAN_RULES: Final = (
    OrphanRule(CLIENT_PROFILES, (DOCUMENT_ID, "userId"), fallback_only=True),
    OrphanRule(FREELANCER_PROFILES, (DOCUMENT_ID, "userId"), fallback_only=True),
    OrphanRule(LISTINGS, LISTING_OWNER_FIELDS, fallback_only=True),
    OrphanRule(ORDERS, ("clientId", "freelancerId")),
    OrphanRule(REVIEWS, ("clientId", "reviewerId", "freelancerId"), parent_field="gigId"),
    OrphanRule(MESSAGES, ("senderId", "receiverId")),
    OrphanRule(CHATS, ("participants",)),
    OrphanRule(FAVORITES, ("userId",)),
    OrphanRule(NOTIFICATIONS, ("userId",)),
    OrphanRule(REPORTS, ("reporterId", "reportedUserId")),
)
