"""Freelancer rating aggregation over listings and their reviews.

A freelancer's rating is derived, never stored authoritatively: it is the
review-count weighted mean of the ratings on every active listing they own.
The cached copy on the FreelancerProfile exists for list views only and is
refreshed whenever reviews change.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from concordia.domain.accounts.collections import (
    FREELANCER_PROFILES,
    LISTING_OWNER_FIELDS,
    LISTINGS,
    REVIEWS,
)
from concordia.foundation.application.concurrency import gather_bounded
from concordia.foundation.application.notifier import ChangeNotifier, ChangeTopic
from concordia.foundation.domain.exceptions import MissingIndexError, StoreError
from concordia.foundation.domain.ports import SERVER_TIMESTAMP, FieldFilter, OrderBy

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from concordia.foundation.domain.ports import Document, DocumentStorePort

logger = logging.getLogger(__name__)

STARS = (5, 4, 3, 2, 1)


def round_half_up(value: float, digits: int = 1) -> float:
    """Round like a person would: 4.25 -> 4.3, never banker's rounding."""
    scale = 10**digits
    return math.floor(value * scale + 0.5) / scale


def valid_rating(value: Any) -> int | None:
    """Return ``value`` as a star count when it is an integer from 1 to 5."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int) and 1 <= value <= 5:
        return value
    return None


@dataclass(frozen=True, slots=True)
class RatingSummary:
    average: float = 0.0
    count: int = 0


@dataclass(frozen=True, slots=True)
class ListingRating:
    """Rating of a single listing.

    Attributes:
        listing_id: Listing document id.
        title: Listing title, when set.
        average: Mean star rating, rounded to one decimal.
        count: Number of valid ratings.
        total: Sum of valid ratings; weights the overall mean exactly.
        distribution: Star -> number of reviews with that rating.
    """

    listing_id: str
    title: str
    average: float
    count: int
    total: int
    distribution: dict[int, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RatingBreakdown:
    summary: RatingSummary
    listings: list[ListingRating]
    # Listings whose reviews could not be read; the summary leaves them out.
    skipped: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.skipped

    @property
    def distribution(self) -> dict[int, int]:
        combined = dict.fromkeys(STARS, 0)
        for listing in self.listings:
            for star, n in listing.distribution.items():
                combined[star] += n
        return combined


def summarize(listings: Iterable[ListingRating]) -> RatingSummary:
    """Combine per-listing ratings into one weighted summary.

    ``sum(avg_i * count_i) / sum(count_i)`` equals the plain mean over all
    reviews, so it is computed from the exact per-listing totals.
    """
    total = 0
    count = 0
    for listing in listings:
        total += listing.total
        count += listing.count
    if count == 0:
        return RatingSummary(0.0, 0)
    return RatingSummary(round_half_up(total / count), count)


def _listing_rating(listing: Document, reviews: Sequence[Document]) -> ListingRating:
    distribution = dict.fromkeys(STARS, 0)
    for review in reviews:
        stars = valid_rating(review.data.get("rating"))
        if stars is not None:
            distribution[stars] += 1
    count = sum(distribution.values())
    total = sum(star * n for star, n in distribution.items())
    return ListingRating(
        listing_id=listing.id,
        title=str(listing.data.get("title") or ""),
        average=round_half_up(total / count) if count else 0.0,
        count=count,
        total=total,
        distribution=distribution,
    )


def _created_at(review: Document) -> float:
    value = review.data.get("createdAt")
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value).timestamp()
        except ValueError:
            return 0.0
    return 0.0


class RatingAggregator:
    """Computes freelancer ratings from listings and reviews.

    Args:
        store: Document store.
        fanout_limit: Maximum concurrent per-listing review reads.
        notifier: When given, the aggregator refreshes the cached rating on
            every ``REVIEWS_CHANGED`` notification.
    """

    def __init__(
        self,
        store: DocumentStorePort,
        *,
        fanout_limit: int = 4,
        notifier: ChangeNotifier | None = None,
    ) -> None:
        self._store = store
        self._fanout_limit = fanout_limit
        if notifier is not None:
            notifier.subscribe(ChangeTopic.REVIEWS_CHANGED, self.on_reviews_changed)

    async def active_listings(self, user_id: str) -> list[Document]:
        """Active listings owned by ``user_id`` under either owner field.

        Uses the compound ``owner == uid AND isActive == True`` query and
        falls back to single-field owner queries, filtered client-side, when
        the store lacks the composite index. Both paths de-duplicate by id.
        """
        listings: dict[str, Document] = {}
        for owner_field in LISTING_OWNER_FIELDS:
            try:
                found = await self._store.query(
                    LISTINGS,
                    [FieldFilter(owner_field, user_id), FieldFilter("isActive", True)],
                )
            except MissingIndexError:
                logger.info(
                    "listing_query_fallback",
                    extra={"user_id": user_id, "owner_field": owner_field},
                )
                owned = await self._store.query(LISTINGS, [FieldFilter(owner_field, user_id)])
                found = [doc for doc in owned if doc.data.get("isActive") is True]
            for doc in found:
                listings.setdefault(doc.id, doc)
        return list(listings.values())

    async def listing_reviews(self, listing_id: str) -> list[Document]:
        return await self._store.query(REVIEWS, [FieldFilter("gigId", listing_id)])

    async def listing_rating(self, listing: Document) -> ListingRating | None:
        """Rating of one listing, or None when its reviews cannot be read."""
        try:
            reviews = await self.listing_reviews(listing.id)
        except StoreError as exc:
            logger.warning(
                "listing_reviews_unreadable",
                extra={"listing_id": listing.id, "error": str(exc)},
            )
            return None
        return _listing_rating(listing, reviews)

    async def rating_breakdown(self, user_id: str) -> RatingBreakdown:
        listings = await self.active_listings(user_id)
        ratings = await gather_bounded(
            [lambda doc=listing: self.listing_rating(doc) for listing in listings],
            self._fanout_limit,
        )
        per_listing = [rating for rating in ratings if rating is not None]
        skipped = [doc.id for doc, rating in zip(listings, ratings, strict=True) if rating is None]
        breakdown = RatingBreakdown(summarize(per_listing), per_listing, skipped)
        logger.debug(
            "rating_computed",
            extra={
                "user_id": user_id,
                "listings": len(listings),
                "skipped": len(skipped),
                "average": breakdown.summary.average,
                "count": breakdown.summary.count,
            },
        )
        return breakdown

    async def compute_rating(self, user_id: str) -> RatingSummary:
        """Weighted rating over all active listings; ``{0, 0}`` when unrated."""
        return (await self.rating_breakdown(user_id)).summary

    async def refresh_cached_rating(self, user_id: str) -> RatingSummary:
        """Recompute the rating and merge it onto the FreelancerProfile.

        The cached rating is left untouched when any listing's reviews could
        not be read; the partial summary is still returned.
        """
        breakdown = await self.rating_breakdown(user_id)
        summary = breakdown.summary
        if not breakdown.complete:
            logger.warning(
                "cached_rating_refresh_skipped",
                extra={"user_id": user_id, "unreadable_listings": breakdown.skipped},
            )
            return summary
        await self._store.set(
            FREELANCER_PROFILES,
            user_id,
            {
                "rating": summary.average,
                "totalReviews": summary.count,
                "lastRatingUpdate": SERVER_TIMESTAMP,
            },
            merge=True,
        )
        logger.info(
            "cached_rating_refreshed",
            extra={"user_id": user_id, "average": summary.average, "count": summary.count},
        )
        return summary

    async def on_reviews_changed(self, user_id: str, **_: Any) -> None:
        await self.refresh_cached_rating(user_id)

    async def freelancer_reviews(self, user_id: str, limit: int | None = None) -> list[Document]:
        """All reviews on the user's active listings, newest first."""
        listings = await self.active_listings(user_id)
        batches = await gather_bounded(
            [lambda doc=listing: self._ordered_reviews(doc.id) for listing in listings],
            self._fanout_limit,
        )
        reviews = [review for batch in batches for review in batch]
        reviews.sort(key=_created_at, reverse=True)
        return reviews[:limit] if limit is not None else reviews

    async def _ordered_reviews(self, listing_id: str) -> list[Document]:
        filters = [FieldFilter("gigId", listing_id)]
        try:
            return await self._store.query(
                REVIEWS, filters, order_by=OrderBy("createdAt", descending=True)
            )
        except MissingIndexError:
            logger.info("review_query_fallback", extra={"listing_id": listing_id})
            return await self._store.query(REVIEWS, filters)
