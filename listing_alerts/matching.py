"""
Candidate Matching & Scoring module for Listing Alerts.

Filters listings against the user's criteria and computes a weighted
match score (0-100) for each survivor. The scoring is a pure function of
its inputs: no randomness, no hidden mutable state.

Pipeline:
1. Hard filter: price range, bedroom count, property type, keywords
2. Score: weighted sum of price / bedrooms / location / recency / engagement
3. Soft filter: drop scores below the tier's min_match_score
4. Sort: score descending, newer listing first on ties
"""

import math
import logging
from datetime import datetime
from typing import Iterable, Optional

from .geo import haversine_m
from .models import (
    ListingCandidate,
    LocationSample,
    ScoredListing,
    SubscriptionTierConfig,
    UserCriteria,
)

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 50.0

# Recency steps: (max age in days, score)
RECENCY_STEPS = (
    (1, 100.0),   # Today
    (3, 90.0),    # Last 3 days
    (7, 80.0),    # Last week
    (14, 60.0),   # Last 2 weeks
    (30, 40.0),   # Last month
)
STALE_RECENCY_SCORE = 20.0


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class ListingMatcher:
    """
    Scores listings against a user's criteria for one subscription tier.

    Usage:
        matcher = ListingMatcher(criteria, tier_config)
        results = matcher.score_and_filter(listings, user_location)
    """

    # Scoring weights (sum to 100)
    WEIGHTS = {
        "price": 30,
        "bedrooms": 25,
        "location": 20,
        "recency": 15,
        "engagement": 10,
    }

    def __init__(
        self,
        criteria: UserCriteria,
        tier_config: SubscriptionTierConfig,
        weights: Optional[dict] = None,
    ):
        """Initialize matcher with optional custom weights."""
        self.criteria = criteria
        self.tier_config = tier_config
        self.weights = weights or self.WEIGHTS.copy()

    def score_and_filter(
        self,
        candidates: Iterable[ListingCandidate],
        user_location: Optional[LocationSample] = None,
        now: Optional[datetime] = None,
    ) -> list[ScoredListing]:
        """
        Filter, score and order listings.

        Args:
            candidates: Listings from the hot-zone / dwell-area check
            user_location: Where the user is (None = neutral location score)
            now: Reference time for recency (defaults to current time)

        Returns:
            ScoredListing objects at or above the tier's min score, best first
        """
        now = now or datetime.now()
        candidates = list(candidates)

        passed = [c for c in candidates if self.matches_criteria(c)]
        scored = [self.score(c, user_location, now) for c in passed]
        kept = [s for s in scored if s.score >= self.tier_config.min_match_score]

        kept.sort(key=_sort_key)

        logger.info(f"Matched {len(kept)}/{len(candidates)} listings "
                    f"({len(candidates) - len(passed)} failed criteria, "
                    f"{len(passed) - len(kept)} below score {self.tier_config.min_match_score})")
        return kept

    # =========================================================================
    # HARD FILTER
    # =========================================================================

    def matches_criteria(self, listing: ListingCandidate) -> bool:
        """Check the hard filters: price, bedrooms, property type, keywords."""
        criteria = self.criteria

        price = listing.price or 0
        price_min = criteria.price_min or 0
        price_max = criteria.price_max if criteria.price_max is not None else math.inf
        if price < price_min or price > price_max:
            return False

        if criteria.bedrooms and listing.bedrooms is not None:
            if listing.bedrooms != criteria.bedrooms:
                return False

        if criteria.property_types and listing.property_type:
            if listing.property_type not in criteria.property_types:
                return False

        if criteria.keywords:
            text = f"{listing.title} {listing.description}".lower()
            if not any(keyword.lower() in text for keyword in criteria.keywords):
                return False

        return True

    # =========================================================================
    # SCORING
    # =========================================================================

    def score(
        self,
        listing: ListingCandidate,
        user_location: Optional[LocationSample],
        now: datetime,
    ) -> ScoredListing:
        """Compute the composite match score for one listing."""
        reasons: list[str] = []

        price_score = self._score_price(listing, reasons)
        bedroom_score = self._score_bedrooms(listing, reasons)
        location_score = self._score_location(listing, user_location, reasons)
        recency_score = self._score_recency(listing, now, reasons)
        engagement_score = self._score_engagement(listing)

        total = (
            self.weights["price"] * price_score +
            self.weights["bedrooms"] * bedroom_score +
            self.weights["location"] * location_score +
            self.weights["recency"] * recency_score +
            self.weights["engagement"] * engagement_score
        ) / 100

        return ScoredListing(
            listing=listing,
            score=max(0, min(100, round_half_up(total))),
            price_score=price_score,
            bedroom_score=bedroom_score,
            location_score=location_score,
            recency_score=recency_score,
            engagement_score=engagement_score,
            match_reasons=reasons,
        )

    def _score_price(self, listing: ListingCandidate, reasons: list) -> float:
        """100 at the midpoint of the price range, 0 at either bound."""
        price_min = self.criteria.price_min or 0
        price_max = self.criteria.price_max
        if price_max is None or math.isinf(price_max):
            return NEUTRAL_SCORE

        price = listing.price or 0
        half_range = (price_max - price_min) / 2
        midpoint = price_min + half_range
        deviation = abs(price - midpoint)

        if half_range <= 0:
            score = 100.0 if deviation == 0 else 0.0
        else:
            score = max(0.0, 100 - (deviation / half_range) * 100)

        if score >= 75:
            reasons.append(f"Price {price:,.0f} close to the middle of your range")
        return score

    def _score_bedrooms(self, listing: ListingCandidate, reasons: list) -> float:
        """100 for an exact bedroom match, 50 otherwise."""
        if self.criteria.bedrooms and listing.bedrooms is not None:
            if listing.bedrooms == self.criteria.bedrooms:
                reasons.append(f"{listing.bedrooms} bedrooms")
                return 100.0
        return NEUTRAL_SCORE

    def _score_location(
        self,
        listing: ListingCandidate,
        user_location: Optional[LocationSample],
        reasons: list
    ) -> float:
        """Linear decay from 100 at the user to 0 at the tier radius."""
        if user_location is None or not listing.has_coordinates:
            return NEUTRAL_SCORE

        distance = haversine_m(
            user_location.latitude, user_location.longitude,
            listing.latitude, listing.longitude
        )
        score = max(0.0, 100 - (distance / self.tier_config.radius_meters) * 100)
        reasons.append(f"{distance:,.0f}m away")
        return score

    def _score_recency(self, listing: ListingCandidate, now: datetime, reasons: list) -> float:
        """Step function on listing age."""
        if listing.listing_date is None:
            return NEUTRAL_SCORE

        age_days = (now - listing.listing_date).total_seconds() / 86400
        for max_days, score in RECENCY_STEPS:
            if age_days <= max_days:
                if max_days <= 3:
                    reasons.append("Newly listed")
                return score
        return STALE_RECENCY_SCORE

    def _score_engagement(self, listing: ListingCandidate) -> float:
        """Popularity with other users: base 50, plus views and saves."""
        score = NEUTRAL_SCORE
        score += min(30.0, listing.view_count / 10)
        score += min(20.0, listing.saved_count * 5)
        return min(100.0, score)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def is_within_radius(self, listing: ListingCandidate, user_location: Optional[LocationSample]) -> bool:
        """Check whether a listing lies within the tier's alert radius."""
        if user_location is None or not listing.has_coordinates:
            return False
        distance = haversine_m(
            user_location.latitude, user_location.longitude,
            listing.latitude, listing.longitude
        )
        return distance <= self.tier_config.radius_meters


def _sort_key(result: ScoredListing):
    """Score desc, then newer listing first, then id for a total order."""
    listed = result.listing.listing_date
    recency = -listed.timestamp() if listed else math.inf
    return (-result.score, recency, result.listing.id)


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def score_and_filter(
    candidates: Iterable[ListingCandidate],
    criteria: UserCriteria,
    tier_config: SubscriptionTierConfig,
    user_location: Optional[LocationSample] = None,
    now: Optional[datetime] = None,
) -> list[ScoredListing]:
    """
    Convenience function to filter and score listings.

    Args:
        candidates: Listings to evaluate
        criteria: The user's search filters
        tier_config: Subscription tier (radius and min score)
        user_location: Current user location
        now: Reference time for recency

    Returns:
        Ordered list of ScoredListing objects
    """
    matcher = ListingMatcher(criteria, tier_config)
    return matcher.score_and_filter(candidates, user_location, now)
