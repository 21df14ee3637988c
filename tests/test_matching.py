import pytest
from datetime import datetime, timedelta

from listing_alerts.config import TIER_CONFIGS
from listing_alerts.matching import ListingMatcher, score_and_filter
from listing_alerts.models import ListingCandidate, LocationSample, UserCriteria

NOW = datetime(2024, 6, 3, 10, 0, 0)
USER = LocationSample(51.5, -0.12, timestamp=NOW)


@pytest.fixture
def criteria():
    return UserCriteria(price_min=200000, price_max=300000, bedrooms=3)


def make_listing(listing_id="1", **kwargs):
    defaults = {
        "price": 250000,
        "bedrooms": 3,
        "latitude": USER.latitude,
        "longitude": USER.longitude,
        "listing_date": NOW - timedelta(hours=2),
    }
    defaults.update(kwargs)
    return ListingCandidate(id=listing_id, **defaults)


def test_price_midpoint_scores_full_marks(criteria):
    matcher = ListingMatcher(criteria, TIER_CONFIGS["prospector"])
    result = matcher.score(make_listing(price=250000), USER, NOW)

    assert result.price_score == 100
    assert result.bedroom_score == 100
    assert result.location_score == 100
    assert result.recency_score == 100
    assert result.engagement_score == 50
    # (30*100 + 25*100 + 20*100 + 15*100 + 10*50) / 100
    assert result.score == 95


def test_price_score_decays_to_bounds(criteria):
    matcher = ListingMatcher(criteria, TIER_CONFIGS["prospector"])
    assert matcher.score(make_listing(price=275000), USER, NOW).price_score == 50
    assert matcher.score(make_listing(price=300000), USER, NOW).price_score == 0


def test_open_price_range_is_neutral():
    matcher = ListingMatcher(UserCriteria(), TIER_CONFIGS["prospector"])
    assert matcher.score(make_listing(), USER, NOW).price_score == 50


def test_missing_inputs_score_neutral(criteria):
    matcher = ListingMatcher(criteria, TIER_CONFIGS["prospector"])
    listing = make_listing(latitude=None, longitude=None, listing_date=None)
    result = matcher.score(listing, None, NOW)

    assert result.location_score == 50
    assert result.recency_score == 50


def test_location_decays_over_tier_radius(criteria):
    matcher = ListingMatcher(criteria, TIER_CONFIGS["prospector"])
    # ~2.5 km north on a 5 km radius
    result = matcher.score(make_listing(latitude=51.5 + 0.0225), USER, NOW)
    assert result.location_score == pytest.approx(50, abs=1)


@pytest.mark.parametrize("age_days,expected", [
    (0.5, 100), (2, 90), (5, 80), (10, 60), (20, 40), (45, 20),
])
def test_recency_steps(criteria, age_days, expected):
    matcher = ListingMatcher(criteria, TIER_CONFIGS["prospector"])
    listing = make_listing(listing_date=NOW - timedelta(days=age_days))
    assert matcher.score(listing, USER, NOW).recency_score == expected


def test_engagement_is_capped():
    matcher = ListingMatcher(UserCriteria(), TIER_CONFIGS["prospector"])
    listing = make_listing(view_count=1000, saved_count=50)
    assert matcher.score(listing, USER, NOW).engagement_score == 100


def test_hard_filters(criteria):
    matcher = ListingMatcher(criteria, TIER_CONFIGS["developer"])
    assert matcher.matches_criteria(make_listing())
    assert not matcher.matches_criteria(make_listing(price=350000))
    assert not matcher.matches_criteria(make_listing(price=150000))
    assert not matcher.matches_criteria(make_listing(bedrooms=2))
    # Unknown bedroom count is not a mismatch
    assert matcher.matches_criteria(make_listing(bedrooms=None))


def test_property_type_and_keywords():
    criteria = UserCriteria(property_types=["Flat"], keywords=["garden", "parking"])
    matcher = ListingMatcher(criteria, TIER_CONFIGS["developer"])

    assert matcher.matches_criteria(make_listing(property_type="Flat", title="Flat with Garden"))
    assert matcher.matches_criteria(make_listing(property_type="Flat", title="PARKING included"))
    assert not matcher.matches_criteria(make_listing(property_type="Detached", title="garden"))
    assert not matcher.matches_criteria(make_listing(property_type="Flat", title="Top floor flat"))


def test_property_type_must_match_exactly():
    matcher = ListingMatcher(UserCriteria(property_types=["Flat"]), TIER_CONFIGS["developer"])

    assert not matcher.matches_criteria(make_listing(property_type="flat"))
    assert not matcher.matches_criteria(make_listing(property_type="FLAT"))
    # Listings without a type are not filtered out
    assert matcher.matches_criteria(make_listing(property_type=None))


def test_below_min_score_is_dropped(criteria):
    # Prospector needs 75; far, stale and off-midpoint falls short
    weak = make_listing("weak", price=295000, latitude=51.54, listing_date=NOW - timedelta(days=60))
    strong = make_listing("strong")

    results = score_and_filter([weak, strong], criteria, TIER_CONFIGS["prospector"], USER, NOW)
    assert [r.listing.id for r in results] == ["strong"]


def test_results_sorted_by_score_then_recency(criteria):
    older = make_listing("older", listing_date=NOW - timedelta(hours=20))
    newer = make_listing("newer", listing_date=NOW - timedelta(hours=1))
    lower = make_listing("lower", price=270000)

    results = score_and_filter([older, lower, newer], criteria, TIER_CONFIGS["developer"], USER, NOW)

    assert [r.listing.id for r in results] == ["newer", "older", "lower"]
    assert all(0 <= r.score <= 100 for r in results)


def test_scoring_is_deterministic(criteria):
    listings = [make_listing(str(i), price=210000 + i * 10000) for i in range(8)]
    first = score_and_filter(listings, criteria, TIER_CONFIGS["investor"], USER, NOW)
    second = score_and_filter(list(reversed(listings)), criteria, TIER_CONFIGS["investor"], USER, NOW)

    assert [(r.listing.id, r.score) for r in first] == [(r.listing.id, r.score) for r in second]


def test_within_radius(criteria):
    matcher = ListingMatcher(criteria, TIER_CONFIGS["prospector"])
    assert matcher.is_within_radius(make_listing(), USER)
    assert not matcher.is_within_radius(make_listing(latitude=51.6), USER)
    assert not matcher.is_within_radius(make_listing(latitude=None), USER)
