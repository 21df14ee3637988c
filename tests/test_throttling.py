import pytest
from datetime import timedelta

from listing_alerts.config import TIER_CONFIGS
from listing_alerts.engagement import EngagementTracker
from listing_alerts.models import InteractionAction, TriggerType
from listing_alerts.store import NotificationStore
from listing_alerts.throttling import DenyReason, NotificationThrottler


def make_throttler(tier, kv_store, clock):
    engagement = EngagementTracker(kv_store)
    history = NotificationStore(kv_store, key=NotificationThrottler.HISTORY_KEY, clock=clock)
    return NotificationThrottler(TIER_CONFIGS[tier], engagement, history, clock)


@pytest.fixture
def throttler(kv_store, clock):
    return make_throttler("prospector", kv_store, clock)


def test_fresh_user_may_send(throttler):
    decision = throttler.can_send()
    assert decision.allowed
    assert decision.reason is None


def test_daily_cap_on_sixth_trigger(throttler, clock):
    clock.now = clock.now.replace(hour=8, minute=0)
    decisions = []
    for _ in range(6):
        decision = throttler.can_send()
        decisions.append(decision)
        if decision.allowed:
            throttler.record_sent(["listing-1"], TriggerType.HOT_ZONE)
        # Past cooldown and never more than 2 in an hour
        clock.advance(minutes=31)

    assert [d.allowed for d in decisions] == [True] * 5 + [False]
    assert decisions[-1].reason == DenyReason.DAILY_LIMIT_EXCEEDED
    assert throttler.get_today_count() == 5


def test_daily_count_resets_at_midnight(throttler, clock):
    clock.now = clock.now.replace(hour=23, minute=50)
    throttler.record_sent(["a"])
    assert throttler.get_today_count() == 1

    clock.advance(minutes=20)
    assert throttler.get_today_count() == 0


def test_hourly_cap(kv_store, clock):
    throttler = make_throttler("investor", kv_store, clock)
    for _ in range(5):
        assert throttler.can_send().allowed
        throttler.record_sent(["a"])
        clock.advance(minutes=6)

    decision = throttler.can_send()
    assert decision.reason == DenyReason.HOURLY_LIMIT_EXCEEDED


def test_cooldown(throttler, clock):
    throttler.record_sent(["a"])
    clock.advance(minutes=10)
    assert throttler.can_send().reason == DenyReason.COOLDOWN_ACTIVE

    clock.advance(minutes=5)
    assert throttler.can_send().allowed


def test_recent_listing_view_holds_notifications(throttler, clock):
    throttler.record_listing_view()
    clock.advance(minutes=30)
    assert throttler.can_send().reason == DenyReason.RECENT_LISTING_VIEW

    clock.advance(minutes=31)
    assert throttler.can_send().allowed


def test_low_engagement_doubles_cooldown(throttler, clock):
    throttler.engagement.profile.engagement_score = 45
    throttler.record_sent(["a"])

    clock.advance(minutes=20)
    assert throttler.can_send().reason == DenyReason.LOW_ENGAGEMENT_COOLDOWN

    clock.advance(minutes=11)
    assert throttler.can_send().allowed


def test_app_active_is_checked_last(throttler, clock):
    assert throttler.can_send(is_app_active=True).reason == DenyReason.APP_ACTIVE

    throttler.record_sent(["a"])
    assert throttler.can_send(is_app_active=True).reason == DenyReason.COOLDOWN_ACTIVE


def test_checks_short_circuit_in_order(kv_store, clock):
    throttler = make_throttler("prospector", kv_store, clock)
    throttler.record_listing_view()
    throttler.record_sent(["a"])
    throttler.record_sent(["b"])

    # Hourly limit, cooldown and listing view all fail; hourly wins
    assert throttler.can_send().reason == DenyReason.HOURLY_LIMIT_EXCEEDED


def test_ignored_notifications_lower_score(throttler, clock):
    records = []
    for _ in range(3):
        records.append(throttler.record_sent(["a"]))
        clock.advance(minutes=1)

    for record in records:
        assert throttler.record_interaction(record.id, InteractionAction.IGNORED)

    assert throttler.engagement.engagement_score == 85
    assert throttler.engagement.ignored_count == 3


def test_tap_resets_ignored_streak(throttler):
    record = throttler.record_sent(["a"])
    throttler.record_interaction(record.id, InteractionAction.DISMISSED)
    throttler.record_interaction(record.id, InteractionAction.TAPPED)

    assert throttler.engagement.ignored_count == 0
    assert throttler.engagement.engagement_score == 100


def test_score_stays_in_bounds(throttler):
    record = throttler.record_sent(["a"])
    for _ in range(30):
        throttler.record_interaction(record.id, InteractionAction.IGNORED)
    assert throttler.engagement.engagement_score == 0


def test_interaction_for_unknown_notification(throttler):
    assert not throttler.record_interaction(12345, InteractionAction.TAPPED)
    assert throttler.engagement.engagement_score == 100


def test_counts_only_change_through_record_sent(throttler, clock):
    throttler.record_sent(["a"])
    throttler.can_send()
    throttler.can_send(is_app_active=True)
    assert throttler.get_today_count() == 1
    assert throttler.get_hour_count() == 1


def test_history_survives_restart(kv_store, clock):
    first = make_throttler("prospector", kv_store, clock)
    first.record_sent(["a"])

    second = make_throttler("prospector", kv_store, clock)
    second.history.load()
    assert second.get_today_count() == 1
    clock.advance(minutes=5)
    assert second.can_send().reason == DenyReason.COOLDOWN_ACTIVE


def test_next_available_time(throttler, clock):
    assert throttler.get_next_available_time() == clock()

    sent_at = clock()
    throttler.record_sent(["a"])
    assert throttler.get_next_available_time() == sent_at + timedelta(minutes=15)


def test_update_tier_unknown_falls_back(throttler):
    assert throttler.update_tier("investor").name == "investor"
    assert throttler.update_tier("platinum").name == "prospector"


def test_stats(throttler):
    throttler.record_sent(["a"])
    stats = throttler.get_stats()
    assert stats["tier"] == "prospector"
    assert stats["today_count"] == 1
    assert stats["daily_limit"] == 5
    assert stats["engagement_score"] == 100
