"""
Notification Throttling Policy for Listing Alerts.

Decides whether a notification may be sent right now. Checks run in a
fixed order and the first failing one short-circuits:

1. daily_limit_exceeded     records since local midnight >= max_per_day
2. hourly_limit_exceeded    records in the last hour >= max_per_hour
3. cooldown_active          last record younger than min_cooldown_minutes
4. recent_listing_view      user viewed a listing within context_delay_minutes
5. low_engagement_cooldown  engagement score < 50 doubles the cooldown
6. app_active               the app is in the foreground

All counts are read from the sent log at decision time. Appending a record
through record_sent() is the only way those counts change.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Iterable, Optional

from .config import get_tier_config
from .engagement import EngagementTracker
from .models import (
    Interaction,
    InteractionAction,
    NotificationRecord,
    SubscriptionTierConfig,
    TriggerType,
)
from .store import NotificationStore

logger = logging.getLogger(__name__)

LOW_ENGAGEMENT_THRESHOLD = 50
LOW_ENGAGEMENT_COOLDOWN_FACTOR = 2


class DenyReason(str, Enum):
    """Why a notification was not allowed."""
    DAILY_LIMIT_EXCEEDED = "daily_limit_exceeded"
    HOURLY_LIMIT_EXCEEDED = "hourly_limit_exceeded"
    COOLDOWN_ACTIVE = "cooldown_active"
    RECENT_LISTING_VIEW = "recent_listing_view"
    LOW_ENGAGEMENT_COOLDOWN = "low_engagement_cooldown"
    APP_ACTIVE = "app_active"


@dataclass
class ThrottleDecision:
    """Result of a can_send() check."""
    allowed: bool
    reason: Optional[DenyReason] = None

    def to_dict(self) -> dict:
        data = {"allowed": self.allowed}
        if self.reason:
            data["reason"] = self.reason.value
        return data


class NotificationThrottler:
    """
    Stateful rate limiter combining tier limits, cooldowns and engagement.

    Usage:
        throttler = NotificationThrottler(tier_config, engagement, history)
        decision = throttler.can_send(is_app_active=False)
        if decision.allowed:
            throttler.record_sent(listing_ids, TriggerType.HOT_ZONE)
    """

    HISTORY_KEY = "notification_history"

    def __init__(
        self,
        tier_config: SubscriptionTierConfig,
        engagement: EngagementTracker,
        history: NotificationStore,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.tier_config = tier_config
        self.engagement = engagement
        self.history = history
        self.clock = clock

    # =========================================================================
    # DECISION
    # =========================================================================

    def can_send(self, is_app_active: bool = False) -> ThrottleDecision:
        """
        Check every throttle rule against the current sent log.

        Args:
            is_app_active: Whether the app is currently in the foreground

        Returns:
            ThrottleDecision with the first failing reason, if any
        """
        limits = self.tier_config
        now = self.clock()

        if self.history.count_since(self._start_of_day(now)) >= limits.max_per_day:
            return self._deny(DenyReason.DAILY_LIMIT_EXCEEDED)

        if self.history.count_since(now - timedelta(hours=1)) >= limits.max_per_hour:
            return self._deny(DenyReason.HOURLY_LIMIT_EXCEEDED)

        cooldown = timedelta(minutes=limits.min_cooldown_minutes)
        since_last = self._time_since_last(now)
        if since_last is not None and since_last < cooldown:
            return self._deny(DenyReason.COOLDOWN_ACTIVE)

        last_view = self.engagement.profile.last_listing_view_at
        if last_view is not None:
            if now - last_view < timedelta(minutes=limits.context_delay_minutes):
                return self._deny(DenyReason.RECENT_LISTING_VIEW)

        if self.engagement.engagement_score < LOW_ENGAGEMENT_THRESHOLD:
            adjusted = cooldown * LOW_ENGAGEMENT_COOLDOWN_FACTOR
            if since_last is not None and since_last < adjusted:
                return self._deny(DenyReason.LOW_ENGAGEMENT_COOLDOWN)

        if is_app_active:
            return self._deny(DenyReason.APP_ACTIVE)

        return ThrottleDecision(allowed=True)

    def _deny(self, reason: DenyReason) -> ThrottleDecision:
        logger.info(f"Notification throttled: {reason.value}")
        return ThrottleDecision(allowed=False, reason=reason)

    @staticmethod
    def _start_of_day(now: datetime) -> datetime:
        return now.replace(hour=0, minute=0, second=0, microsecond=0)

    def _time_since_last(self, now: datetime) -> Optional[timedelta]:
        last = self.history.latest()
        if last is None:
            return None
        return now - last.timestamp

    # =========================================================================
    # RECORDING
    # =========================================================================

    def record_sent(
        self,
        listing_ids: Iterable[str],
        trigger_type: TriggerType = TriggerType.HOT_ZONE,
        title: str = "",
        body: str = "",
    ) -> NotificationRecord:
        """
        Append a delivered notification to the sent log.

        Returns:
            The new NotificationRecord
        """
        record = NotificationRecord(
            id=self.history.next_id(),
            timestamp=self.clock(),
            trigger_type=trigger_type,
            listing_ids=[str(i) for i in listing_ids],
            tier=self.tier_config.name,
            title=title,
            body=body,
        )
        self.history.save(record)
        logger.info(f"Recorded {trigger_type.value} notification {record.id} "
                    f"({len(record.listing_ids)} listings)")
        return record

    def record_interaction(self, notification_id: int, action: InteractionAction) -> bool:
        """
        Record how the user responded to a notification.

        Returns:
            True if the notification was found in the sent log
        """
        interaction = Interaction(action=action, timestamp=self.clock())
        record = self.history.set_interaction(notification_id, interaction)
        if record is None:
            logger.warning(f"Interaction for unknown notification {notification_id}")
            return False

        score = self.engagement.apply_interaction(action)
        logger.info(f"Notification {notification_id} {action.value}; engagement score now {score}")
        return True

    def record_listing_view(self) -> None:
        """Note that the user is actively browsing listings."""
        self.engagement.record_listing_view(self.clock())

    # =========================================================================
    # STATS & TIER
    # =========================================================================

    def get_today_count(self) -> int:
        return self.history.count_since(self._start_of_day(self.clock()))

    def get_hour_count(self) -> int:
        return self.history.count_since(self.clock() - timedelta(hours=1))

    def get_stats(self) -> dict:
        last = self.history.latest()
        limits = self.tier_config.to_dict()
        return {
            "tier": self.tier_config.name,
            "today_count": self.get_today_count(),
            "hour_count": self.get_hour_count(),
            "daily_limit": limits["max_per_day"],
            "hourly_limit": limits["max_per_hour"],
            "ignored_count": self.engagement.ignored_count,
            "engagement_score": self.engagement.engagement_score,
            "last_notification_time": last.timestamp.isoformat() if last else None,
        }

    def get_next_available_time(self) -> datetime:
        """Earliest time at which every time-based rule would pass."""
        limits = self.tier_config
        now = self.clock()
        candidates = [now]

        if self.get_today_count() >= limits.max_per_day:
            candidates.append(self._start_of_day(now) + timedelta(days=1))

        hour_ago = now - timedelta(hours=1)
        recent = [r.timestamp for r in self.history.get_notifications() if r.timestamp >= hour_ago]
        if len(recent) >= limits.max_per_hour:
            # Enough of the window's records must age out to drop below the cap
            recent.sort()
            excess = len(recent) - int(limits.max_per_hour)
            candidates.append(recent[excess] + timedelta(hours=1, microseconds=1))

        last = self.history.latest()
        if last is not None:
            cooldown = timedelta(minutes=limits.min_cooldown_minutes)
            if self.engagement.engagement_score < LOW_ENGAGEMENT_THRESHOLD:
                cooldown *= LOW_ENGAGEMENT_COOLDOWN_FACTOR
            candidates.append(last.timestamp + cooldown)

        last_view = self.engagement.profile.last_listing_view_at
        if last_view is not None:
            candidates.append(last_view + timedelta(minutes=limits.context_delay_minutes))

        return max(candidates)

    def update_tier(self, tier: str) -> SubscriptionTierConfig:
        """Switch tier; unknown tiers fall back to the lowest-privilege tier."""
        self.tier_config = get_tier_config(tier)
        logger.info(f"Throttler tier set to {self.tier_config.name}")
        return self.tier_config

    def reset_engagement_score(self) -> None:
        self.engagement.reset_score()
