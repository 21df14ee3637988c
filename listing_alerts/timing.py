"""
Adaptive Timing Scheduler for Listing Alerts.

Picks a delivery strategy for each allowed notification and manages the
cancellable delivery timers:

- immediate    best match > 90, or a price drop
- batch        app in the foreground, or more than 3 listings (1 hour)
- dwell        dwell-triggered alerts (3 minutes)
- smart_delay  everything else: 2-5 minutes, shaped by the user's
               preferred hours, engagement ratio, match quality and
               whether the app was just opened

Timers are keyed by notification id; scheduling an id that already has a
pending timer replaces it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from .config import TimingConfig, get_timing_config
from .engagement import EARLIEST_HOUR, LATEST_HOUR, EngagementTracker
from .models import (
    InteractionAction,
    PreferredTimeWindow,
    TimingStrategy,
    TriggerType,
)
from .timers import TimerRegistry

logger = logging.getLogger(__name__)

BATCH_LISTING_COUNT = 3

# Smart delay multipliers
OUTSIDE_PREFERRED_HOURS = 1.5
LOW_ENGAGEMENT = 1.3
HIGH_ENGAGEMENT = 0.8
HIGH_QUALITY = 0.7
LOW_QUALITY = 1.2


@dataclass
class DeliveryContext:
    """What the scheduler knows about a notification about to be delivered."""
    trigger_type: TriggerType
    listing_count: int
    best_match_score: float
    is_app_active: bool = False
    recent_app_open: bool = False

    def to_dict(self) -> dict:
        return {
            "trigger_type": self.trigger_type.value,
            "listing_count": self.listing_count,
            "best_match_score": self.best_match_score,
            "is_app_active": self.is_app_active,
            "recent_app_open": self.recent_app_open,
        }


@dataclass
class ScheduleResult:
    """Where a scheduled notification ended up."""
    notification_id: str
    strategy: TimingStrategy
    delay_seconds: float
    scheduled_for: datetime


DeliveryCallback = Callable[[str, DeliveryContext], None]


class TimingScheduler:
    """
    Chooses when to deliver and owns the delivery timers.

    Usage:
        timing = TimingScheduler(timers, engagement)
        timing.schedule("hot_zone_ab12", context, deliver)
        timing.cancel("hot_zone_ab12")
    """

    def __init__(
        self,
        timers: TimerRegistry,
        engagement: EngagementTracker,
        config: Optional[TimingConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.timers = timers
        self.engagement = engagement
        self.config = config or get_timing_config()
        self.clock = clock

    # =========================================================================
    # STRATEGY
    # =========================================================================

    def determine_strategy(self, context: DeliveryContext) -> TimingStrategy:
        """Pick the timing strategy for a delivery context."""
        if (context.best_match_score > self.config.immediate_score_threshold or
                context.trigger_type == TriggerType.PRICE_DROP):
            return TimingStrategy.IMMEDIATE

        if context.is_app_active or context.listing_count > BATCH_LISTING_COUNT:
            return TimingStrategy.BATCH

        if context.trigger_type == TriggerType.DWELL:
            return TimingStrategy.DWELL

        return TimingStrategy.SMART_DELAY

    def calculate_delay(self, context: DeliveryContext) -> float:
        """Delay in seconds before the notification should be delivered."""
        strategy = self.determine_strategy(context)

        if strategy == TimingStrategy.IMMEDIATE:
            return 0.0
        if strategy == TimingStrategy.BATCH:
            return self.config.batch_delay_seconds
        if strategy == TimingStrategy.DWELL:
            return self.config.dwell_delay_seconds

        return self._smart_delay(context)

    def _smart_delay(self, context: DeliveryContext) -> float:
        min_delay = self.config.smart_min_delay_seconds
        max_delay = self.config.smart_max_delay_seconds
        delay = min_delay

        # Time of day
        if not self.engagement.is_in_preferred_window(self.clock().hour):
            delay *= OUTSIDE_PREFERRED_HOURS

        # How the user responds to notifications in general
        ratio = self.engagement.engagement_ratio()
        if ratio < 0.3:
            delay *= LOW_ENGAGEMENT
        elif ratio > 0.7:
            delay *= HIGH_ENGAGEMENT

        # Match quality
        if context.best_match_score > 85:
            delay *= HIGH_QUALITY
        elif context.best_match_score < 70:
            delay *= LOW_QUALITY

        # Give a user who just opened the app time to explore
        if context.recent_app_open:
            delay += self.config.recent_app_open_offset_seconds

        return min(max(delay, min_delay), max_delay)

    # =========================================================================
    # TIMERS
    # =========================================================================

    def schedule(
        self,
        notification_id: str,
        context: DeliveryContext,
        callback: DeliveryCallback,
    ) -> ScheduleResult:
        """
        Schedule delivery, replacing any pending timer for the same id.

        The callback receives (notification_id, context) once the delay
        elapses; with a zero delay it runs before this method returns.
        """
        strategy = self.determine_strategy(context)
        delay = self.calculate_delay(context)
        now = self.clock()

        if delay <= 0:
            self.timers.cancel(notification_id)
            logger.info(f"Delivering {notification_id} immediately ({strategy.value})")
            callback(notification_id, context)
        else:
            self.timers.arm(notification_id, delay, callback, notification_id, context)
            logger.info(f"Scheduled {notification_id} with {delay:.0f}s delay ({strategy.value})")

        return ScheduleResult(
            notification_id=notification_id,
            strategy=strategy,
            delay_seconds=delay,
            scheduled_for=now + timedelta(seconds=delay),
        )

    def cancel(self, notification_id: str) -> bool:
        """Cancel a pending delivery without firing it."""
        return self.timers.cancel(notification_id)

    def is_pending(self, notification_id: str) -> bool:
        return self.timers.is_armed(notification_id)

    def pending_ids(self) -> list[str]:
        return self.timers.pending_keys()

    def shutdown(self) -> int:
        """Cancel every pending delivery."""
        cancelled = self.timers.cancel_all()
        if cancelled:
            logger.info(f"Cancelled {cancelled} pending deliveries")
        return cancelled

    # =========================================================================
    # ENGAGEMENT MODEL
    # =========================================================================

    def record_user_engagement(self, trigger_type: str, action: str) -> None:
        """Feed an engagement event into the preferred-hours model."""
        self.engagement.record_engagement(trigger_type, action, self.clock())

    def record_interaction(self, notification_id: int, action: InteractionAction) -> None:
        """Count an interaction towards the engagement ratio."""
        self.engagement.count_interaction(action)
        logger.debug(f"Timing model saw {action.value} for {notification_id}")

    def update_preferences(self, windows: list[PreferredTimeWindow]) -> None:
        self.engagement.set_preferred_windows(windows)

    def is_good_time_to_send(self) -> bool:
        """Inside a preferred window and not too early or late."""
        hour = self.clock().hour
        if hour < EARLIEST_HOUR or hour > LATEST_HOUR:
            return False
        return self.engagement.is_in_preferred_window(hour)

    def get_next_optimal_time(self) -> datetime:
        """Start of the next preferred window (today or tomorrow)."""
        now = self.clock()
        windows = sorted(self.engagement.profile.preferred_time_windows, key=lambda w: w.start)
        if not windows:
            return now

        for window in windows:
            if now.hour < window.start:
                return now.replace(hour=window.start, minute=0, second=0, microsecond=0)

        tomorrow = now + timedelta(days=1)
        return tomorrow.replace(hour=windows[0].start, minute=0, second=0, microsecond=0)

    def get_user_insights(self) -> dict:
        profile = self.engagement.profile
        ratio = self.engagement.engagement_ratio()
        return {
            "engagement_rate": round(ratio * 100),
            "total_engaged": profile.engaged_total,
            "total_ignored": profile.ignored_total,
            "preferred_times": [w.to_dict() for w in profile.preferred_time_windows],
            "active_timers": len(self.pending_ids()),
        }
