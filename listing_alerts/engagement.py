"""
Engagement tracking for Listing Alerts.

Owns the user's EngagementProfile, which is shared by the throttling policy
(engagement score, ignored streak, last listing view) and the timing
scheduler (engaged/ignored totals, preferred hours). The profile is
persisted after every change and reloaded at startup.
"""

import logging
import threading
from collections import Counter
from datetime import datetime
from typing import Optional

from .models import (
    EngagementEvent,
    EngagementProfile,
    InteractionAction,
    PreferredTimeWindow,
)
from .storage import KeyValueStore, load_json, save_json

logger = logging.getLogger(__name__)

PROFILE_KEY = "engagement_profile"

MAX_HISTORY = 100
MIN_HISTORY_FOR_PREFERENCES = 10
TOP_HOURS = 3
EARLIEST_HOUR = 7
LATEST_HOUR = 22

TAP_REWARD = 10
IGNORE_PENALTY = 5


class EngagementTracker:
    """
    Reads and updates the engagement profile.

    Usage:
        tracker = EngagementTracker(store)
        tracker.load()
        tracker.apply_interaction(InteractionAction.TAPPED)
    """

    def __init__(self, store: Optional[KeyValueStore] = None, lock: Optional[threading.RLock] = None):
        self.store = store
        self.profile = EngagementProfile()
        self._lock = lock or threading.RLock()

    def load(self) -> EngagementProfile:
        """Load the persisted profile, keeping defaults if none is stored."""
        if self.store is None:
            return self.profile
        data = load_json(self.store, PROFILE_KEY)
        if isinstance(data, dict):
            try:
                self.profile = EngagementProfile.from_dict(data)
                logger.info(f"Loaded engagement profile (score {self.profile.engagement_score}, "
                            f"{len(self.profile.engagement_history)} history entries)")
            except (TypeError, ValueError) as e:
                logger.warning(f"Ignoring malformed engagement profile: {e}")
        return self.profile

    def save(self) -> bool:
        if self.store is None:
            return True
        return save_json(self.store, PROFILE_KEY, self.profile.to_dict())

    # =========================================================================
    # SCORE (throttling side)
    # =========================================================================

    @property
    def engagement_score(self) -> int:
        return self.profile.engagement_score

    @property
    def ignored_count(self) -> int:
        return self.profile.ignored_count

    def apply_interaction(self, action: InteractionAction) -> int:
        """
        Adjust the engagement score for one interaction.

        tapped: +10 (max 100), resets the ignored streak.
        dismissed / ignored: -5 (min 0), extends the ignored streak.

        Returns:
            The new engagement score
        """
        with self._lock:
            profile = self.profile
            if action == InteractionAction.TAPPED:
                profile.engagement_score = min(100, profile.engagement_score + TAP_REWARD)
                profile.ignored_count = 0
            else:
                profile.engagement_score = max(0, profile.engagement_score - IGNORE_PENALTY)
                profile.ignored_count += 1
            self.save()
            return profile.engagement_score

    def reset_score(self) -> None:
        with self._lock:
            self.profile.engagement_score = 100
            self.profile.ignored_count = 0
            self.save()

    def record_listing_view(self, when: datetime) -> None:
        with self._lock:
            self.profile.last_listing_view_at = when
            self.save()

    def record_app_open(self, when: datetime) -> None:
        with self._lock:
            self.profile.last_app_open_at = when
            self.save()

    # =========================================================================
    # TIMING SIDE
    # =========================================================================

    def count_interaction(self, action: InteractionAction) -> None:
        """Update the engaged/ignored totals behind the engagement ratio."""
        with self._lock:
            if action == InteractionAction.TAPPED:
                self.profile.engaged_total += 1
            else:
                self.profile.ignored_total += 1
            self.save()

    def engagement_ratio(self) -> float:
        """engaged / (engaged + ignored); 0.0 before any interaction."""
        total = self.profile.engaged_total + self.profile.ignored_total
        return self.profile.engaged_total / max(1, total)

    def record_engagement(self, trigger_type: str, action: str, when: datetime) -> None:
        """Append to the engagement history and refresh preferred hours."""
        with self._lock:
            history = self.profile.engagement_history
            history.append(EngagementEvent(
                timestamp=when,
                hour=when.hour,
                trigger_type=trigger_type,
                action=action,
            ))
            if len(history) > MAX_HISTORY:
                del history[:-MAX_HISTORY]

            self._update_preferred_times()
            self.save()
            logger.info(f"Recorded {action} engagement for {trigger_type} at {when.hour}:00")

    def _update_preferred_times(self) -> None:
        """Derive preferred windows around the top engagement hours."""
        history = self.profile.engagement_history
        if len(history) < MIN_HISTORY_FOR_PREFERENCES:
            return

        counts = Counter(event.hour for event in history)
        # Most frequent first, earlier hour first on ties
        top = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:TOP_HOURS]

        self.profile.preferred_time_windows = [
            PreferredTimeWindow(
                start=max(EARLIEST_HOUR, hour - 1),
                end=min(LATEST_HOUR, hour + 1),
                strength=count / len(history),
            )
            for hour, count in top
        ]
        logger.debug(f"Updated preferred times: {[w.to_dict() for w in self.profile.preferred_time_windows]}")

    def set_preferred_windows(self, windows: list[PreferredTimeWindow]) -> None:
        with self._lock:
            self.profile.preferred_time_windows = list(windows)
            self.save()

    def is_in_preferred_window(self, hour: int) -> bool:
        return any(window.contains(hour) for window in self.profile.preferred_time_windows)
