"""
Location trigger engine for Listing Alerts.

Orchestrates one user session:

1. Location sample → MovementDetector
2. Significant movement / dwell → hot-zone or dwell-area check (network executor)
3. Candidate listings → ListingMatcher (score and filter)
4. Scored listings → NotificationThrottler (may we send?)
5. Allowed → TimingScheduler (when?) → delivery timer
6. Delivery → re-check throttle, push, record in sent log and inbox
7. UI events (views, reads, interactions) feed back into throttle and timing

Built once per session and handed to collaborators; no module-level state.
All state changes go through a single re-entrant lock, so location
callbacks, timers, network responses and UI events can interleave freely.
Pushes and listing checks run outside that lock; the timer-driven ones
run on the "network" executor.
"""

import hashlib
import itertools
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence, Union
from apscheduler.schedulers.base import BaseScheduler

from .alerts import PushSender, build_notification_content, create_push_sender
from .config import (
    DetectorConfig,
    TimingConfig,
    get_app_config,
    get_tier_config,
)
from .engagement import EngagementTracker
from .listings_api import ListingsClient, ZoneCheckResult
from .matching import ListingMatcher
from .models import (
    InteractionAction,
    ListingCandidate,
    LocationSample,
    MovementState,
    NotificationRecord,
    ScoredListing,
    SubscriptionTierConfig,
    TimingStrategy,
    TriggerType,
    UserCriteria,
)
from .movement import MovementDetector
from .storage import KeyValueStore, create_store
from .store import NotificationStore
from .throttling import NotificationThrottler
from .timers import TimerRegistry
from .timing import DeliveryContext, ScheduleResult, TimingScheduler

logger = logging.getLogger(__name__)

NETWORK_EXECUTOR = "network"


@dataclass
class PendingDelivery:
    """An allowed notification waiting for its delivery timer."""
    trigger_type: TriggerType
    scored: list[ScoredListing]
    location: Optional[LocationSample]
    created_at: datetime


def delivery_key(trigger_type: TriggerType, listing_ids: Sequence[str]) -> str:
    """Stable key for an alert, so a repeat trigger replaces the pending one."""
    digest = hashlib.sha1(",".join(sorted(listing_ids)).encode("utf-8")).hexdigest()
    return f"{trigger_type.value}_{digest[:12]}"


class LocationTriggerEngine:
    """
    The notification decision engine for one user session.

    Usage:
        scheduler = create_scheduler()
        engine = LocationTriggerEngine(create_store(), scheduler, tier="investor")
        engine.start()
        scheduler.start()
        engine.on_location_sample(LocationSample(51.5, -0.12, speed=3.1))
    """

    def __init__(
        self,
        store: KeyValueStore,
        scheduler: BaseScheduler,
        listings: Optional[ListingsClient] = None,
        push: Optional[PushSender] = None,
        tier: Optional[str] = None,
        criteria: Optional[UserCriteria] = None,
        detector_config: Optional[DetectorConfig] = None,
        timing_config: Optional[TimingConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.clock = clock
        self._lock = threading.RLock()
        self._send_lock = threading.Lock()

        self.tier_config: SubscriptionTierConfig = get_tier_config(tier or get_app_config().default_tier)
        self.criteria = criteria or UserCriteria()
        self.listings = listings or ListingsClient()
        self.push = push or create_push_sender()

        self.engagement = EngagementTracker(store, lock=self._lock)
        self.history = NotificationStore(
            store, key=NotificationThrottler.HISTORY_KEY, clock=clock, lock=self._lock
        )
        self.inbox = NotificationStore(store, clock=clock, lock=self._lock)

        self.throttler = NotificationThrottler(self.tier_config, self.engagement, self.history, clock)
        self.timing = TimingScheduler(
            TimerRegistry(scheduler, "delivery", executor=NETWORK_EXECUTOR), self.engagement, timing_config, clock
        )
        self.detector = MovementDetector(
            TimerRegistry(scheduler, "dwell"),
            config=detector_config,
            store=store,
            on_significant_movement=self._on_significant_movement,
            on_dwell=self._on_dwell,
            clock=clock,
            lock=self._lock,
        )
        self._checks = TimerRegistry(scheduler, "check", executor=NETWORK_EXECUTOR)
        self._check_ids = itertools.count(1)

        self._pending: dict[str, PendingDelivery] = {}
        self.is_app_active = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Reload persisted state (engagement, logs, last location)."""
        with self._lock:
            self.engagement.load()
            self.history.load()
            self.inbox.load()
            self.detector.load_state()
        logger.info(f"Engine started for tier {self.tier_config.name}")

    def stop(self) -> None:
        """Cancel the dwell timer and every pending delivery."""
        with self._lock:
            self.detector.stop()
            self.timing.shutdown()
            self._pending.clear()
        logger.info("Engine stopped")

    # =========================================================================
    # LOCATION → CHECKS
    # =========================================================================

    def on_location_sample(self, sample: LocationSample) -> MovementState:
        """Entry point for the location provider's watch callback."""
        return self.detector.on_location_sample(sample)

    @property
    def movement_state(self) -> MovementState:
        return self.detector.state

    def _on_significant_movement(self, sample: LocationSample, previous: Optional[LocationSample]) -> None:
        key = f"hot_zone_{next(self._check_ids)}"
        self._checks.run_soon(key, self._run_hot_zone_check, sample, previous)

    def _on_dwell(self, sample: LocationSample) -> None:
        key = f"dwell_{next(self._check_ids)}"
        self._checks.run_soon(key, self._run_dwell_check, sample)

    def _run_hot_zone_check(self, sample: LocationSample, previous: Optional[LocationSample]) -> None:
        # Network call happens outside the lock
        result = self.listings.check_hot_zone(sample, self.tier_config.radius_meters, previous)
        self.handle_zone_result(result, TriggerType.HOT_ZONE, sample)

    def _run_dwell_check(self, sample: LocationSample) -> None:
        result = self.listings.check_dwell_area(sample, self.tier_config.radius_meters)
        self.handle_zone_result(result, TriggerType.DWELL, sample)

    def handle_zone_result(
        self,
        result: ZoneCheckResult,
        trigger_type: TriggerType,
        location: Optional[LocationSample],
    ) -> Optional[ScheduleResult]:
        """Turn a check response into a scheduled delivery (or nothing)."""
        if not result.should_notify or not result.listings:
            logger.debug(f"{trigger_type.value} check: nothing to notify")
            return None
        return self.process_candidates(result.listings, trigger_type, location)

    def on_price_drop(
        self,
        listings: Sequence[ListingCandidate],
        location: Optional[LocationSample] = None,
    ) -> Optional[ScheduleResult]:
        """Price drops on listings the user viewed; only for tiers with the feature."""
        if not self.tier_config.has_feature("price_drops"):
            logger.info(f"Tier {self.tier_config.name} has no price drop alerts")
            return None
        return self.process_candidates(listings, TriggerType.PRICE_DROP, location or self.detector.last_known)

    # =========================================================================
    # DECISION
    # =========================================================================

    def process_candidates(
        self,
        listings: Sequence[ListingCandidate],
        trigger_type: TriggerType,
        location: Optional[LocationSample],
    ) -> Optional[ScheduleResult]:
        """
        Score, throttle and schedule one batch of candidate listings.

        Returns:
            ScheduleResult if a delivery was scheduled, None otherwise
        """
        with self._lock:
            now = self.clock()
            matcher = ListingMatcher(self.criteria, self.tier_config)
            scored = matcher.score_and_filter(listings, location, now)
            if not scored:
                logger.info(f"{trigger_type.value}: no listings passed matching")
                return None

            decision = self.throttler.can_send(self.is_app_active)
            if not decision.allowed:
                return None

            key = delivery_key(trigger_type, [s.listing.id for s in scored])
            self._pending[key] = PendingDelivery(
                trigger_type=trigger_type,
                scored=scored,
                location=location,
                created_at=now,
            )
            context = self._delivery_context(trigger_type, scored)

        # An immediate delivery pushes before schedule() returns
        return self.timing.schedule(key, context, self._deliver)

    def _delivery_context(self, trigger_type: TriggerType, scored: list[ScoredListing]) -> DeliveryContext:
        last_open = self.engagement.profile.last_app_open_at
        window = timedelta(minutes=self.timing.config.recent_app_open_minutes)
        recent_open = last_open is not None and self.clock() - last_open < window
        return DeliveryContext(
            trigger_type=trigger_type,
            listing_count=len(scored),
            best_match_score=scored[0].score,
            is_app_active=self.is_app_active,
            recent_app_open=recent_open,
        )

    # =========================================================================
    # DELIVERY
    # =========================================================================

    def _deliver(self, delivery_id: str, context: DeliveryContext) -> Optional[NotificationRecord]:
        """
        Timer callback: final throttle check, push, then record.

        The push goes out without the engine lock, so UI reads and other
        callbacks carry on while the sender waits on the network. The send
        lock keeps the check, the push and the record of one delivery
        together against other deliveries.
        """
        with self._send_lock:
            with self._lock:
                pending = self._pending.get(delivery_id)
                if pending is None:
                    logger.debug(f"No pending delivery for {delivery_id}")
                    return None

                if self.is_app_active:
                    deferred = replace(context, is_app_active=True)
                    if self.timing.determine_strategy(deferred) != TimingStrategy.IMMEDIATE:
                        logger.info(f"App in foreground, deferring {delivery_id}")
                        self.timing.schedule(delivery_id, deferred, self._deliver)
                        return None

                del self._pending[delivery_id]

                # The log may have changed since the delivery was scheduled
                decision = self.throttler.can_send(self.is_app_active)
                if not decision.allowed:
                    logger.info(f"Dropping {delivery_id}: {decision.reason.value}")
                    return None

                listings = [s.listing for s in pending.scored]
                listing_ids = [listing.id for listing in listings]
                title, body = build_notification_content(listings, pending.trigger_type)
                data = {
                    "type": "property_alert",
                    "trigger_type": pending.trigger_type.value,
                    "listing_ids": listing_ids,
                    "match_scores": {s.listing.id: s.score for s in pending.scored},
                    "timestamp": int(self.clock().timestamp() * 1000),
                    "user_location": pending.location.to_dict() if pending.location else None,
                }

            try:
                sent = self.push.send(title, body, data)
            except Exception as e:
                logger.error(f"Push sender raised for {delivery_id}: {e}", exc_info=True)
                sent = False
            if not sent:
                logger.warning(f"Push not delivered for {delivery_id}")
                return None

            with self._lock:
                record = self.throttler.record_sent(listing_ids, pending.trigger_type, title, body)
                self.inbox.save(replace(record, listing_ids=list(record.listing_ids)))
            logger.info(f"{pending.trigger_type.value} notification {record.id} delivered: {title}")
            return record

    def pending_deliveries(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def cancel_delivery(self, delivery_id: str) -> bool:
        with self._lock:
            self._pending.pop(delivery_id, None)
            return self.timing.cancel(delivery_id)

    # =========================================================================
    # UI-FACING API
    # =========================================================================

    def record_listing_view(self) -> None:
        """The user opened a listing detail; hold notifications for a while."""
        with self._lock:
            self.throttler.record_listing_view()

    def record_app_open(self) -> None:
        with self._lock:
            self.engagement.record_app_open(self.clock())

    def set_app_active(self, active: bool) -> None:
        with self._lock:
            if active and not self.is_app_active:
                self.engagement.record_app_open(self.clock())
            self.is_app_active = active
        logger.debug(f"App active: {active}")

    def record_user_engagement(self, trigger_type: Union[TriggerType, str], action: str) -> None:
        """
        Feed an engagement event to the timing and throttling models.

        Every event lands in the engagement history (preferred hours).
        Known interactions (tapped / dismissed / ignored) also move the
        engagement score and the engaged/ignored totals.
        """
        if isinstance(trigger_type, TriggerType):
            trigger_type = trigger_type.value
        if isinstance(action, InteractionAction):
            action = action.value
        with self._lock:
            self.timing.record_user_engagement(trigger_type, action)
            try:
                interaction = InteractionAction(action)
            except ValueError:
                return
            self.engagement.apply_interaction(interaction)
            self.engagement.count_interaction(interaction)

    def record_interaction(self, notification_id: int, action: Union[InteractionAction, str]) -> bool:
        """
        Record tapped / dismissed / ignored for a delivered notification.

        Covers everything record_user_engagement() does, and also tags the
        record in the sent log and the inbox.

        Raises:
            ValueError: If action is not a known interaction
        """
        action = InteractionAction(action)
        with self._lock:
            found = self.throttler.record_interaction(notification_id, action)
            if not found:
                return False
            self.timing.record_interaction(notification_id, action)

            record = self.history.get(notification_id)
            self.timing.record_user_engagement(record.trigger_type.value, action.value)
            self.inbox.set_interaction(notification_id, replace(record.interaction))
            if action == InteractionAction.TAPPED:
                self.inbox.mark_read(notification_id)
            return True

    def get_notifications(self) -> list[NotificationRecord]:
        return self.inbox.get_notifications()

    def get_unread_count(self) -> int:
        return self.inbox.get_unread_count()

    def mark_as_read(self, notification_id: int) -> bool:
        return self.inbox.mark_read(notification_id)

    def mark_all_as_read(self) -> int:
        return self.inbox.mark_all_read()

    def delete_notification(self, notification_id: int) -> bool:
        return self.inbox.delete(notification_id)

    def clear_all_notifications(self) -> None:
        self.inbox.clear_all()

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    def set_criteria(self, criteria: UserCriteria) -> None:
        with self._lock:
            self.criteria = criteria

    def update_tier(self, tier: str) -> SubscriptionTierConfig:
        with self._lock:
            self.tier_config = self.throttler.update_tier(tier)
            return self.tier_config

    def sweep_expired(self) -> int:
        """Apply the age ceiling to the sent log and the inbox."""
        with self._lock:
            return self.history.sweep_expired() + self.inbox.sweep_expired()

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "movement_state": self.detector.state.value,
                "has_dwell_timer": self.detector.has_dwell_timer,
                "is_app_active": self.is_app_active,
                "pending_deliveries": list(self._pending),
                "throttle": self.throttler.get_stats(),
                "next_available_time": self.throttler.get_next_available_time().isoformat(),
                "timing": self.timing.get_user_insights(),
                "notifications": self.inbox.get_stats(),
            }


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def create_engine_from_config(
    scheduler: BaseScheduler,
    tier: Optional[str] = None,
    criteria: Optional[UserCriteria] = None,
) -> LocationTriggerEngine:
    """Build an engine wired to the configured store, listings API and push sender."""
    engine = LocationTriggerEngine(
        store=create_store(),
        scheduler=scheduler,
        listings=ListingsClient(),
        push=create_push_sender(),
        tier=tier,
        criteria=criteria,
    )
    engine.start()
    return engine
