"""
Movement & Dwell Detector for Listing Alerts.

Consumes location samples and maintains a two-state machine:

    MOVING      speed above walking threshold; any dwell timer is cancelled.
                A displacement of at least movement_threshold_meters from the
                last known sample emits a significant-movement event.
    STATIONARY  speed at or below the threshold; a single dwell timer is
                armed. When it expires (and we are still stationary, with no
                reset in between) a dwell event is emitted.

Every sample becomes the new last known location, whichever branch it took.
The detector is the only mutator of MovementState.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from .config import DetectorConfig, get_detector_config
from .geo import haversine_m, is_valid_coordinate
from .models import LocationSample, MovementState, SCHEMA_VERSION
from .storage import KeyValueStore, load_json, save_json
from .timers import TimerRegistry

logger = logging.getLogger(__name__)

STATE_KEY = "movement_state"
DWELL_TIMER_KEY = "dwell"

MovementHandler = Callable[[LocationSample, Optional[LocationSample]], None]
DwellHandler = Callable[[LocationSample], None]


class MovementDetector:
    """
    Detects significant movement and dwell from raw location samples.

    Usage:
        detector = MovementDetector(timers, on_significant_movement=..., on_dwell=...)
        detector.load_state()
        detector.on_location_sample(sample)
    """

    def __init__(
        self,
        timers: TimerRegistry,
        config: Optional[DetectorConfig] = None,
        store: Optional[KeyValueStore] = None,
        on_significant_movement: Optional[MovementHandler] = None,
        on_dwell: Optional[DwellHandler] = None,
        clock: Callable[[], datetime] = datetime.now,
        lock: Optional[threading.RLock] = None,
    ):
        self.config = config or get_detector_config()
        self.timers = timers
        self.store = store
        self.clock = clock
        self._lock = lock or threading.RLock()

        self._movement_handlers: list[MovementHandler] = []
        self._dwell_handlers: list[DwellHandler] = []
        if on_significant_movement:
            self._movement_handlers.append(on_significant_movement)
        if on_dwell:
            self._dwell_handlers.append(on_dwell)

        self.state: MovementState = MovementState.MOVING
        self.last_known: Optional[LocationSample] = None
        self.dwell_deadline: Optional[datetime] = None

        # Bumped on every arm/cancel so a stale expiry can recognise itself
        self._dwell_generation = 0
        # One dwell event per stationary episode
        self._dwell_fired = False

    # =========================================================================
    # LISTENERS
    # =========================================================================

    def add_movement_listener(self, handler: MovementHandler) -> None:
        self._movement_handlers.append(handler)

    def add_dwell_listener(self, handler: DwellHandler) -> None:
        self._dwell_handlers.append(handler)

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def load_state(self) -> None:
        """Restore the last known sample. State always restarts as MOVING."""
        if self.store is None:
            return
        data = load_json(self.store, STATE_KEY)
        if not isinstance(data, dict) or not data.get("last_known"):
            return
        try:
            self.last_known = LocationSample.from_dict(data["last_known"])
            logger.info(f"Restored last known location ({self.last_known.latitude:.5f}, "
                        f"{self.last_known.longitude:.5f})")
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed stored movement state: {e}")

    def _save_state(self) -> None:
        if self.store is None:
            return
        save_json(self.store, STATE_KEY, {
            "version": SCHEMA_VERSION,
            "state": self.state.value,
            "last_known": self.last_known.to_dict() if self.last_known else None,
        })

    # =========================================================================
    # SAMPLE HANDLING
    # =========================================================================

    def on_location_sample(self, sample: LocationSample) -> MovementState:
        """
        Process one location sample.

        Returns:
            The movement state after the sample
        """
        if not is_valid_coordinate(sample.latitude, sample.longitude):
            logger.warning(f"Ignoring sample with invalid coordinates "
                           f"({sample.latitude}, {sample.longitude})")
            return self.state

        with self._lock:
            previous = self.last_known
            speed = self._effective_speed(sample, previous)

            if speed > self.config.moving_speed_threshold:
                self._enter_moving()
                if self._has_significant_movement(sample, previous):
                    logger.info(f"Significant movement to ({sample.latitude:.5f}, "
                                f"{sample.longitude:.5f}) at {speed:.1f} m/s")
                    self._emit_movement(sample, previous)
            else:
                self._enter_stationary()

            self.last_known = sample
            self._save_state()
            return self.state

    def _effective_speed(self, sample: LocationSample, previous: Optional[LocationSample]) -> float:
        """Reported speed, or one estimated from the previous sample when unknown."""
        if sample.speed is not None and sample.speed >= 0:
            return sample.speed
        if previous is None:
            return 0.0
        elapsed = (sample.timestamp - previous.timestamp).total_seconds()
        if elapsed <= 0:
            return 0.0
        distance = haversine_m(previous.latitude, previous.longitude,
                               sample.latitude, sample.longitude)
        return distance / elapsed

    def _has_significant_movement(
        self,
        sample: LocationSample,
        previous: Optional[LocationSample]
    ) -> bool:
        if previous is None:
            return True
        distance = haversine_m(previous.latitude, previous.longitude,
                               sample.latitude, sample.longitude)
        return distance >= self.config.movement_threshold_meters

    def _enter_moving(self) -> None:
        if self.state != MovementState.MOVING:
            logger.debug("State: STATIONARY -> MOVING")
        self.state = MovementState.MOVING
        self._cancel_dwell_timer()
        self._dwell_fired = False

    def _enter_stationary(self) -> None:
        if self.state != MovementState.STATIONARY:
            logger.debug("State: MOVING -> STATIONARY")
        self.state = MovementState.STATIONARY
        if self.dwell_deadline is None and not self._dwell_fired:
            self._arm_dwell_timer()

    # =========================================================================
    # DWELL TIMER
    # =========================================================================

    def _arm_dwell_timer(self) -> None:
        # Always cancel before re-arming
        self._cancel_dwell_timer()
        self._dwell_generation += 1
        self.timers.arm(
            DWELL_TIMER_KEY,
            self.config.dwell_time_seconds,
            self._on_dwell_timer,
            self._dwell_generation,
        )
        self.dwell_deadline = self.clock() + timedelta(seconds=self.config.dwell_time_seconds)
        logger.debug(f"Dwell timer armed for {self.config.dwell_time_seconds:.0f}s")

    def _cancel_dwell_timer(self) -> None:
        if self.dwell_deadline is not None:
            self.timers.cancel(DWELL_TIMER_KEY)
            self._dwell_generation += 1
            self.dwell_deadline = None

    def _on_dwell_timer(self, generation: int) -> None:
        with self._lock:
            if generation != self._dwell_generation or self.dwell_deadline is None:
                logger.debug("Ignoring stale dwell timer")
                return
            self.dwell_deadline = None
            if self.state != MovementState.STATIONARY or self.last_known is None:
                return
            self._dwell_fired = True
            sample = self.last_known

        logger.info(f"Dwell detected at ({sample.latitude:.5f}, {sample.longitude:.5f})")
        for handler in self._dwell_handlers:
            try:
                handler(sample)
            except Exception as e:
                logger.error(f"Dwell handler failed: {e}", exc_info=True)

    def _emit_movement(self, sample: LocationSample, previous: Optional[LocationSample]) -> None:
        for handler in self._movement_handlers:
            try:
                handler(sample, previous)
            except Exception as e:
                logger.error(f"Movement handler failed: {e}", exc_info=True)

    @property
    def has_dwell_timer(self) -> bool:
        return self.dwell_deadline is not None

    def stop(self) -> None:
        """Cancel any armed dwell timer."""
        with self._lock:
            self._cancel_dwell_timer()
