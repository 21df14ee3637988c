"""
Listing Alerts - Location-Triggered Notification Decision Engine

Decides, from a stream of device location samples, whether and when to
notify a property seeker about nearby listings that match their search.

Modules:
- config: Configuration, environment variables and subscription tiers
- models: Data models (dataclasses)
- geo: Great-circle distance and bearing
- storage: Key-value persistence (memory, JSON file, Supabase)
- timers: Keyed one-shot timers on APScheduler
- movement: Movement & dwell detection
- listings_api: Hot-zone / dwell-area check client
- matching: Candidate matching & scoring
- engagement: User engagement profile
- store: Notification log with read state and retention
- throttling: Notification throttling policy
- timing: Adaptive delivery timing
- alerts: Notification content and push delivery
- engine: Orchestration of one user session
- scheduler: APScheduler setup and maintenance jobs
- server: HTTP surface and CLI
"""

__version__ = "0.1.0"

# Convenient imports
from .models import (
    LocationSample,
    ListingCandidate,
    UserCriteria,
    ScoredListing,
    SubscriptionTierConfig,
    NotificationRecord,
    MovementState,
    TriggerType,
    InteractionAction,
    TimingStrategy,
)
from .config import TIER_CONFIGS, get_tier_config
from .geo import haversine_m, bearing_deg
from .matching import score_and_filter, ListingMatcher
from .throttling import NotificationThrottler, ThrottleDecision, DenyReason
from .timing import TimingScheduler, DeliveryContext
from .store import NotificationStore
from .movement import MovementDetector
from .engine import LocationTriggerEngine, create_engine_from_config
from .scheduler import create_scheduler

__all__ = [
    # Models
    "LocationSample",
    "ListingCandidate",
    "UserCriteria",
    "ScoredListing",
    "SubscriptionTierConfig",
    "NotificationRecord",
    "MovementState",
    "TriggerType",
    "InteractionAction",
    "TimingStrategy",
    # Config
    "TIER_CONFIGS",
    "get_tier_config",
    # Geo
    "haversine_m",
    "bearing_deg",
    # Matching
    "score_and_filter",
    "ListingMatcher",
    # Throttling
    "NotificationThrottler",
    "ThrottleDecision",
    "DenyReason",
    # Timing
    "TimingScheduler",
    "DeliveryContext",
    # Store
    "NotificationStore",
    # Movement
    "MovementDetector",
    # Engine
    "LocationTriggerEngine",
    "create_engine_from_config",
    "create_scheduler",
]
