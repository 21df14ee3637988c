"""
Configuration module for Listing Alerts.

Loads environment variables and provides configuration constants,
including the subscription tier table.
All sensitive values should be in .env file (never commit to git).
"""

import os
import math
import logging
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

from .models import SubscriptionTierConfig

logger = logging.getLogger(__name__)

# Load environment variables from .env file
load_dotenv()


# =============================================================================
# SUBSCRIPTION TIERS
# =============================================================================

TIER_CONFIGS: dict[str, SubscriptionTierConfig] = {
    "prospector": SubscriptionTierConfig(
        name="prospector",
        radius_meters=5000,  # 5km
        max_per_day=5,
        max_per_hour=2,
        min_cooldown_minutes=15,
        context_delay_minutes=60,  # After viewing a listing
        min_match_score=75,
        features=("basic_matching", "location_alerts"),
    ),
    "investor": SubscriptionTierConfig(
        name="investor",
        radius_meters=20000,  # 20km
        max_per_day=20,
        max_per_hour=5,
        min_cooldown_minutes=5,
        context_delay_minutes=30,
        min_match_score=60,
        features=("basic_matching", "location_alerts", "early_alerts", "price_drops"),
    ),
    "developer": SubscriptionTierConfig(
        name="developer",
        radius_meters=50000,  # 50km
        max_per_day=math.inf,
        max_per_hour=math.inf,
        min_cooldown_minutes=1,
        context_delay_minutes=15,
        min_match_score=50,
        features=(
            "basic_matching", "location_alerts", "early_alerts",
            "price_drops", "api_access", "heatmaps",
        ),
    ),
}

# Lowest-privilege tier, used when a tier id is unknown
DEFAULT_TIER = "prospector"


def get_tier_config(tier: Optional[str]) -> SubscriptionTierConfig:
    """
    Look up a tier's configuration.

    Unknown tiers fall back to the lowest-privilege tier instead of raising.
    """
    config = TIER_CONFIGS.get((tier or "").lower())
    if config is None:
        logger.warning(f"Unknown tier {tier!r}, falling back to {DEFAULT_TIER}")
        return TIER_CONFIGS[DEFAULT_TIER]
    return config


# =============================================================================
# CONFIG OBJECTS
# =============================================================================

@dataclass
class ServiceConfig:
    """Listings service (hot-zone / dwell-area checks) connection settings."""
    base_url: str
    api_key: str
    request_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        return cls(
            base_url=os.getenv("LISTINGS_API_BASE_URL", "").rstrip("/"),
            api_key=os.getenv("LISTINGS_API_KEY", ""),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "10")),
        )


@dataclass
class DetectorConfig:
    """Movement & dwell detection thresholds."""
    movement_threshold_meters: float = 500.0
    dwell_time_seconds: float = 180.0  # 3 minutes
    moving_speed_threshold: float = 2.5  # m/s, walking speed

    @classmethod
    def from_env(cls) -> "DetectorConfig":
        return cls(
            movement_threshold_meters=float(os.getenv("MOVEMENT_THRESHOLD_METERS", "500")),
            dwell_time_seconds=float(os.getenv("DWELL_TIME_SECONDS", "180")),
            moving_speed_threshold=float(os.getenv("MOVING_SPEED_THRESHOLD", "2.5")),
        )


@dataclass
class TimingConfig:
    """Delivery delays for each timing strategy (seconds)."""
    batch_delay_seconds: float = 3600.0  # 1 hour
    dwell_delay_seconds: float = 180.0  # 3 minutes
    smart_min_delay_seconds: float = 120.0  # 2 minutes
    smart_max_delay_seconds: float = 300.0  # 5 minutes
    recent_app_open_offset_seconds: float = 60.0
    recent_app_open_minutes: float = 5.0
    immediate_score_threshold: float = 90.0

    @classmethod
    def from_env(cls) -> "TimingConfig":
        return cls(
            batch_delay_seconds=float(os.getenv("BATCH_DELAY_SECONDS", "3600")),
            dwell_delay_seconds=float(os.getenv("DWELL_DELAY_SECONDS", "180")),
            smart_min_delay_seconds=float(os.getenv("SMART_MIN_DELAY_SECONDS", "120")),
            smart_max_delay_seconds=float(os.getenv("SMART_MAX_DELAY_SECONDS", "300")),
            recent_app_open_offset_seconds=float(os.getenv("RECENT_APP_OPEN_OFFSET_SECONDS", "60")),
            recent_app_open_minutes=float(os.getenv("RECENT_APP_OPEN_MINUTES", "5")),
        )


@dataclass
class StorageConfig:
    """Key-value store backend selection."""
    backend: str = "file"  # "memory", "file" or "supabase"
    path: str = "listing_alerts_state.json"
    supabase_url: str = ""
    supabase_key: str = ""  # Service role key for server-side operations
    supabase_table: str = "kv_store"

    @classmethod
    def from_env(cls) -> "StorageConfig":
        return cls(
            backend=os.getenv("STORAGE_BACKEND", "file"),
            path=os.getenv("STORAGE_PATH", "listing_alerts_state.json"),
            supabase_url=os.getenv("SUPABASE_URL", ""),
            supabase_key=os.getenv("SUPABASE_KEY", ""),
            supabase_table=os.getenv("SUPABASE_TABLE", "kv_store"),
        )


@dataclass
class AppConfig:
    """Main application configuration."""
    default_tier: str = DEFAULT_TIER

    # Push delivery (empty = log only)
    push_webhook_url: str = ""

    # HTTP surface
    server_host: str = "127.0.0.1"
    server_port: int = 5000

    # Retention sweep interval for notification logs
    sweep_interval_minutes: int = 60

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls(
            default_tier=os.getenv("DEFAULT_TIER", DEFAULT_TIER),
            push_webhook_url=os.getenv("PUSH_WEBHOOK_URL", ""),
            server_host=os.getenv("SERVER_HOST", "127.0.0.1"),
            server_port=int(os.getenv("SERVER_PORT", "5000")),
            sweep_interval_minutes=int(os.getenv("SWEEP_INTERVAL_MINUTES", "60")),
        )


# Global configuration instances (lazy loaded)
_service_config: Optional[ServiceConfig] = None
_detector_config: Optional[DetectorConfig] = None
_timing_config: Optional[TimingConfig] = None
_storage_config: Optional[StorageConfig] = None
_app_config: Optional[AppConfig] = None


def get_service_config() -> ServiceConfig:
    """Get listings service configuration (cached)."""
    global _service_config
    if _service_config is None:
        _service_config = ServiceConfig.from_env()
    return _service_config


def get_detector_config() -> DetectorConfig:
    """Get detector configuration (cached)."""
    global _detector_config
    if _detector_config is None:
        _detector_config = DetectorConfig.from_env()
    return _detector_config


def get_timing_config() -> TimingConfig:
    """Get timing configuration (cached)."""
    global _timing_config
    if _timing_config is None:
        _timing_config = TimingConfig.from_env()
    return _timing_config


def get_storage_config() -> StorageConfig:
    """Get storage configuration (cached)."""
    global _storage_config
    if _storage_config is None:
        _storage_config = StorageConfig.from_env()
    return _storage_config


def get_app_config() -> AppConfig:
    """Get app configuration (cached)."""
    global _app_config
    if _app_config is None:
        _app_config = AppConfig.from_env()
    return _app_config
