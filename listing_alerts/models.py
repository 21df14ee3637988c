"""
Data models for Listing Alerts.

Defines the dataclasses that flow through the notification decision engine:
location samples, listing candidates, user criteria, tier configuration,
delivered notification records and the user's engagement profile.
Persisted records carry a schema version at the storage boundary.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from enum import Enum
import logging
import math
import re

logger = logging.getLogger(__name__)

# Bump when a persisted layout changes
SCHEMA_VERSION = 1


class MovementState(str, Enum):
    """Movement state maintained by the detector."""
    MOVING = "moving"
    STATIONARY = "stationary"


class TriggerType(str, Enum):
    """What caused a notification."""
    HOT_ZONE = "hot_zone"
    DWELL = "dwell"
    PRICE_DROP = "price_drop"


class InteractionAction(str, Enum):
    """User responses to a delivered notification."""
    TAPPED = "tapped"
    DISMISSED = "dismissed"
    IGNORED = "ignored"


class TimingStrategy(str, Enum):
    """Delivery timing strategies."""
    IMMEDIATE = "immediate"
    BATCH = "batch"
    DWELL = "dwell"
    SMART_DELAY = "smart_delay"


# =============================================================================
# PARSING HELPERS
# =============================================================================

def parse_datetime(value) -> Optional[datetime]:
    """
    Parse an ISO string or epoch milliseconds into a naive local datetime.

    Returns None for empty or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt


def parse_number(value) -> Optional[float]:
    """Parse numbers and price strings like '£650,000'."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else float(value)
    digits = re.sub(r"[^0-9.]", "", str(value))
    if not digits:
        return None
    try:
        return float(digits)
    except ValueError:
        return None


def _first(data: dict, *keys):
    """Return the first present, non-None value among keys."""
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


# =============================================================================
# LOCATION
# =============================================================================

@dataclass(frozen=True)
class LocationSample:
    """A single position fix from the location provider."""
    latitude: float
    longitude: float
    speed: Optional[float] = None  # m/s, None or negative when unknown
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "speed": self.speed,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LocationSample":
        coords = data.get("coords", data)
        return cls(
            latitude=float(coords["latitude"]),
            longitude=float(coords["longitude"]),
            speed=parse_number(coords.get("speed")) if coords.get("speed") is not None else None,
            timestamp=parse_datetime(data.get("timestamp")) or datetime.now(),
        )


# =============================================================================
# LISTINGS & CRITERIA
# =============================================================================

@dataclass
class ListingCandidate:
    """
    A listing returned by the hot-zone / dwell-area check.

    Ephemeral: exists only for the duration of one matching pass.
    """
    id: str
    price: Optional[float] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    property_type: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    listing_date: Optional[datetime] = None
    view_count: int = 0
    saved_count: int = 0
    title: str = ""
    description: str = ""

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "price": self.price,
            "bedrooms": self.bedrooms,
            "bathrooms": self.bathrooms,
            "property_type": self.property_type,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "listing_date": _iso(self.listing_date),
            "view_count": self.view_count,
            "saved_count": self.saved_count,
            "title": self.title,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ListingCandidate":
        """
        Create from a listings-service payload.

        Accepts both snake_case keys and the service's PascalCase keys
        (ID, Price, Beds, PropertyType, ...).
        """
        listing_id = _first(data, "id", "ID", "Id")
        if listing_id is None:
            raise ValueError("Listing has no id")

        bedrooms = parse_number(_first(data, "bedrooms", "Beds", "Bedrooms"))
        bathrooms = parse_number(_first(data, "bathrooms", "Baths", "Bathrooms"))
        latitude = parse_number(_first(data, "latitude", "Latitude"))
        longitude = parse_number(_first(data, "longitude", "Longitude"))

        return cls(
            id=str(listing_id),
            price=parse_number(_first(data, "price", "Price")),
            bedrooms=int(bedrooms) if bedrooms is not None else None,
            bathrooms=int(bathrooms) if bathrooms is not None else None,
            property_type=_first(data, "property_type", "PropertyType"),
            latitude=latitude if latitude else None,
            longitude=longitude if longitude else None,
            listing_date=parse_datetime(_first(data, "listing_date", "ListingDate", "CreatedAt")),
            view_count=int(parse_number(_first(data, "view_count", "ViewCount")) or 0),
            saved_count=int(parse_number(_first(data, "saved_count", "SavedCount")) or 0),
            title=_first(data, "title", "Title") or "",
            description=_first(data, "description", "Description") or "",
        )


@dataclass
class UserCriteria:
    """
    The user's search filters.

    Owned by the user profile; read-only to the matching engine.
    """
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    bedrooms: Optional[int] = None
    property_types: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "price_min": self.price_min,
            "price_max": self.price_max,
            "bedrooms": self.bedrooms,
            "property_types": self.property_types,
            "keywords": self.keywords,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UserCriteria":
        bedrooms = _first(data, "bedrooms", "Beds")
        return cls(
            price_min=parse_number(_first(data, "price_min", "priceMin")),
            price_max=parse_number(_first(data, "price_max", "priceMax")),
            bedrooms=int(bedrooms) if bedrooms else None,
            property_types=list(_first(data, "property_types", "propertyTypes") or []),
            keywords=list(data.get("keywords") or []),
        )


@dataclass
class ScoredListing:
    """A listing with its match score and the sub-scores behind it."""
    listing: ListingCandidate
    score: int
    price_score: float = 0.0
    bedroom_score: float = 0.0
    location_score: float = 0.0
    recency_score: float = 0.0
    engagement_score: float = 0.0
    match_reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = self.listing.to_dict()
        data["match_score"] = self.score
        data["match_reasons"] = self.match_reasons
        return data


# =============================================================================
# SUBSCRIPTION TIERS
# =============================================================================

@dataclass(frozen=True)
class SubscriptionTierConfig:
    """Limits and matching parameters for one subscription tier."""
    name: str
    radius_meters: float
    max_per_day: float
    max_per_hour: float
    min_cooldown_minutes: float
    context_delay_minutes: float
    min_match_score: float
    features: tuple[str, ...] = ()

    def has_feature(self, feature: str) -> bool:
        return feature in self.features

    def to_dict(self) -> dict:
        def finite(value):
            return None if value == math.inf else value

        return {
            "name": self.name,
            "radius_meters": self.radius_meters,
            "max_per_day": finite(self.max_per_day),
            "max_per_hour": finite(self.max_per_hour),
            "min_cooldown_minutes": self.min_cooldown_minutes,
            "context_delay_minutes": self.context_delay_minutes,
            "min_match_score": self.min_match_score,
            "features": list(self.features),
        }


# =============================================================================
# NOTIFICATION RECORDS
# =============================================================================

@dataclass
class Interaction:
    """How the user responded to a notification."""
    action: InteractionAction
    timestamp: datetime

    def to_dict(self) -> dict:
        return {"action": self.action.value, "timestamp": self.timestamp.isoformat()}

    @classmethod
    def from_dict(cls, data: dict) -> "Interaction":
        return cls(
            action=InteractionAction(data["action"]),
            timestamp=parse_datetime(data.get("timestamp")) or datetime.now(),
        )


@dataclass
class NotificationRecord:
    """
    Record of a notification that was actually delivered.

    Tracks the lifecycle from delivered → read → interaction.
    """
    id: int
    timestamp: datetime
    trigger_type: TriggerType
    listing_ids: list[str] = field(default_factory=list)
    tier: str = "prospector"
    read: bool = False
    read_at: Optional[datetime] = None
    interaction: Optional[Interaction] = None
    title: str = ""
    body: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "trigger_type": self.trigger_type.value,
            "listing_ids": self.listing_ids,
            "tier": self.tier,
            "read": self.read,
            "read_at": _iso(self.read_at),
            "interaction": self.interaction.to_dict() if self.interaction else None,
            "title": self.title,
            "body": self.body,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NotificationRecord":
        timestamp = parse_datetime(data["timestamp"])
        if timestamp is None:
            raise ValueError(f"Invalid timestamp: {data['timestamp']!r}")
        return cls(
            id=int(data["id"]),
            timestamp=timestamp,
            trigger_type=TriggerType(data.get("trigger_type", "hot_zone")),
            listing_ids=[str(i) for i in data.get("listing_ids", [])],
            tier=data.get("tier", "prospector"),
            read=bool(data.get("read", False)),
            read_at=parse_datetime(data.get("read_at")),
            interaction=Interaction.from_dict(data["interaction"]) if data.get("interaction") else None,
            title=data.get("title", ""),
            body=data.get("body", ""),
        )


# =============================================================================
# ENGAGEMENT
# =============================================================================

@dataclass
class PreferredTimeWindow:
    """An hour range (inclusive) when the user tends to engage."""
    start: int
    end: int
    strength: float = 1.0

    def contains(self, hour: int) -> bool:
        return self.start <= hour <= self.end

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end, "strength": self.strength}

    @classmethod
    def from_dict(cls, data: dict) -> "PreferredTimeWindow":
        return cls(
            start=int(data["start"]),
            end=int(data["end"]),
            strength=float(data.get("strength", 1.0)),
        )


def default_time_windows() -> list[PreferredTimeWindow]:
    """Morning 8-12 and evening 18-21 until engagement data says otherwise."""
    return [PreferredTimeWindow(8, 12), PreferredTimeWindow(18, 21)]


@dataclass
class EngagementEvent:
    """One entry of the engagement history."""
    timestamp: datetime
    hour: int
    trigger_type: str
    action: str

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "hour": self.hour,
            "trigger_type": self.trigger_type,
            "action": self.action,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EngagementEvent":
        timestamp = parse_datetime(data.get("timestamp")) or datetime.now()
        return cls(
            timestamp=timestamp,
            hour=int(data.get("hour", timestamp.hour)),
            trigger_type=data.get("trigger_type", ""),
            action=data.get("action", ""),
        )


@dataclass
class EngagementProfile:
    """
    Running model of how the user responds to notifications.

    The engagement score starts at 100 and is always kept within [0, 100].
    """
    engagement_score: int = 100
    ignored_count: int = 0
    engaged_total: int = 0
    ignored_total: int = 0
    preferred_time_windows: list[PreferredTimeWindow] = field(default_factory=default_time_windows)
    engagement_history: list[EngagementEvent] = field(default_factory=list)
    last_listing_view_at: Optional[datetime] = None
    last_app_open_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "version": SCHEMA_VERSION,
            "engagement_score": self.engagement_score,
            "ignored_count": self.ignored_count,
            "engaged_total": self.engaged_total,
            "ignored_total": self.ignored_total,
            "preferred_time_windows": [w.to_dict() for w in self.preferred_time_windows],
            "engagement_history": [e.to_dict() for e in self.engagement_history],
            "last_listing_view_at": _iso(self.last_listing_view_at),
            "last_app_open_at": _iso(self.last_app_open_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EngagementProfile":
        version = data.get("version")
        if version != SCHEMA_VERSION:
            logger.warning(f"Loading engagement profile with schema version {version}")

        windows = []
        for raw in data.get("preferred_time_windows") or []:
            try:
                windows.append(PreferredTimeWindow.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed time window {raw!r}: {e}")

        history = []
        for raw in data.get("engagement_history") or []:
            try:
                history.append(EngagementEvent.from_dict(raw))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed engagement event {raw!r}: {e}")

        score = int(data.get("engagement_score", 100))
        return cls(
            engagement_score=max(0, min(100, score)),
            ignored_count=int(data.get("ignored_count", 0)),
            engaged_total=int(data.get("engaged_total", 0)),
            ignored_total=int(data.get("ignored_total", 0)),
            preferred_time_windows=windows or default_time_windows(),
            engagement_history=history,
            last_listing_view_at=parse_datetime(data.get("last_listing_view_at")),
            last_app_open_at=parse_datetime(data.get("last_app_open_at")),
        )
