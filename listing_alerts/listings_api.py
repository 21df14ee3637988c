"""
Listings service client for Listing Alerts.

Wraps the two location checks exposed by the listings backend:
- POST /location/check-hot-zone: did the user enter an area with matches?
- POST /location/check-dwell: are there matches where the user is dwelling?

Both return {shouldNotify: bool, listings: [...]}. Any failure (network
error, HTTP error, non-JSON or malformed body) is logged and treated as
{shouldNotify: false}; it is never raised to the caller.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional
import requests

from .config import ServiceConfig, get_service_config
from .models import ListingCandidate, LocationSample

logger = logging.getLogger(__name__)


@dataclass
class ZoneCheckResult:
    """Outcome of a hot-zone or dwell-area check."""
    should_notify: bool = False
    listings: list[ListingCandidate] = field(default_factory=list)

    @classmethod
    def negative(cls) -> "ZoneCheckResult":
        return cls(should_notify=False, listings=[])


class ListingsClient:
    """
    HTTP client for the hot-zone / dwell-area check service.

    Usage:
        client = ListingsClient()
        result = client.check_hot_zone(sample, radius_meters=5000)
    """

    HOT_ZONE_PATH = "/location/check-hot-zone"
    DWELL_PATH = "/location/check-dwell"

    def __init__(self, config: Optional[ServiceConfig] = None, session: Optional[requests.Session] = None):
        """Initialize the client."""
        self.config = config or get_service_config()
        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "ListingAlerts/1.0",
        })
        if self.config.api_key:
            self.session.headers["x-api-key"] = self.config.api_key

    def check_hot_zone(
        self,
        location: LocationSample,
        radius_meters: float,
        last_known: Optional[LocationSample] = None,
    ) -> ZoneCheckResult:
        """Ask whether the user just entered an area with matching listings."""
        payload = {
            "latitude": location.latitude,
            "longitude": location.longitude,
            "radius": radius_meters,
            "lastKnownLocation": self._location_payload(last_known),
        }
        return self._post("Hot zone check", self.HOT_ZONE_PATH, payload)

    def check_dwell_area(self, location: LocationSample, radius_meters: float) -> ZoneCheckResult:
        """Ask whether there are matching listings where the user is dwelling."""
        payload = {
            "latitude": location.latitude,
            "longitude": location.longitude,
            "radius": radius_meters,
        }
        return self._post("Dwell check", self.DWELL_PATH, payload)

    @staticmethod
    def _location_payload(sample: Optional[LocationSample]) -> Optional[dict]:
        if sample is None:
            return None
        return {
            "latitude": sample.latitude,
            "longitude": sample.longitude,
            "timestamp": int(sample.timestamp.timestamp() * 1000),
        }

    def _post(self, label: str, path: str, payload: dict) -> ZoneCheckResult:
        """
        POST a check request and parse the response.

        Args:
            label: Human-readable name for log lines
            path: Endpoint path under the configured base URL
            payload: JSON body

        Returns:
            ZoneCheckResult (negative on any failure)
        """
        if not self.config.base_url:
            logger.warning(f"{label}: listings API base URL not configured")
            return ZoneCheckResult.negative()

        url = f"{self.config.base_url}{path}"
        try:
            response = self.session.post(url, json=payload, timeout=self.config.request_timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"{label} failed: {e}")
            return ZoneCheckResult.negative()

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            logger.warning(f"{label}: Non-JSON response received ({content_type or 'no content-type'})")
            return ZoneCheckResult.negative()

        try:
            data = response.json()
        except ValueError:
            logger.warning(f"{label}: Invalid JSON response - API may not be available")
            return ZoneCheckResult.negative()

        return self._parse_result(label, data)

    def _parse_result(self, label: str, data) -> ZoneCheckResult:
        if not isinstance(data, dict):
            logger.warning(f"{label}: Unexpected response shape {type(data).__name__}")
            return ZoneCheckResult.negative()

        raw_listings = data.get("listings") or []
        if not isinstance(raw_listings, list):
            logger.warning(f"{label}: 'listings' is not a list")
            return ZoneCheckResult.negative()

        listings = []
        for raw in raw_listings:
            try:
                listings.append(ListingCandidate.from_dict(raw))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"{label}: Skipping malformed listing: {e}")

        should_notify = bool(data.get("shouldNotify")) and bool(listings)
        logger.info(f"{label}: shouldNotify={should_notify}, {len(listings)} listings")
        return ZoneCheckResult(should_notify=should_notify, listings=listings)
