"""
Alert content and push delivery for Listing Alerts.

Builds the title/body of a property alert for each trigger type and hands
it to a push sender. Push delivery itself (OS permissions, channels) is an
external capability; senders are fire-and-forget and report failures as
False instead of raising.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence
import requests

from .config import get_app_config
from .models import ListingCandidate, TriggerType

logger = logging.getLogger(__name__)


# =============================================================================
# CONTENT TEMPLATES
# =============================================================================

TITLES = {
    TriggerType.HOT_ZONE: ("New Property Nearby!", "{count} New Properties Nearby"),
    TriggerType.DWELL: ("Property Nearby", "Properties Nearby"),
    TriggerType.PRICE_DROP: ("Price Drop!", "Price Drops!"),
}

BODIES = {
    TriggerType.HOT_ZONE: (
        "{title}{price_suffix}",
        "Properties matching your search{price_paren}",
    ),
    TriggerType.DWELL: (
        "You're near {title}{price_suffix}",
        "You're near {count} properties matching your criteria{price_paren}",
    ),
    TriggerType.PRICE_DROP: (
        "{title} price reduced{price_now}",
        "{count} properties you viewed had price drops",
    ),
}

DEFAULT_TITLE = "Property Alert"
DEFAULT_BODY = "{count} properties match your criteria"


def format_price_range(listings: Sequence[ListingCandidate]) -> Optional[str]:
    """'£250k' for one price, '£200k-£300k' for a spread, None without prices."""
    prices = [listing.price for listing in listings if listing.price]
    if not prices:
        return None

    low, high = min(prices), max(prices)
    if low == high:
        return f"£{low / 1000:.0f}k"
    return f"£{low / 1000:.0f}k-£{high / 1000:.0f}k"


def build_notification_content(
    listings: Sequence[ListingCandidate],
    trigger_type: TriggerType,
) -> tuple[str, str]:
    """
    Create the title and body of a property alert.

    Args:
        listings: Listings in the alert, best match first
        trigger_type: What caused the alert

    Returns:
        (title, body)
    """
    count = len(listings)
    price_range = format_price_range(listings)
    template_vars = {
        "count": count,
        "title": listings[0].title if listings else "",
        "price_suffix": f" - {price_range}" if price_range else "",
        "price_paren": f" ({price_range})" if price_range else "",
        "price_now": f" - now {price_range}" if price_range else "",
    }

    if trigger_type not in TITLES:
        return DEFAULT_TITLE, DEFAULT_BODY.format(**template_vars)

    index = 0 if count == 1 else 1
    title = TITLES[trigger_type][index].format(**template_vars)
    body = BODIES[trigger_type][index].format(**template_vars)
    return title, body


# =============================================================================
# PUSH SENDERS
# =============================================================================

class PushSender(ABC):
    """Delivers a push notification to the user's device."""

    @abstractmethod
    def send(self, title: str, body: str, data: dict) -> bool:
        """
        Send a notification.

        Returns:
            True if the push was handed off successfully
        """
        pass


class LoggingPushSender(PushSender):
    """Writes notifications to the log instead of a device (local runs)."""

    def __init__(self):
        self.sent: list[dict] = []

    def send(self, title: str, body: str, data: dict) -> bool:
        self.sent.append({"title": title, "body": body, "data": data})
        logger.info(f"Push: {title} - {body}")
        return True


class WebhookPushSender(PushSender):
    """
    POSTs notifications as JSON to a push gateway webhook.

    Usage:
        sender = WebhookPushSender("https://push.example.com/send")
        sender.send(title, body, data)
    """

    def __init__(self, url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, title: str, body: str, data: dict) -> bool:
        payload = {
            "title": title,
            "body": body,
            "data": data,
            "sound": "default",
            "priority": "high",
        }
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Push delivery failed: {e}")
            return False

        logger.info(f"Push sent: {title}")
        return True


def create_push_sender(webhook_url: Optional[str] = None) -> PushSender:
    """Webhook sender when a URL is configured, logging sender otherwise."""
    url = webhook_url if webhook_url is not None else get_app_config().push_webhook_url
    if url:
        return WebhookPushSender(url)
    logger.warning("PUSH_WEBHOOK_URL not set - notifications will only be logged")
    return LoggingPushSender()
