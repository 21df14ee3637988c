import pytest
from datetime import timedelta
from unittest.mock import MagicMock

from listing_alerts.alerts import LoggingPushSender
from listing_alerts.config import DetectorConfig, TimingConfig
from listing_alerts.engine import LocationTriggerEngine
from listing_alerts.listings_api import ListingsClient, ZoneCheckResult
from listing_alerts.models import ListingCandidate, LocationSample, TriggerType, UserCriteria
from listing_alerts.server import create_app


@pytest.fixture
def engine(kv_store, scheduler, clock):
    listings = MagicMock(spec=ListingsClient)
    listings.check_hot_zone.return_value = ZoneCheckResult.negative()
    engine = LocationTriggerEngine(
        store=kv_store,
        scheduler=scheduler,
        listings=listings,
        push=LoggingPushSender(),
        tier="investor",
        criteria=UserCriteria(price_min=200000, price_max=300000, bedrooms=3),
        detector_config=DetectorConfig(),
        timing_config=TimingConfig(),
        clock=clock,
    )
    engine.start()
    return engine


@pytest.fixture
def client(engine):
    app = create_app(engine)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def delivered(engine, clock):
    """One notification in the inbox."""
    listing = ListingCandidate(
        id="a1", price=250000, bedrooms=3, latitude=51.5, longitude=-0.12,
        listing_date=clock() - timedelta(hours=1), title="Garden flat",
    )
    engine.process_candidates([listing], TriggerType.HOT_ZONE, LocationSample(51.5, -0.12))
    return engine.get_notifications()[0]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}


def test_location_sample(client, engine):
    response = client.post("/location", json={"latitude": 51.5, "longitude": -0.12, "speed": 0})
    assert response.status_code == 200
    assert response.get_json() == {"state": "stationary"}
    assert engine.detector.has_dwell_timer


def test_invalid_location_is_rejected(client):
    assert client.post("/location", json={"latitude": 51.5}).status_code == 400
    assert client.post("/location", data="garbage").status_code == 400


def test_price_drop(client):
    response = client.post("/price-drop", json={
        "listings": [{"ID": "p1", "Price": 250000, "Beds": 3, "Title": "Reduced flat"}],
    })
    assert response.status_code == 200
    body = response.get_json()
    assert body["scheduled"]
    assert body["strategy"] == "immediate"

    assert client.post("/price-drop", json={"nope": []}).status_code == 400


def test_app_state(client, engine):
    assert client.post("/app-state", json={"active": True}).get_json() == {"active": True}
    assert engine.is_app_active
    assert client.post("/app-state", json={"active": "yes"}).status_code == 400


def test_listing_view_and_engagement(client, engine):
    assert client.post("/listing-view").status_code == 200
    assert engine.engagement.profile.last_listing_view_at is not None

    response = client.post("/engagement", json={"trigger_type": "hot_zone", "action": "tapped"})
    assert response.status_code == 200
    assert len(engine.engagement.profile.engagement_history) == 1
    assert client.post("/engagement", json={"action": "tapped"}).status_code == 400


def test_inbox_listing(client, delivered):
    body = client.get("/notifications").get_json()
    assert [n["id"] for n in body] == [delivered.id]
    assert client.get("/notifications/unread-count").get_json() == {"count": 1}
    assert client.get("/notifications/stats").get_json()["total"] == 1


def test_mark_read(client, delivered):
    assert client.post(f"/notifications/{delivered.id}/read").status_code == 200
    assert client.get("/notifications/unread-count").get_json() == {"count": 0}
    assert client.post("/notifications/1/read").status_code == 404


def test_mark_all_read(client, delivered):
    assert client.post("/notifications/read-all").get_json() == {"updated": 1}


def test_interaction(client, engine, delivered):
    url = f"/notifications/{delivered.id}/interaction"
    assert client.post(url, json={"action": "dismissed"}).status_code == 200
    assert engine.throttler.engagement.engagement_score == 95

    assert client.post(url, json={"action": "swiped"}).status_code == 400
    assert client.post(url, json={}).status_code == 400
    assert client.post("/notifications/1/interaction", json={"action": "tapped"}).status_code == 404


def test_delete_and_clear(client, engine, delivered):
    assert client.delete(f"/notifications/{delivered.id}").status_code == 200
    assert client.delete(f"/notifications/{delivered.id}").status_code == 404
    assert client.delete("/notifications").status_code == 200
    assert engine.get_notifications() == []
    # Sent log still counts it
    assert engine.throttler.get_today_count() == 1


def test_stats(client, delivered):
    body = client.get("/stats").get_json()
    assert body["throttle"]["tier"] == "investor"
    assert body["throttle"]["today_count"] == 1
    assert body["notifications"]["unread"] == 1
