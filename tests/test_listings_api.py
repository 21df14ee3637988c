import pytest
import requests
from datetime import datetime
from unittest.mock import MagicMock

from listing_alerts.config import ServiceConfig
from listing_alerts.listings_api import ListingsClient
from listing_alerts.models import LocationSample

SAMPLE = LocationSample(51.5, -0.12, speed=3.0, timestamp=datetime(2024, 6, 3, 10, 0, 0))


def make_response(payload=None, content_type="application/json", status_error=None, json_error=None):
    response = MagicMock()
    response.headers = {"content-type": content_type}
    if status_error:
        response.raise_for_status.side_effect = status_error
    if json_error:
        response.json.side_effect = json_error
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def session():
    session = requests.Session()
    session.post = MagicMock()
    return session


@pytest.fixture
def client(session):
    config = ServiceConfig(base_url="https://api.example.com", api_key="secret", request_timeout=5)
    return ListingsClient(config=config, session=session)


def test_hot_zone_request_shape(client, session):
    session.post.return_value = make_response({"shouldNotify": False, "listings": []})
    previous = LocationSample(51.49, -0.12, timestamp=datetime(2024, 6, 3, 9, 55, 0))

    client.check_hot_zone(SAMPLE, 5000, previous)

    args, kwargs = session.post.call_args
    assert args[0] == "https://api.example.com/location/check-hot-zone"
    assert kwargs["json"]["radius"] == 5000
    assert kwargs["json"]["latitude"] == 51.5
    assert kwargs["json"]["lastKnownLocation"]["latitude"] == 51.49
    assert kwargs["timeout"] == 5
    assert session.headers["x-api-key"] == "secret"


def test_positive_result_parses_listings(client, session):
    session.post.return_value = make_response({
        "shouldNotify": True,
        "listings": [
            {"ID": "a1", "Price": 250000, "Beds": 3},
            {"Price": 100000},  # no id, skipped
        ],
    })

    result = client.check_dwell_area(SAMPLE, 20000)

    assert result.should_notify
    assert [listing.id for listing in result.listings] == ["a1"]
    assert session.post.call_args[0][0].endswith("/location/check-dwell")


def test_should_notify_without_listings_is_negative(client, session):
    session.post.return_value = make_response({"shouldNotify": True, "listings": []})
    assert not client.check_hot_zone(SAMPLE, 5000).should_notify


def test_non_json_response_is_negative(client, session):
    session.post.return_value = make_response(content_type="text/html")
    result = client.check_hot_zone(SAMPLE, 5000)
    assert not result.should_notify
    assert result.listings == []


def test_invalid_json_is_negative(client, session):
    session.post.return_value = make_response(json_error=ValueError("bad json"))
    assert not client.check_hot_zone(SAMPLE, 5000).should_notify


def test_http_error_is_negative(client, session):
    session.post.return_value = make_response(status_error=requests.HTTPError("500"))
    assert not client.check_hot_zone(SAMPLE, 5000).should_notify


def test_network_error_is_negative(client, session):
    session.post.side_effect = requests.ConnectionError("offline")
    assert not client.check_dwell_area(SAMPLE, 5000).should_notify


def test_unexpected_shape_is_negative(client, session):
    session.post.return_value = make_response(["not", "an", "object"])
    assert not client.check_hot_zone(SAMPLE, 5000).should_notify


def test_missing_base_url_skips_request(session):
    client = ListingsClient(config=ServiceConfig(base_url="", api_key=""), session=session)
    assert not client.check_hot_zone(SAMPLE, 5000).should_notify
    session.post.assert_not_called()
