"""Tests for the HTTP geolocator."""

import asyncio

import httpx
import pytest

from missing_person_watch.recognition.geolocation import HttpGeolocator

URL = "https://geo.example.test/locate"


def _locator(handler) -> HttpGeolocator:
    return HttpGeolocator(URL, timeout=1.0, transport=httpx.MockTransport(handler))


def test_latitude_longitude_response():
    locator = _locator(
        lambda request: httpx.Response(
            200, json={"latitude": 35.68, "longitude": 139.76, "accuracy": 25}
        )
    )
    location = asyncio.run(locator.locate())
    assert location.latitude == 35.68
    assert location.longitude == 139.76
    assert location.accuracy == 25.0
    assert location.timestamp.tzinfo is not None


def test_lat_lon_response_without_accuracy():
    locator = _locator(lambda request: httpx.Response(200, json={"lat": 1.0, "lon": 2.0}))
    location = asyncio.run(locator.locate())
    assert (location.latitude, location.longitude) == (1.0, 2.0)
    assert location.accuracy is None


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"error": "boom"}),
        httpx.Response(200, json=[1, 2]),
        httpx.Response(200, json={"city": "Tokyo"}),
        httpx.Response(200, text="not json"),
    ],
)
def test_bad_responses_yield_none(response):
    locator = _locator(lambda request: response)
    assert asyncio.run(locator.locate()) is None


def test_connection_error_yields_none():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    assert asyncio.run(_locator(handler).locate()) is None


def test_url_is_required(monkeypatch):
    monkeypatch.setattr(
        "missing_person_watch.recognition.geolocation.GEOLOCATION_URL", ""
    )
    with pytest.raises(ValueError):
        HttpGeolocator()
