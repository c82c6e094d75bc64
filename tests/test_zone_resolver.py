"""
Tests for the zone resolver
"""
import httpx
import pytest

from repair_booking.errors import (
    GeocodeNotFound,
    NotConfiguredError,
    UpstreamError,
    ValidationError,
    ZoneNotFound,
)
from repair_booking.services.zone_resolver import ZoneResolver

from tests.conftest import GEOCODE_URL, ZONE_LOOKUP_URL

GEOCODE_OK = {
    "status": "OK",
    "results": [{
        "formatted_address": "1 Elm St, Springfield, CA 90000, USA",
        "place_id": "place-abc",
        "geometry": {"location": {"lat": 33.9, "lng": -118.1}},
    }],
}


def make_resolver(handler, **kwargs):
    options = {
        "geocoding_key": "key",
        "geocoding_url": GEOCODE_URL,
        "zone_lookup_url": ZONE_LOOKUP_URL,
        "zone_lookup_key": "zone-key",
        "transport": httpx.MockTransport(handler),
    }
    options.update(kwargs)
    return ZoneResolver(**options)


@pytest.mark.unit
class TestGeocode:
    """Geocoding API handling"""

    def test_first_result_wins(self):
        seen = {}

        def handler(request):
            seen.update(request.url.params)
            return httpx.Response(200, json=GEOCODE_OK)

        result = make_resolver(handler).geocode("  1 Elm St  ")

        assert seen == {"address": "1 Elm St", "key": "key"}
        assert (result.lat, result.lon) == (33.9, -118.1)
        assert result.place_id == "place-abc"

    def test_zero_results(self):
        resolver = make_resolver(lambda r: httpx.Response(200, json={"status": "ZERO_RESULTS", "results": []}))
        with pytest.raises(GeocodeNotFound):
            resolver.geocode("nowhere")

    def test_empty_address(self):
        resolver = make_resolver(lambda r: httpx.Response(200, json=GEOCODE_OK))
        with pytest.raises(ValidationError):
            resolver.geocode("   ")

    def test_missing_key(self):
        resolver = make_resolver(lambda r: httpx.Response(200, json=GEOCODE_OK), geocoding_key="")
        with pytest.raises(NotConfiguredError):
            resolver.geocode("1 Elm St")

    def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UpstreamError):
            make_resolver(handler).geocode("1 Elm St")

    def test_non_json_reply(self):
        resolver = make_resolver(lambda r: httpx.Response(500, text="<html>oops</html>"))
        with pytest.raises(UpstreamError):
            resolver.geocode("1 Elm St")

    @pytest.mark.parametrize("status,body", [
        (502, ["bad gateway"]),
        (200, "OK"),
        (200, None),
        (200, {"status": "OK", "results": ["1 Elm St"]}),
        (200, {"status": "OK", "results": {"0": GEOCODE_OK["results"][0]}}),
        (200, {"status": "OK", "results": [{"geometry": {"location": {"lat": "north", "lng": -118.1}}}]}),
        (200, {"status": "OK", "results": [{"geometry": {"location": {"lat": None, "lng": -118.1}}}]}),
    ])
    def test_malformed_reply(self, status, body):
        resolver = make_resolver(lambda r: httpx.Response(status, json=body))
        with pytest.raises(UpstreamError):
            resolver.geocode("1 Elm St")


@pytest.mark.unit
class TestLookupZone:
    """Point-in-polygon RPC"""

    def test_list_reply(self):
        captured = {}

        def handler(request):
            captured["body"] = request.content
            captured["apikey"] = request.headers.get("apikey")
            captured["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json=[{"zone_code": "c", "zone_name": "Zone C"}])

        code, name = make_resolver(handler).lookup_zone(34.0, -118.0)

        assert (code, name) == ("C", "Zone C")
        assert captured["apikey"] == "zone-key"
        assert captured["auth"] == "Bearer zone-key"
        assert b'"p_lat"' in captured["body"] and b'"p_lon"' in captured["body"]

    def test_dict_reply_without_name(self):
        resolver = make_resolver(lambda r: httpx.Response(200, json={"zone_code": "D"}))
        code, name = resolver.lookup_zone(34.0, -118.0)
        assert code == "D"
        assert name

    @pytest.mark.parametrize("body", [[], {}, [{"zone_code": None}], [{"zone_code": "X"}], [{"zone_code": "Q"}]])
    def test_outside_service_area(self, body):
        resolver = make_resolver(lambda r: httpx.Response(200, json=body))
        with pytest.raises(ZoneNotFound):
            resolver.lookup_zone(34.0, -118.0)

    def test_error_status(self):
        resolver = make_resolver(lambda r: httpx.Response(500, json={"message": "boom"}))
        with pytest.raises(UpstreamError):
            resolver.lookup_zone(34.0, -118.0)


@pytest.mark.unit
class TestResolve:

    def test_resolve(self, zone_resolver):
        resolved = zone_resolver.resolve("100 Main St")

        assert resolved.zone_code == "B"
        assert resolved.zone_name == "Zone B"
        assert resolved.to_dict()["place_id"] == "place-123"

    def test_resolve_unknown_address(self, zone_resolver):
        with pytest.raises(GeocodeNotFound):
            zone_resolver.resolve("Nowhere Lane")
