"""
Zone resolver: address -> coordinates -> service zone.

Geocoding uses the Google Geocoding JSON API and the zone comes from a
point-in-polygon RPC that answers ``{"zone_code", "zone_name"}`` for a
``{"p_lat", "p_lon"}`` body. Both go through one httpx client.
"""
import logging
from dataclasses import asdict, dataclass

import httpx

from repair_booking.config import settings
from repair_booking.errors import GeocodeNotFound, NotConfiguredError, UpstreamError, ValidationError, ZoneNotFound
from repair_booking.services.zones import get_zone

logger = logging.getLogger(__name__)


@dataclass
class GeocodeResult:
    lat: float
    lon: float
    formatted_address: str | None = None
    place_id: str | None = None


@dataclass
class ResolvedZone:
    zone_code: str
    zone_name: str
    lat: float
    lon: float
    formatted_address: str | None = None
    place_id: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class ZoneResolver:
    """Geocoder and zone lookup client"""

    def __init__(
        self,
        geocoding_key: str | None = None,
        geocoding_url: str | None = None,
        zone_lookup_url: str | None = None,
        zone_lookup_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.geocoding_key = geocoding_key if geocoding_key is not None else settings.google_geocoding_key
        self.geocoding_url = geocoding_url or settings.geocoding_url
        self.zone_lookup_url = zone_lookup_url if zone_lookup_url is not None else settings.zone_lookup_url
        self.zone_lookup_key = zone_lookup_key if zone_lookup_key is not None else settings.zone_lookup_key
        self.client = httpx.Client(
            timeout=timeout or settings.http_timeout_seconds,
            transport=transport,
        )

    def geocode(self, address: str) -> GeocodeResult:
        """
        Geocode a street address; the first result wins.

        Raises:
            ValidationError: empty address
            GeocodeNotFound: provider status is not OK or there are no results
            UpstreamError: transport failure or non-JSON reply
        """
        address = (address or "").strip()
        if not address:
            raise ValidationError("Missing address")
        if not self.geocoding_key:
            raise NotConfiguredError("Geocoding is not configured")

        try:
            resp = self.client.get(self.geocoding_url, params={"address": address, "key": self.geocoding_key})
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Geocoding request failed: %s", e)
            raise UpstreamError("Geocoding failed") from e

        if not isinstance(data, dict):
            logger.warning("Geocoding replied with %s instead of an object", type(data).__name__)
            raise UpstreamError("Geocoding failed")

        results = data.get("results") or []
        if data.get("status") != "OK" or not results:
            logger.info("Geocode miss (%s) for %r", data.get("status"), address)
            raise GeocodeNotFound()

        top = results[0] if isinstance(results, list) else None
        if not isinstance(top, dict):
            raise UpstreamError("Geocoding failed")
        location = top.get("geometry") or {}
        location = location.get("location") if isinstance(location, dict) else None
        if not isinstance(location, dict) or "lat" not in location or "lng" not in location:
            raise GeocodeNotFound()

        try:
            lat, lon = float(location["lat"]), float(location["lng"])
        except (TypeError, ValueError) as e:
            raise UpstreamError("Geocoding failed") from e

        return GeocodeResult(
            lat=lat,
            lon=lon,
            formatted_address=top.get("formatted_address"),
            place_id=top.get("place_id"),
        )

    def lookup_zone(self, lat: float, lon: float) -> tuple[str, str]:
        """
        Find the service zone polygon containing a point.

        Returns:
            (zone_code, zone_name)

        Raises:
            ZoneNotFound: no polygon contains the point, or it is not a service zone
            UpstreamError: transport failure or error reply
        """
        if not self.zone_lookup_url:
            raise NotConfiguredError("Zone lookup is not configured")

        headers = {"Content-Type": "application/json"}
        if self.zone_lookup_key:
            headers["apikey"] = self.zone_lookup_key
            headers["Authorization"] = f"Bearer {self.zone_lookup_key}"

        try:
            resp = self.client.post(
                self.zone_lookup_url,
                json={"p_lat": float(lat), "p_lon": float(lon)},
                headers=headers,
            )
            resp.raise_for_status()
            data = resp.json() if resp.content else None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Zone lookup failed for (%s, %s): %s", lat, lon, e)
            raise UpstreamError("Zone lookup failed") from e

        row = data[0] if isinstance(data, list) and data else data
        code = (row or {}).get("zone_code") if isinstance(row, dict) else None
        zone = get_zone(code) if code else None
        if zone is None:
            raise ZoneNotFound()
        return zone.code, row.get("zone_name") or zone.name

    def resolve(self, address: str) -> ResolvedZone:
        """Geocode an address and map it to a service zone"""
        geo = self.geocode(address)
        zone_code, zone_name = self.lookup_zone(geo.lat, geo.lon)
        logger.info("Resolved address to zone %s", zone_code)
        return ResolvedZone(
            zone_code=zone_code,
            zone_name=zone_name,
            lat=geo.lat,
            lon=geo.lon,
            formatted_address=geo.formatted_address,
            place_id=geo.place_id,
        )

    def close(self):
        self.client.close()


# Global instance
_zone_resolver = None


def get_zone_resolver() -> ZoneResolver:
    """Get or create zone resolver instance"""
    global _zone_resolver
    if _zone_resolver is None:
        _zone_resolver = ZoneResolver()
    return _zone_resolver
