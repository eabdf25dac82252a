"""
Geocoder — Place name → coordinates via the Mapbox Geocoding API.

Used by the optional geocoding phase of the pattern run to give approved
reports that only name a place a latitude/longitude, so the clusterer can
see them.

Graceful degradation: if MAPBOX_ACCESS_TOKEN is not set, every lookup
returns None with a logged warning and the geocoding phase is a no-op.

Rate limiting: calls are serialised behind an asyncio.Lock and spaced at
least `geocode_min_interval_seconds` apart. Every answer, misses included,
is cached under a normalised key (lower-cased, trimmed, whitespace
collapsed) so "Roswell,  NM" and "roswell, nm" cost one request.

A miss is Mapbox answering with no features. HTTP errors, timeouts and
unreadable bodies raise GeocodingUnavailableError instead and are not
cached, so the same place is tried again on the next run.
"""

import asyncio
import logging
import time
from typing import Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from paradocs.core.config import settings
from paradocs.core.errors import GeocodingUnavailableError, StoreUnavailableError
from paradocs.models.report import Report

logger = logging.getLogger(__name__)

MAPBOX_BASE_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places"
MAPBOX_TYPES = "place,locality,neighborhood,address,poi"


class GeocodeResult(BaseModel):
    latitude: float
    longitude: float
    display_name: str
    confidence: float


def normalize_query(query: str) -> str:
    return " ".join(query.lower().split())


def build_location_query(
    city: Optional[str] = None,
    state: Optional[str] = None,
    country: Optional[str] = None,
    location_name: Optional[str] = None,
) -> str:
    """
    Best query string for a report's location fields.

    A location_name that already looks complete (has a comma or three+
    words) is used as-is; otherwise "city, state, country" is assembled,
    falling back to the bare location_name.
    """
    if location_name and ("," in location_name or len(location_name.split()) >= 3):
        return location_name
    parts = [p for p in (city, state, country) if p]
    if not parts and location_name:
        return location_name
    return ", ".join(parts)


class Geocoder:
    """
    Thin async wrapper around Mapbox forward geocoding.

    `transport` lets tests inject an httpx.MockTransport.
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        min_interval: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.access_token = access_token if access_token is not None else settings.mapbox_access_token
        self.min_interval = min_interval if min_interval is not None else settings.geocode_min_interval_seconds
        self.enabled = bool(self.access_token)
        self._transport = transport
        self._cache: dict[str, Optional[GeocodeResult]] = {}
        self._lock = asyncio.Lock()
        self._last_call = 0.0
        self.requests_made = 0

        if not self.enabled:
            logger.warning("MAPBOX_ACCESS_TOKEN not set — geocoding disabled.")

    async def geocode(self, query: str) -> Optional[GeocodeResult]:
        """
        Resolve `query` to coordinates.

        Returns None if not configured, the query is too short, or Mapbox
        has no match. Raises GeocodingUnavailableError when the request
        fails; that outcome is not cached.
        """
        if not self.enabled or not query or len(query.strip()) < 3:
            return None

        key = normalize_query(query)
        if key in self._cache:
            return self._cache[key]

        async with self._lock:
            # A concurrent caller may have resolved it while we waited
            if key in self._cache:
                return self._cache[key]
            wait = self._last_call + self.min_interval - time.monotonic()
            if wait > 0:
                await asyncio.sleep(wait)
            try:
                result = await self._request(query)
            finally:
                self._last_call = time.monotonic()
                self.requests_made += 1
            self._cache[key] = result
            return result

    async def _request(self, query: str) -> Optional[GeocodeResult]:
        url = f"{MAPBOX_BASE_URL}/{quote(query.strip(), safe='')}.json"
        params = {"access_token": self.access_token, "limit": 1, "types": MAPBOX_TYPES}

        async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
            try:
                response = await client.get(url, params=params)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as exc:
                logger.error("Mapbox API error: %s for %r", exc.response.status_code, query)
                raise GeocodingUnavailableError(query, exc) from exc
            except (httpx.HTTPError, ValueError) as exc:
                logger.error("Mapbox request failed for %r: %s", query, exc)
                raise GeocodingUnavailableError(query, exc) from exc

        features = data.get("features") or []
        if not features:
            logger.info("No geocoding results for %r", query)
            return None

        feature = features[0]
        lng, lat = feature["center"]
        return GeocodeResult(
            latitude=lat,
            longitude=lng,
            display_name=feature.get("place_name", query),
            confidence=feature.get("relevance") or 0.5,
        )

def query_for_report(report: Report) -> str:
    return build_location_query(
        city=report.city,
        state=report.state_province,
        country=report.country,
        location_name=report.location_name,
    )


async def geocode_pending_reports(store, geocoder: Geocoder, limit: int) -> tuple[int, list[str]]:
    """
    Fill coordinates for up to `limit` approved reports that lack them.

    Returns (reports updated, error messages). A store failure on one
    report is recorded and the sweep moves on. When Mapbox itself is
    unavailable the sweep stops and the report is left for the next run.
    """
    if not geocoder.enabled or limit <= 0:
        return 0, []

    reports = await store.fetch_reports_to_geocode(limit)
    updated = 0
    errors: list[str] = []
    for report in reports:
        query = query_for_report(report)
        try:
            result = await geocoder.geocode(query)
        except GeocodingUnavailableError as exc:
            logger.warning("Geocoding paused at report %s: %s", report.id, exc)
            errors.append(f"geocode {report.id}: {exc}")
            break
        try:
            if result is None:
                await store.mark_geocode_failed(report.id)
                continue
            await store.set_report_coordinates(report.id, result.latitude, result.longitude)
            updated += 1
        except StoreUnavailableError as exc:
            logger.warning("Could not save coordinates for report %s: %s", report.id, exc)
            errors.append(f"geocode {report.id}: {exc}")

    logger.info("Geocoded %d of %d pending reports", updated, len(reports))
    return updated, errors


# Module-level singleton: the cache outlives a single cron invocation
geocoder = Geocoder()
