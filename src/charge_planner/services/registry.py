from __future__ import annotations

import logging
import re
from typing import Any

import httpx
from django.conf import settings

from charge_planner.exceptions import ExternalServiceError, RateLimitedError
from charge_planner.services.types import GeoPoint, Station

logger = logging.getLogger(__name__)

OPERATIONAL_STATUS_ID = 50
PRICE_PATTERN = re.compile(r"(\d+(?:[.,]\d+)?)")
KNOWN_AMENITIES = ("restroom", "cafe", "restaurant", "shop", "wifi")


class OpenChargeMapClient:
    """Single-shot queries against the OpenChargeMap ``/poi`` endpoint.

    Retries and rate limiting belong to the caller; this client only maps HTTP
    429 to ``RateLimitedError`` and everything else to ``ExternalServiceError``.
    """

    def __init__(self, http_client: httpx.Client | None = None) -> None:
        self.base_url = settings.OCM_BASE_URL.rstrip("/")
        self.api_key = settings.OCM_API_KEY
        self.timeout = settings.OCM_TIMEOUT_SECONDS
        self.max_results = settings.OCM_MAX_RESULTS
        self.http_client = http_client or httpx.Client(
            timeout=self.timeout,
            headers={"User-Agent": settings.OCM_USER_AGENT},
        )

    def search(self, point: GeoPoint, radius_km: float) -> list[Station]:
        params: dict[str, Any] = {
            "output": "json",
            "latitude": f"{point.latitude:.6f}",
            "longitude": f"{point.longitude:.6f}",
            "distance": radius_km,
            "distanceunit": "KM",
            "maxresults": self.max_results,
            "compact": "true",
            "verbose": "false",
            "statustypeid": OPERATIONAL_STATUS_ID,
        }
        if self.api_key:
            params["key"] = self.api_key

        try:
            response = self.http_client.get(f"{self.base_url}/poi/", params=params)
        except httpx.HTTPError as exc:
            raise ExternalServiceError("Station registry request failed") from exc

        if response.status_code == 429:
            raise RateLimitedError("Station registry rate limit reached")
        try:
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ExternalServiceError("Station registry request failed") from exc

        if not isinstance(payload, list):
            raise ExternalServiceError("Station registry returned an unexpected payload")

        stations = []
        for record in payload:
            try:
                station = parse_station(record)
            except (TypeError, ValueError, AttributeError) as exc:
                logger.warning("Skipping malformed registry record: %s", exc)
                continue
            if station is not None:
                stations.append(station)
        return stations


def parse_station(record: dict[str, Any]) -> Station | None:
    address_info = record.get("AddressInfo") or {}
    latitude = address_info.get("Latitude")
    longitude = address_info.get("Longitude")
    station_id = record.get("ID")
    if latitude is None or longitude is None or station_id is None:
        logger.debug("Skipping registry record without id or coordinates: %s", station_id)
        return None

    connections = record.get("Connections") or []
    power_kw = 0.0
    connector_types: set[str] = set()
    for connection in connections:
        power_kw = max(power_kw, _connection_power_kw(connection))
        connection_type = connection.get("ConnectionType") or {}
        for key in ("Title", "FormalName"):
            title = connection_type.get(key)
            if title:
                connector_types.add(str(title))

    status_type = record.get("StatusType") or {}
    operator = record.get("OperatorInfo") or {}
    name = address_info.get("Title") or operator.get("Title") or f"Station {station_id}"
    address = ", ".join(
        str(part)
        for part in (
            address_info.get("AddressLine1"),
            address_info.get("Town"),
            address_info.get("Postcode"),
        )
        if part
    )

    return Station(
        station_id=str(station_id),
        name=str(name),
        location=GeoPoint(latitude=float(latitude), longitude=float(longitude)),
        power_kw=power_kw,
        connector_types=frozenset(connector_types),
        price_per_kwh=_parse_price(record.get("UsageCost")),
        rating=_average_rating(record.get("UserComments") or []),
        operational=status_type.get("IsOperational", True) is not False,
        amenities=frozenset(_amenities(record)),
        address=address,
    )


def _connection_power_kw(connection: dict[str, Any]) -> float:
    power_kw = connection.get("PowerKW")
    if power_kw:
        return float(power_kw)

    level = connection.get("Level") or {}
    level_title = str(level.get("Title") or "")
    if level.get("IsFastChargeCapable") or any(
        marker in level_title for marker in ("Level 3", "DC", "Fast")
    ):
        return 50.0
    if "Level 2" in level_title:
        return 22.0
    return 7.0


def _parse_price(usage_cost: Any) -> float | None:
    if not usage_cost:
        return None
    match = PRICE_PATTERN.search(str(usage_cost))
    if match is None:
        return None
    return float(match.group(1).replace(",", "."))


def _average_rating(comments: list[dict[str, Any]]) -> float:
    ratings = [float(comment["Rating"]) for comment in comments if comment.get("Rating")]
    if not ratings:
        return 0.0
    return sum(ratings) / len(ratings)


def _amenities(record: dict[str, Any]) -> list[str]:
    # OCM has no structured amenity field.
    comments = str((record.get("AddressInfo") or {}).get("AccessComments") or "").lower()
    return [amenity for amenity in KNOWN_AMENITIES if amenity in comments]
