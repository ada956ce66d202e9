from __future__ import annotations

import httpx
import pytest

from charge_planner.exceptions import ExternalServiceError, RateLimitedError
from charge_planner.services.registry import OpenChargeMapClient, parse_station
from charge_planner.services.types import GeoPoint

POINT = GeoPoint(latitude=41.0082, longitude=28.9784)


def _record(**overrides) -> dict:
    record = {
        "ID": 1234,
        "AddressInfo": {
            "Title": "Kadikoy Hub",
            "AddressLine1": "Moda Cd. 1",
            "Town": "Istanbul",
            "Postcode": "34710",
            "Latitude": 40.99,
            "Longitude": 29.03,
            "AccessComments": "24/7, restroom and cafe inside the mall",
        },
        "Connections": [
            {
                "PowerKW": 150,
                "ConnectionType": {"Title": "CCS (Type 2)", "FormalName": "IEC 62196-3"},
            },
            {"PowerKW": 22, "ConnectionType": {"Title": "Type 2 (Socket Only)"}},
        ],
        "StatusType": {"IsOperational": True},
        "UsageCost": "7,50 TRY/kWh",
        "UserComments": [{"Rating": 4}, {"Rating": 5}, {"Rating": None}],
    }
    record.update(overrides)
    return record


def _client(handler) -> OpenChargeMapClient:
    return OpenChargeMapClient(http_client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_parse_station_maps_registry_fields() -> None:
    station = parse_station(_record())

    assert station is not None
    assert station.station_id == "1234"
    assert station.name == "Kadikoy Hub"
    assert station.location == GeoPoint(latitude=40.99, longitude=29.03)
    assert station.power_kw == 150.0
    assert station.connector_types == frozenset(
        {"CCS (Type 2)", "IEC 62196-3", "Type 2 (Socket Only)"}
    )
    assert station.price_per_kwh == pytest.approx(7.5)
    assert station.rating == pytest.approx(4.5)
    assert station.operational
    assert station.amenities == frozenset({"restroom", "cafe"})
    assert station.address == "Moda Cd. 1, Istanbul, 34710"


def test_parse_station_infers_missing_power_from_level() -> None:
    station = parse_station(
        _record(
            Connections=[
                {"Level": {"Title": "Level 3:  High (Over 40kW)"}, "ConnectionType": {}},
                {"Level": {"Title": "Level 2 : Medium (Over 2kW)"}},
            ],
            UsageCost=None,
            UserComments=None,
            StatusType={"IsOperational": False},
        )
    )

    assert station is not None
    assert station.power_kw == 50.0
    assert station.price_per_kwh is None
    assert station.rating == 0.0
    assert not station.operational


def test_parse_station_skips_records_without_coordinates() -> None:
    assert parse_station(_record(AddressInfo={"Title": "Nowhere"})) is None
    assert parse_station(_record(ID=None)) is None


def test_search_sends_query_and_parses_payload(settings) -> None:
    settings.OCM_API_KEY = "secret"
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[_record(), {"ID": 99}])

    stations = _client(handler).search(POINT, 15.0)

    assert [station.station_id for station in stations] == ["1234"]
    params = seen[0].url.params
    assert seen[0].url.path.endswith("/poi/")
    assert params["latitude"] == "41.008200"
    assert params["distance"] == "15.0"
    assert params["distanceunit"] == "KM"
    assert params["statustypeid"] == "50"
    assert params["key"] == "secret"


def test_search_maps_429_to_rate_limited() -> None:
    client = _client(lambda request: httpx.Response(429))

    with pytest.raises(RateLimitedError):
        client.search(POINT, 15.0)


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503),
        httpx.Response(200, json={"error": "bad"}),
        httpx.Response(200, content=b"not json"),
    ],
)
def test_search_maps_other_failures_to_external_service_error(response) -> None:
    client = _client(lambda request: response)

    with pytest.raises(ExternalServiceError) as excinfo:
        client.search(POINT, 15.0)

    assert not isinstance(excinfo.value, RateLimitedError)
