from __future__ import annotations

import time
from collections.abc import Sequence
from typing import Any

import httpx
from django.conf import settings

from charge_planner.exceptions import ExternalServiceError
from charge_planner.services.types import GeoPoint


class ElevationClient:
    """Open-Elevation compatible lookups, sent in fixed-size batches."""

    def __init__(self) -> None:
        self.base_url = settings.ELEVATION_BASE_URL.rstrip("/")
        self.timeout = settings.ELEVATION_TIMEOUT_SECONDS
        self.retry_count = settings.ELEVATION_RETRY_COUNT
        self.batch_size = settings.ELEVATION_BATCH_SIZE

    def lookup(self, points: Sequence[GeoPoint]) -> list[float]:
        elevations: list[float] = []
        for start in range(0, len(points), self.batch_size):
            batch = points[start : start + self.batch_size]
            elevations.extend(self._lookup_batch(batch))
        return elevations

    def _lookup_batch(self, batch: Sequence[GeoPoint]) -> list[float]:
        endpoint = f"{self.base_url}/api/v1/lookup"
        body = {
            "locations": [
                {"latitude": point.latitude, "longitude": point.longitude} for point in batch
            ]
        }

        for attempt in range(self.retry_count + 1):
            try:
                response = httpx.post(endpoint, json=body, timeout=self.timeout)
                response.raise_for_status()
                return self._parse_response(response.json(), expected=len(batch))
            except ValueError as exc:
                raise ExternalServiceError("Elevation service returned invalid JSON") from exc
            except httpx.HTTPError as exc:
                if attempt >= self.retry_count:
                    raise ExternalServiceError("Elevation request failed") from exc
                time.sleep(0.3 * (attempt + 1))

        raise ExternalServiceError("Elevation request failed")

    @staticmethod
    def _parse_response(payload: Any, expected: int) -> list[float]:
        results = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(results, list) or len(results) != expected:
            raise ExternalServiceError("Elevation service returned an unexpected payload")
        try:
            return [float(result.get("elevation") or 0.0) for result in results]
        except (TypeError, ValueError, AttributeError) as exc:
            raise ExternalServiceError("Elevation service returned an unexpected payload") from exc
