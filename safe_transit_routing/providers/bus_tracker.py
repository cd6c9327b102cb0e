"""
CTA Bus Tracker API v2 client.
"""

import logging
from typing import Any, Dict, List, Sequence

from ..data.models import LivePrediction, VehicleState
from ..exceptions import ProviderUnavailable
from .base import JsonApiClient, RouteFeed
from .schemas import BusPredictionRecord, BusVehicleRecord, validate_records

logger = logging.getLogger(__name__)

DEFAULT_BUS_BASE_URL = 'http://www.ctabustracker.com/bustime/api/v2'

# getpredictions accepts at most this many stop ids per call
MAX_STOPS_PER_CALL = 10

# Error messages that mean "nothing right now" rather than a failure
NO_DATA_MESSAGES = ('no data found', 'no service scheduled', 'no arrival times')


class BusTrackerClient(JsonApiClient):
    """Fetch predictions and vehicle positions for CTA bus routes."""

    provider_name = 'cta-bus'

    def __init__(self, api_key: str, base_url: str = DEFAULT_BUS_BASE_URL, **kwargs):
        super().__init__(base_url, **kwargs)
        self.api_key = api_key

    def _call(self, endpoint: str, key: str, **params) -> List[Dict[str, Any]]:
        payload = self.get_json(endpoint, {'key': self.api_key, 'format': 'json', **params})
        body = payload.get('bustime-response') if isinstance(payload, dict) else None
        if not isinstance(body, dict):
            raise ProviderUnavailable(f"{self.provider_name}: unexpected {endpoint} payload",
                                      provider=self.provider_name)

        errors = body.get('error') or []
        rows = body.get(key) or []
        if errors and not rows:
            messages = [str(e.get('msg', '')) for e in errors if isinstance(e, dict)]
            if all(any(m in msg.lower() for m in NO_DATA_MESSAGES) for msg in messages):
                logger.debug(f"{self.provider_name} {endpoint}: {'; '.join(messages)}")
                return []
            raise ProviderUnavailable(f"{self.provider_name} {endpoint} error: {'; '.join(messages)}",
                                      provider=self.provider_name)
        return rows if isinstance(rows, list) else [rows]

    def get_predictions(self, route_id: str, stop_ids: Sequence[str]) -> List[LivePrediction]:
        """
        Predicted arrivals of a route's vehicles at the given stops.

        Args:
            route_id: Bus route designator, e.g. '22'
            stop_ids: Stop ids to ask about (batched ten per call)

        Returns:
            Validated predictions; empty when the route has no active vehicles
        """
        predictions = []
        for i in range(0, len(stop_ids), MAX_STOPS_PER_CALL):
            batch = stop_ids[i:i + MAX_STOPS_PER_CALL]
            rows = self._call('getpredictions', 'prd', rt=route_id, stpid=','.join(batch))
            for record in validate_records(BusPredictionRecord, rows, 'bus prediction'):
                predictions.append(LivePrediction(
                    route_id=record.route,
                    stop_id=record.stop_id,
                    vehicle_id=record.vehicle_id,
                    predicted_time=self.localize(record.predicted_time),
                    generated_at=self.localize(record.generated_at),
                    delayed=record.delayed,
                    direction=record.direction,
                ))
        return predictions

    def get_vehicles(self, route_id: str) -> List[VehicleState]:
        rows = self._call('getvehicles', 'vehicle', rt=route_id)
        return [
            VehicleState(
                vehicle_id=record.vehicle_id,
                route_id=record.route,
                lat=record.lat,
                lon=record.lon,
                heading=record.heading,
                delayed=record.delayed,
                observed_at=self.localize(record.observed_at),
            )
            for record in validate_records(BusVehicleRecord, rows, 'bus vehicle')
        ]

    def fetch_route(self, route_id: str, stop_ids: Sequence[str] = ()) -> RouteFeed:
        predictions = self.get_predictions(route_id, list(stop_ids)) if stop_ids else []
        vehicles = self.get_vehicles(route_id)
        logger.debug(f"{self.provider_name}: route {route_id} -> {len(predictions)} predictions, "
                     f"{len(vehicles)} vehicles")
        return RouteFeed(route_id=route_id, predictions=tuple(predictions), vehicles=tuple(vehicles))
