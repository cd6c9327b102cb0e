"""
CTA Train Tracker API client.
"""

import logging
from typing import Any, Dict, List, Sequence, Tuple

from ..data.models import LivePrediction, VehicleState
from ..exceptions import ProviderUnavailable
from .base import JsonApiClient, RouteFeed
from .schemas import TrainArrivalRecord, TrainPositionRecord, validate_records

logger = logging.getLogger(__name__)

DEFAULT_TRAIN_BASE_URL = 'https://lapi.transitchicago.com/api/1.0'

# Line names used in the topology -> Train Tracker route codes
TRAIN_ROUTE_CODES: Dict[str, str] = {
    'Red': 'red',
    'Blue': 'blue',
    'Brown': 'brn',
    'Green': 'G',
    'Orange': 'org',
    'Purple': 'P',
    'Pink': 'pink',
    'Yellow': 'Y',
}


def route_code(route_id: str) -> str:
    return TRAIN_ROUTE_CODES.get(route_id, route_id.lower())


class TrainTrackerClient(JsonApiClient):
    """
    Fetch train positions and arrival estimates for CTA 'L' lines.

    Positions give each train's next station; arrivals per station fill in
    the stations further down the line.
    """

    provider_name = 'cta-train'

    def __init__(self, api_key: str, base_url: str = DEFAULT_TRAIN_BASE_URL, **kwargs):
        super().__init__(base_url, **kwargs)
        self.api_key = api_key

    def _call(self, endpoint: str, **params) -> Dict[str, Any]:
        payload = self.get_json(endpoint, {'key': self.api_key, 'outputType': 'JSON', **params})
        body = payload.get('ctatt') if isinstance(payload, dict) else None
        if not isinstance(body, dict):
            raise ProviderUnavailable(f"{self.provider_name}: unexpected {endpoint} payload",
                                      provider=self.provider_name)
        error_code = str(body.get('errCd', '0'))
        if error_code != '0':
            raise ProviderUnavailable(f"{self.provider_name} {endpoint} error {error_code}: {body.get('errNm')}",
                                      provider=self.provider_name)
        return body

    @staticmethod
    def _as_list(value: Any) -> List[Any]:
        # Single results come back as an object instead of a one-element list
        if value is None:
            return []
        return value if isinstance(value, list) else [value]

    def get_positions(self, route_id: str) -> Tuple[List[LivePrediction], List[VehicleState]]:
        """
        Live positions of every train on a line.

        Returns:
            (next-station predictions, vehicle states)
        """
        body = self._call('ttpositions.aspx', rt=route_code(route_id))
        rows = []
        for route in self._as_list(body.get('route')):
            if isinstance(route, dict):
                rows.extend(self._as_list(route.get('train')))

        predictions, vehicles = [], []
        for record in validate_records(TrainPositionRecord, rows, 'train position'):
            generated_at = self.localize(record.generated_at)
            predictions.append(LivePrediction(
                route_id=route_id,
                stop_id=record.next_station_id,
                vehicle_id=record.run_number,
                predicted_time=self.localize(record.arrival_time),
                generated_at=generated_at,
                delayed=record.delayed,
                direction=record.destination_name,
            ))
            vehicles.append(VehicleState(
                vehicle_id=record.run_number,
                route_id=route_id,
                lat=record.lat,
                lon=record.lon,
                heading=record.heading,
                delayed=record.delayed,
                observed_at=generated_at,
            ))
        return predictions, vehicles

    def get_arrivals(self, station_id: str, route_id: str) -> List[LivePrediction]:
        """Live arrival estimates of a line's trains at one station; schedule-based ones are skipped."""
        body = self._call('ttarrivals.aspx', mapid=station_id, rt=route_code(route_id))
        predictions = []
        for record in validate_records(TrainArrivalRecord, self._as_list(body.get('eta')), 'train arrival'):
            if record.scheduled:
                continue
            predictions.append(LivePrediction(
                route_id=route_id,
                stop_id=record.station_id,
                vehicle_id=record.run_number,
                predicted_time=self.localize(record.arrival_time),
                generated_at=self.localize(record.generated_at),
                delayed=record.delayed,
                direction=record.destination_name,
            ))
        return predictions

    def fetch_route(self, route_id: str, stop_ids: Sequence[str] = ()) -> RouteFeed:
        predictions, vehicles = self.get_positions(route_id)
        seen = {(p.vehicle_id, p.stop_id) for p in predictions}
        for station_id in stop_ids:
            for prediction in self.get_arrivals(station_id, route_id):
                if (prediction.vehicle_id, prediction.stop_id) not in seen:
                    seen.add((prediction.vehicle_id, prediction.stop_id))
                    predictions.append(prediction)
        logger.debug(f"{self.provider_name}: line {route_id} -> {len(predictions)} predictions, "
                     f"{len(vehicles)} trains")
        return RouteFeed(route_id=route_id, predictions=tuple(predictions), vehicles=tuple(vehicles))
