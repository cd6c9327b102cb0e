"""
Turn a searched edge path into an Itinerary of human-readable legs.
"""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import geojson

from ...config.routing_config import RoutingConfig
from ...data.models import (
    Confidence,
    Itinerary,
    Leg,
    SafetyAssessment,
    SafetyConfidence,
    Stop,
    TransitEdge,
    TransitMode,
    worst_confidence,
)

logger = logging.getLogger(__name__)


class ResponseAssembler:
    """
    Build itineraries from edge paths.

    Consecutive walk edges become one walk leg and consecutive hops of the
    same trip become one ride leg. Times are replayed from the departure
    time so every leg starts no earlier than the previous one ended.
    """

    def __init__(self, config: Optional[RoutingConfig] = None):
        self.config = config or RoutingConfig()

    def assemble(self, path: Sequence[TransitEdge], stops: Mapping[str, Stop],
                 depart_after: Optional[datetime] = None,
                 assessments: Optional[Mapping[str, SafetyAssessment]] = None) -> Itinerary:
        """
        Assemble one itinerary.

        Args:
            path: Contiguous edges from origin to destination
            stops: Stop lookup of the snapshot the path came from
            depart_after: Time the rider is ready to leave; defaults to the first edge's departure
            assessments: Safety assessment per edge id (wait edges need none)

        Returns:
            Itinerary with aggregate time and safety costs

        Raises:
            ValueError: If the path is empty or not contiguous
        """
        if not path:
            raise ValueError("Cannot assemble an empty path")
        for previous, edge in zip(path, path[1:]):
            if previous.destination != edge.origin:
                raise ValueError(f"Path is not contiguous at {previous.edge_id} -> {edge.edge_id}")

        assessments = assessments or {}
        timed = self._replay_times(path, depart_after)
        legs = [self._build_leg(group, stops) for group in self._group_edges(timed)]

        start = depart_after or legs[0].start_time
        total_duration = max((legs[-1].end_time - start).total_seconds(), 0.0)

        risks = []
        low_confidence = False
        for edge in path:
            if edge.mode == TransitMode.WAIT:
                continue
            assessment = assessments.get(edge.edge_id)
            if assessment is None:
                continue
            risks.append(assessment.score)
            low_confidence = low_confidence or assessment.confidence == SafetyConfidence.LOW

        return Itinerary(
            legs=tuple(legs),
            total_duration_s=total_duration,
            time_cost=total_duration / self.config.time_normalization_s,
            safety_cost=sum(risks) / 100.0,
            confidence=worst_confidence(leg.confidence for leg in legs),
            safety_confidence=SafetyConfidence.LOW if low_confidence else SafetyConfidence.HIGH,
            max_risk=max(risks, default=0.0),
            link_keys=frozenset(e.link_key for e in path if e.mode != TransitMode.WAIT),
        )

    def empty_itinerary(self) -> Itinerary:
        """Itinerary for a trip that starts at its destination."""
        return Itinerary(legs=(), total_duration_s=0.0, time_cost=0.0, safety_cost=0.0,
                         confidence=Confidence.LIVE)

    def _replay_times(self, path: Sequence[TransitEdge],
                      depart_after: Optional[datetime]) -> List[Tuple[TransitEdge, datetime, datetime]]:
        """Clock each edge so times never run backwards along the chain."""
        cursor = depart_after
        timed = []
        for edge in path:
            if edge.is_timed:
                start = edge.departure if cursor is None else max(edge.departure, cursor)
                end = max(edge.arrival, start)
            else:
                if cursor is None:
                    raise ValueError("Path starting with an untimed edge needs a departure time")
                start = cursor
                end = cursor + timedelta(seconds=edge.walk_seconds)
            timed.append((edge, start, end))
            cursor = end
        return timed

    @staticmethod
    def _group_edges(timed: Sequence[Tuple[TransitEdge, datetime, datetime]]
                     ) -> List[List[Tuple[TransitEdge, datetime, datetime]]]:
        groups: List[List[Tuple[TransitEdge, datetime, datetime]]] = []
        for item in timed:
            edge = item[0]
            if groups:
                last = groups[-1][-1][0]
                same_walk = edge.mode == last.mode and edge.mode in (TransitMode.WALK, TransitMode.WAIT)
                same_trip = edge.is_timed and last.is_timed and edge.trip_id == last.trip_id
                if same_walk or same_trip:
                    groups[-1].append(item)
                    continue
            groups.append([item])
        return groups

    def _build_leg(self, group: Sequence[Tuple[TransitEdge, datetime, datetime]],
                   stops: Mapping[str, Stop]) -> Leg:
        first, start_time, _ = group[0]
        last, _, end_time = group[-1]

        polyline: List[Tuple[float, float]] = []
        for edge, _, _ in group:
            for point in edge.polyline:
                if not polyline or polyline[-1] != tuple(point):
                    polyline.append(tuple(point))

        start_stop = stops[first.origin]
        end_stop = stops[last.destination]
        leg = Leg(
            mode=first.mode,
            start_stop=start_stop,
            end_stop=end_stop,
            start_time=start_time,
            end_time=end_time,
            polyline=tuple(polyline),
            route_id=first.route_id,
            trip_id=first.trip_id,
            confidence=worst_confidence(edge.confidence for edge, _, _ in group),
        )
        return replace(leg, description=self.describe(leg))

    @staticmethod
    def describe(leg: Leg) -> str:
        """One-line instruction for a leg."""
        if leg.mode == TransitMode.WALK:
            return f"Walk to {leg.end_stop.name}"
        if leg.mode == TransitMode.WAIT:
            minutes = max(1, int(round(leg.duration_s / 60)))
            return f"Wait {minutes} min at {leg.start_stop.name}"
        if leg.mode == TransitMode.BUS:
            return f"Take Bus {leg.route_id} to {leg.end_stop.name}"
        return f"Take {leg.route_id} Line train to {leg.end_stop.name}"

    def to_feature_collection(self, itinerary: Itinerary) -> geojson.FeatureCollection:
        """
        GeoJSON view of an itinerary: one LineString per leg plus start and end points.

        Coordinates follow GeoJSON (lon, lat) order.
        """
        features = []
        for index, leg in enumerate(itinerary.legs):
            coordinates = [(lon, lat) for lat, lon in leg.polyline]
            if len(coordinates) < 2:
                coordinates = [(leg.start_stop.lon, leg.start_stop.lat),
                               (leg.end_stop.lon, leg.end_stop.lat)]
            features.append(geojson.Feature(
                geometry=geojson.LineString(coordinates),
                properties=self._leg_properties(index, leg),
            ))

        if itinerary.legs:
            first, last = itinerary.legs[0], itinerary.legs[-1]
            features.append(geojson.Feature(
                geometry=geojson.Point((first.start_stop.lon, first.start_stop.lat)),
                properties={'type': 'start', 'stop_id': first.start_stop.stop_id, 'name': first.start_stop.name},
            ))
            features.append(geojson.Feature(
                geometry=geojson.Point((last.end_stop.lon, last.end_stop.lat)),
                properties={'type': 'end', 'stop_id': last.end_stop.stop_id, 'name': last.end_stop.name},
            ))

        return geojson.FeatureCollection(features)

    @staticmethod
    def _leg_properties(index: int, leg: Leg) -> Dict[str, Any]:
        return {
            'type': 'leg',
            'index': index,
            'mode': leg.mode.value,
            'route_id': leg.route_id,
            'description': leg.description,
            'start_time': leg.start_time.isoformat(),
            'end_time': leg.end_time.isoformat(),
            'confidence': leg.confidence.value,
        }
