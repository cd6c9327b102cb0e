"""
Time-expanded transit graph construction.

Combines the static route topology with live arrival predictions into an
immutable, versioned GraphSnapshot. Ride edges are individual trip hops with
fixed departure and arrival times; walk edges connect nearby stops and can be
started at any time.
"""

import bisect
import itertools
import logging
import math
import threading
from datetime import datetime, time, timedelta
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple
from types import MappingProxyType
from zoneinfo import ZoneInfo

import networkx as nx
import numpy as np
from scipy.spatial import cKDTree

from ..config.routing_config import RoutingConfig
from ..exceptions import TopologyLoadError
from ..data.distance_utils import METERS_PER_DEGREE_LAT, haversine_distance
from ..data.models import (
    Confidence,
    LivePrediction,
    RoutePattern,
    RouteStatus,
    RouteTopology,
    Stop,
    TransitEdge,
    TransitMode,
    VehicleState,
)

logger = logging.getLogger(__name__)


def _project(lat: np.ndarray, lon: np.ndarray, ref_lat: float) -> np.ndarray:
    """Equirectangular projection to meters around ``ref_lat``."""
    x = lon * METERS_PER_DEGREE_LAT * math.cos(math.radians(ref_lat))
    y = lat * METERS_PER_DEGREE_LAT
    return np.column_stack([x, y])


class GraphSnapshot:
    """
    Immutable, versioned view of the transit graph at a point in time.

    Readers may hold a snapshot for as long as they like; a refresh publishes
    a new snapshot instead of touching this one.
    """

    def __init__(self, version: int, as_of: datetime, horizon_end: datetime,
                 graph: nx.MultiDiGraph, stops: Mapping[str, Stop],
                 route_status: Mapping[str, RouteStatus],
                 predictions: Mapping[str, Tuple[LivePrediction, ...]],
                 vehicles: Sequence[VehicleState] = ()):
        self.version = version
        self.as_of = as_of
        self.horizon_end = horizon_end
        self.graph = nx.freeze(graph)
        self.stops = MappingProxyType(dict(stops))
        self.route_status = MappingProxyType(dict(route_status))
        self.predictions = MappingProxyType(dict(predictions))
        self.vehicles = tuple(vehicles)

        self._departures: Dict[str, Tuple[List[datetime], List[TransitEdge]]] = {}
        self._walks: Dict[str, Tuple[TransitEdge, ...]] = {}
        self._index_edges()

        self._stop_ids = list(self.stops)
        self._ref_lat = float(np.mean([s.lat for s in self.stops.values()])) if self.stops else 0.0
        if self._stop_ids:
            lats = np.array([self.stops[s].lat for s in self._stop_ids])
            lons = np.array([self.stops[s].lon for s in self._stop_ids])
            self._stop_tree: Optional[cKDTree] = cKDTree(_project(lats, lons, self._ref_lat))
        else:
            self._stop_tree = None

    def _index_edges(self) -> None:
        """Sort ride edges by effective departure per stop for bisect lookups."""
        rides: Dict[str, List[TransitEdge]] = {}
        walks: Dict[str, List[TransitEdge]] = {}
        trips: Dict[str, List[TransitEdge]] = {}
        for _, _, edge in self.graph.edges(data='edge'):
            if edge.is_timed:
                rides.setdefault(edge.origin, []).append(edge)
                trips.setdefault(edge.trip_id, []).append(edge)
            else:
                walks.setdefault(edge.origin, []).append(edge)
        for stop_id, edges in rides.items():
            edges.sort(key=lambda e: (e.departure, e.edge_id))
            self._departures[stop_id] = ([e.departure for e in edges], edges)
        self._walks = {stop_id: tuple(edges) for stop_id, edges in walks.items()}

        self._next_hop: Dict[str, TransitEdge] = {}
        for hops in trips.values():
            hops.sort(key=lambda e: e.scheduled_departure)
            for current, following in zip(hops, hops[1:]):
                if current.destination == following.origin:
                    self._next_hop[current.edge_id] = following

    @property
    def edge_count(self) -> int:
        return self.graph.number_of_edges()

    def stop(self, stop_id: str) -> Stop:
        return self.stops[stop_id]

    def departures_from(self, stop_id: str, not_before: datetime) -> Iterator[TransitEdge]:
        """Ride edges leaving ``stop_id`` at or after ``not_before``, earliest first."""
        times, edges = self._departures.get(stop_id, ((), ()))
        start = bisect.bisect_left(times, not_before)
        return iter(edges[start:])

    def walk_edges_from(self, stop_id: str) -> Tuple[TransitEdge, ...]:
        return self._walks.get(stop_id, ())

    def next_hop(self, edge: TransitEdge) -> Optional[TransitEdge]:
        """The following hop of the same trip, if it is inside the horizon."""
        return self._next_hop.get(edge.edge_id)

    def nearest_stop(self, lat: float, lon: float,
                     max_distance_m: Optional[float] = None) -> Optional[Tuple[Stop, float]]:
        """
        Find the stop closest to a coordinate.

        Returns:
            (stop, distance in meters) or None if no stop is within ``max_distance_m``
        """
        if self._stop_tree is None:
            return None
        point = _project(np.array([lat]), np.array([lon]), self._ref_lat)[0]
        _, index = self._stop_tree.query(point)
        stop = self.stops[self._stop_ids[int(index)]]
        distance = haversine_distance(lat, lon, stop.lat, stop.lon)
        if max_distance_m is not None and distance > max_distance_m:
            return None
        return stop, distance

    def vehicles_for(self, route_id: str) -> Tuple[VehicleState, ...]:
        return tuple(v for v in self.vehicles if v.route_id == route_id)

    def confidence_counts(self) -> Dict[str, int]:
        counts = {Confidence.LIVE.value: 0, Confidence.SCHEDULED.value: 0}
        for _, _, edge in self.graph.edges(data='edge'):
            if edge.is_timed:
                counts[edge.confidence.value] += 1
        return counts


class TransitGraphBuilder:
    """
    Build GraphSnapshots from static topology and live predictions.

    Safe to call from the refresh worker while searches read older snapshots:
    the builder shares no mutable state with its output except the version
    counter, which is guarded by a lock.
    """

    def __init__(self, config: Optional[RoutingConfig] = None):
        """
        Initialize the graph builder.

        Args:
            config: Routing configuration parameters
        """
        self.config = config or RoutingConfig()
        self.tz = ZoneInfo(self.config.timezone)
        self._versions = itertools.count(1)
        self._version_lock = threading.Lock()

    def _next_version(self) -> int:
        with self._version_lock:
            return next(self._versions)

    def build_graph(self, topology: Optional[RouteTopology],
                    live_predictions: Iterable[LivePrediction],
                    as_of: datetime,
                    route_status: Optional[Mapping[str, RouteStatus]] = None,
                    vehicles: Sequence[VehicleState] = ()) -> GraphSnapshot:
        """
        Build a new graph snapshot.

        Args:
            topology: Static stops and route patterns
            live_predictions: Predictions from all providers; stale ones are ignored
            as_of: Snapshot reference time
            route_status: Status overrides per route (e.g. STALE after a failed fetch)
            vehicles: Latest vehicle positions

        Returns:
            GraphSnapshot with a version higher than any previously built

        Raises:
            TopologyLoadError: If topology is missing or empty
        """
        if topology is None or not topology.stops or not topology.routes:
            raise TopologyLoadError("Cannot build a transit graph without stops and routes")

        if as_of.tzinfo is None:
            as_of = as_of.replace(tzinfo=self.tz)
        horizon_end = as_of + timedelta(seconds=self.config.graph_horizon_s)

        predictions = tuple(live_predictions)
        fresh = self._fresh_predictions(predictions, as_of)

        graph = nx.MultiDiGraph()
        for stop in topology.stops.values():
            graph.add_node(stop.stop_id, name=stop.name, y=stop.lat, x=stop.lon)

        live_routes = set()
        for pattern in topology.routes:
            for edge in self._expand_pattern(pattern, topology, fresh, as_of, horizon_end):
                graph.add_edge(edge.origin, edge.destination, key=edge.edge_id, edge=edge)
                if edge.confidence == Confidence.LIVE:
                    live_routes.add(pattern.route_id)

        for edge in self._walk_edges(topology):
            graph.add_edge(edge.origin, edge.destination, key=edge.edge_id, edge=edge)

        status = {
            route_id: RouteStatus.FRESH if route_id in live_routes else RouteStatus.SCHEDULE_ONLY
            for route_id in topology.route_ids
        }
        if route_status:
            status.update(route_status)

        by_route: Dict[str, List[LivePrediction]] = {}
        for prediction in predictions:
            by_route.setdefault(prediction.route_id, []).append(prediction)

        snapshot = GraphSnapshot(
            version=self._next_version(),
            as_of=as_of,
            horizon_end=horizon_end,
            graph=graph,
            stops=topology.stops,
            route_status=status,
            predictions={route: tuple(items) for route, items in by_route.items()},
            vehicles=vehicles,
        )

        counts = snapshot.confidence_counts()
        logger.info(f"Built graph snapshot v{snapshot.version}: {graph.number_of_nodes()} stops, "
                    f"{snapshot.edge_count} edges ({counts['live']} live, {counts['scheduled']} scheduled)")
        return snapshot

    def _fresh_predictions(self, predictions: Sequence[LivePrediction],
                           as_of: datetime) -> Dict[str, List[LivePrediction]]:
        """Group predictions newer than the staleness threshold by route."""
        threshold = as_of - timedelta(seconds=self.config.staleness_threshold_s)
        fresh: Dict[str, List[LivePrediction]] = {}
        stale = 0
        for prediction in predictions:
            if prediction.generated_at < threshold:
                stale += 1
                continue
            fresh.setdefault(prediction.route_id, []).append(prediction)
        if stale:
            logger.debug(f"Ignored {stale} predictions older than {self.config.staleness_threshold_s:.0f}s")
        return fresh

    def _trip_starts(self, pattern: RoutePattern, as_of: datetime,
                     horizon_end: datetime) -> List[datetime]:
        """
        Scheduled first-stop departures of trips that may overlap [as_of, horizon_end].

        Trips scheduled to finish up to one match window before ``as_of`` are
        kept, since a late vehicle can still be running them.
        """
        run_time = timedelta(seconds=sum(pattern.hop_seconds))
        lookback = timedelta(seconds=self.config.prediction_match_window_s)
        local_day = as_of.astimezone(self.tz).date()
        starts = []
        for offset in (-1, 0, 1):
            midnight = datetime.combine(local_day + timedelta(days=offset), time(0), tzinfo=self.tz)
            t = pattern.service_start_s
            while t <= pattern.service_end_s:
                start = midnight + timedelta(seconds=t)
                if start > horizon_end:
                    break
                if start + run_time + lookback >= as_of:
                    starts.append(start)
                t += pattern.headway_s
        return sorted(set(starts))

    def _assign_vehicles(self, pattern: RoutePattern, offsets: Sequence[float],
                         predictions: Sequence[LivePrediction],
                         trip_starts: Sequence[datetime]) -> Dict[datetime, Dict[str, LivePrediction]]:
        """
        Match predicted vehicles to scheduled trips of a pattern.

        Each vehicle's implied trip start is its earliest predicted arrival minus
        the scheduled offset of that stop; it takes the closest unassigned trip
        within the match window.

        Returns:
            Trip start -> {stop_id: prediction} for the vehicle running that trip
        """
        stop_offset = dict(zip(pattern.stop_ids, offsets))
        by_vehicle: Dict[str, Dict[str, LivePrediction]] = {}
        for prediction in predictions:
            if prediction.stop_id not in stop_offset:
                continue
            if (prediction.direction and pattern.direction and
                    prediction.direction.strip().lower() != pattern.direction.strip().lower()):
                continue
            stops = by_vehicle.setdefault(prediction.vehicle_id, {})
            current = stops.get(prediction.stop_id)
            if current is None or prediction.generated_at > current.generated_at:
                stops[prediction.stop_id] = prediction

        estimates = []
        for vehicle_id, stops in by_vehicle.items():
            first = min(stops.values(), key=lambda p: p.predicted_time)
            implied_start = first.predicted_time - timedelta(seconds=stop_offset[first.stop_id])
            estimates.append((implied_start, vehicle_id))
        estimates.sort()

        window = timedelta(seconds=self.config.prediction_match_window_s)
        assigned: Dict[datetime, Dict[str, LivePrediction]] = {}
        for implied_start, vehicle_id in estimates:
            candidates = [s for s in trip_starts
                          if s not in assigned and abs(s - implied_start) <= window]
            if not candidates:
                logger.debug(f"Route {pattern.pattern_id}: vehicle {vehicle_id} matches no scheduled trip")
                continue
            best = min(candidates, key=lambda s: abs(s - implied_start))
            assigned[best] = by_vehicle[vehicle_id]
        return assigned

    def _expand_pattern(self, pattern: RoutePattern, topology: RouteTopology,
                        fresh: Mapping[str, Sequence[LivePrediction]],
                        as_of: datetime, horizon_end: datetime) -> Iterator[TransitEdge]:
        """Yield one ride edge per hop of every trip inside the horizon."""
        offsets = list(itertools.accumulate(pattern.hop_seconds, initial=0.0))
        trip_starts = self._trip_starts(pattern, as_of, horizon_end)
        assigned = self._assign_vehicles(pattern, offsets, fresh.get(pattern.route_id, ()), trip_starts)

        for start in trip_starts:
            trip_id = f"{pattern.pattern_id}:{start.astimezone(self.tz):%Y%m%d%H%M}"
            vehicle_stops = assigned.get(start, {})
            vehicle_id = next(iter(vehicle_stops.values())).vehicle_id if vehicle_stops else None

            for i, (origin, destination) in enumerate(zip(pattern.stop_ids, pattern.stop_ids[1:])):
                departure = start + timedelta(seconds=offsets[i])
                arrival = start + timedelta(seconds=offsets[i + 1])

                predicted_departure = predicted_arrival = None
                confidence = Confidence.SCHEDULED
                origin_prediction = vehicle_stops.get(origin)
                if origin_prediction is not None:
                    predicted_departure = origin_prediction.predicted_time
                    dest_prediction = vehicle_stops.get(destination)
                    if dest_prediction is not None:
                        predicted_arrival = max(dest_prediction.predicted_time, predicted_departure)
                    else:
                        predicted_arrival = predicted_departure + timedelta(seconds=pattern.hop_seconds[i])
                    confidence = Confidence.LIVE

                # A late vehicle keeps hops whose predicted times are still ahead
                if (predicted_arrival or arrival) < as_of or (predicted_departure or departure) > horizon_end:
                    continue

                origin_stop = topology.stops[origin]
                dest_stop = topology.stops[destination]
                yield TransitEdge(
                    edge_id=f"{trip_id}:{i}",
                    origin=origin,
                    destination=destination,
                    mode=pattern.mode,
                    scheduled_departure=departure,
                    scheduled_arrival=arrival,
                    predicted_departure=predicted_departure,
                    predicted_arrival=predicted_arrival,
                    confidence=confidence,
                    route_id=pattern.route_id,
                    trip_id=trip_id,
                    vehicle_id=vehicle_id if confidence == Confidence.LIVE else None,
                    polyline=(origin_stop.coords, dest_stop.coords),
                )

    def _walk_edges(self, topology: RouteTopology) -> List[TransitEdge]:
        """Walk edges in both directions between stops within the transfer radius."""
        stop_ids = list(topology.stops)
        if len(stop_ids) < 2:
            return []
        lats = np.array([topology.stops[s].lat for s in stop_ids])
        lons = np.array([topology.stops[s].lon for s in stop_ids])
        tree = cKDTree(_project(lats, lons, float(lats.mean())))

        edges = []
        for i, j in sorted(tree.query_pairs(r=self.config.max_transfer_walk_m)):
            a, b = topology.stops[stop_ids[i]], topology.stops[stop_ids[j]]
            distance = haversine_distance(a.lat, a.lon, b.lat, b.lon)
            seconds = distance / self.config.walk_speed_mps
            for origin, destination in ((a, b), (b, a)):
                edges.append(TransitEdge(
                    edge_id=f"walk:{origin.stop_id}->{destination.stop_id}",
                    origin=origin.stop_id,
                    destination=destination.stop_id,
                    mode=TransitMode.WALK,
                    confidence=Confidence.LIVE,
                    walk_seconds=seconds,
                    polyline=(origin.coords, destination.coords),
                ))
        return edges
