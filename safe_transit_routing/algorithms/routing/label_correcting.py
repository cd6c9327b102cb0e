"""
Time-dependent, multi-objective route search over a GraphSnapshot.

Labels carry (arrival time, safety cost) per stop. A label is discarded only
when another label at the same stop and trip arrives no later and is no less
safe, so the set of surviving labels at the destination contains the optimum
of every weighting of time against safety. The queue is ordered by the
weighted cost

    cost = (1 - alpha) * normalizedTime + alpha * safetyPenalty

which never decreases along a path, so the first destination label popped is
the best itinerary for the requested alpha.
"""

import heapq
import itertools
import logging
import time
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, List, Optional, Set, Tuple
from zoneinfo import ZoneInfo

from ...config.routing_config import RoutingConfig
from ...data.distance_utils import Coordinate, haversine_distance
from ...data.models import (
    Confidence,
    Itinerary,
    SafetyAssessment,
    Stop,
    TransitEdge,
    TransitMode,
)
from ...exceptions import InvalidQuery, NoRouteFound
from ...mapping.graph_builder import GraphSnapshot
from .response_assembler import ResponseAssembler

logger = logging.getLogger(__name__)

LinkKey = Tuple[str, str, str, Optional[str]]

_EPSILON = 1e-9

ORIGIN_POINT_ID = 'point:origin'
DESTINATION_POINT_ID = 'point:destination'


class _Label:
    """One partial path ending at ``stop_id``."""

    __slots__ = ('stop_id', 'arrival', 'safety', 'penalty', 'cost', 'edge', 'parent', 'trip_id', 'dead')

    def __init__(self, stop_id: str, arrival: datetime, safety: float, penalty: float, cost: float,
                 edge: Optional[TransitEdge], parent: Optional['_Label'], trip_id: Optional[str]):
        self.stop_id = stop_id
        self.arrival = arrival
        self.safety = safety
        self.penalty = penalty
        self.cost = cost
        self.edge = edge
        self.parent = parent
        self.trip_id = trip_id
        self.dead = False

    def path(self) -> List[TransitEdge]:
        edges = []
        label: Optional[_Label] = self
        while label is not None:
            if label.edge is not None:
                edges.append(label.edge)
            label = label.parent
        edges.reverse()
        return edges


class _SearchState:
    """Mutable bookkeeping of one search round."""

    def __init__(self, alpha: float, depart_after: datetime, penalized: FrozenSet[LinkKey]):
        self.alpha = alpha
        self.depart_after = depart_after
        self.penalized = penalized
        self.queue: List[Tuple[float, float, int, _Label]] = []
        self.buckets: Dict[Tuple[str, Optional[str]], List[_Label]] = {}
        self.counter = itertools.count()
        self.relaxed = 0
        self.destination_labels: List[_Label] = []


class RouteSearchEngine:
    """
    Label-correcting search trading travel time against safety.

    The engine holds no per-query state; concurrent searches may share one
    instance as long as each passes the snapshot it obtained at query start.
    """

    def __init__(self, scorer, config: Optional[RoutingConfig] = None,
                 assembler: Optional[ResponseAssembler] = None):
        """
        Initialize the search engine.

        Args:
            scorer: Anything with ``score(polyline) -> SafetyAssessment`` (usually a SafetyScorer)
            config: Routing configuration parameters
            assembler: Builds itineraries from edge paths
        """
        self.scorer = scorer
        self.config = config or RoutingConfig()
        self.assembler = assembler or ResponseAssembler(self.config)
        self.tz = ZoneInfo(self.config.timezone)

    def search(self, origin_stop: str, dest_stop: str, depart_after: datetime,
               alpha: float, snapshot: GraphSnapshot,
               deadline: Optional[float] = None,
               origin_point: Optional[Coordinate] = None,
               dest_point: Optional[Coordinate] = None) -> List[Itinerary]:
        """
        Find up to K ranked, mutually diverse itineraries.

        Args:
            origin_stop: Stop id to start from
            dest_stop: Stop id to reach
            depart_after: Earliest departure time (from ``origin_point`` if given)
            alpha: Safety weight in [0, 1]
            snapshot: Graph snapshot used for the whole search
            deadline: ``time.monotonic()`` value after which the search stops early
            origin_point: Query location the rider walks from to reach ``origin_stop``
            dest_point: Query location the rider walks to from ``dest_stop``

        Returns:
            Itineraries ordered by weighted cost; empty if the destination
            cannot be reached inside the graph horizon

        Raises:
            InvalidQuery: Unknown stops or alpha outside [0, 1]
            NoRouteFound: Deadline passed before a single label was relaxed
        """
        if origin_stop not in snapshot.stops or dest_stop not in snapshot.stops:
            raise InvalidQuery(f"Unknown stop: {origin_stop if origin_stop not in snapshot.stops else dest_stop}")
        if not 0 <= alpha <= 1:
            raise InvalidQuery(f"alpha must be between 0 and 1, got {alpha}")
        if depart_after.tzinfo is None:
            depart_after = depart_after.replace(tzinfo=self.tz)
        if deadline is None:
            deadline = time.monotonic() + self.config.search_budget_s

        risks: Dict[LinkKey, SafetyAssessment] = {}
        access = egress = None
        endpoints: Dict[str, Stop] = {}
        if origin_point is not None:
            point = Stop(ORIGIN_POINT_ID, 'Origin', origin_point[0], origin_point[1])
            access = self._endpoint_walk(point, snapshot.stops[origin_stop])
            endpoints[point.stop_id] = point
        if dest_point is not None:
            point = Stop(DESTINATION_POINT_ID, 'Destination', dest_point[0], dest_point[1])
            egress = self._endpoint_walk(snapshot.stops[dest_stop], point)
            endpoints[point.stop_id] = point

        if origin_stop == dest_stop:
            walks = [edge for edge in (access, egress) if edge is not None]
            if not walks:
                return [self.assembler.empty_itinerary()]
            return [self._with_endpoints([], access, egress, endpoints, snapshot, depart_after, risks)]

        start_time = time.time()
        board_after = depart_after
        if access is not None:
            board_after += timedelta(seconds=access.walk_seconds)

        candidates: List[Itinerary] = []
        paths: Dict[int, List[TransitEdge]] = {}
        seen_paths: Set[Tuple[str, ...]] = set()
        penalized: FrozenSet[LinkKey] = frozenset()
        timed_out = False

        for round_index in range(self.config.alternative_rounds + 1):
            state = _SearchState(alpha, board_after, penalized)
            timed_out = self._run(state, origin_stop, dest_stop, snapshot, deadline, risks)

            if timed_out and round_index == 0 and state.relaxed == 0:
                raise NoRouteFound(f"Search deadline passed before any progress from {origin_stop}")

            for label in state.destination_labels:
                path = label.path()
                signature = tuple(e.edge_id for e in path if e.mode != TransitMode.WAIT)
                if signature in seen_paths:
                    continue
                seen_paths.add(signature)
                assessments = {e.edge_id: risks[e.link_key] for e in path if e.link_key in risks}
                itinerary = self.assembler.assemble(path, snapshot.stops, board_after, assessments)
                candidates.append(itinerary)
                paths[id(itinerary)] = path

            if timed_out or not candidates:
                break
            accepted = self._select_diverse(candidates, alpha)
            if len(accepted) >= self.config.max_itineraries:
                break
            penalized = frozenset().union(*(i.link_keys for i in accepted))

        itineraries = self._select_diverse(candidates, alpha)
        if access is not None or egress is not None:
            itineraries = [
                self._with_endpoints(paths[id(i)], access, egress, endpoints, snapshot, depart_after, risks)
                for i in itineraries
            ]

        elapsed = time.time() - start_time
        if timed_out:
            logger.warning(f"Search {origin_stop} -> {dest_stop} hit its deadline after {elapsed * 1000:.1f}ms; "
                           f"returning {len(itineraries)} itineraries found so far")
        elif not itineraries:
            logger.info(f"No route from {origin_stop} to {dest_stop} within the graph horizon")
        else:
            logger.info(f"Found {len(itineraries)} itineraries {origin_stop} -> {dest_stop} "
                        f"(alpha={alpha:.2f}, snapshot v{snapshot.version}) in {elapsed * 1000:.1f}ms")
        return itineraries

    def edge_cost(self, edge_seconds: float, risk: float, alpha: float) -> float:
        """Weighted cost of traversing an edge: time in hours, safety as risk / 100."""
        return (1 - alpha) * edge_seconds / self.config.time_normalization_s + alpha * risk / 100.0

    # Access and egress walks

    def _endpoint_walk(self, start: Stop, end: Stop) -> Optional[TransitEdge]:
        """Walk edge between a query location and its stop; None if they coincide."""
        distance = haversine_distance(start.lat, start.lon, end.lat, end.lon)
        if distance <= 0:
            return None
        return TransitEdge(
            edge_id=f"walk:{start.stop_id}->{end.stop_id}",
            origin=start.stop_id,
            destination=end.stop_id,
            mode=TransitMode.WALK,
            confidence=Confidence.LIVE,
            walk_seconds=distance / self.config.walk_speed_mps,
            polyline=(start.coords, end.coords),
        )

    def _with_endpoints(self, path: List[TransitEdge], access: Optional[TransitEdge],
                        egress: Optional[TransitEdge], endpoints: Dict[str, Stop],
                        snapshot: GraphSnapshot, depart_after: datetime,
                        risks: Dict[LinkKey, SafetyAssessment]) -> Itinerary:
        """Re-assemble a stop-to-stop path with the walks from and to the query locations."""
        full = ([access] if access is not None else []) + list(path) + ([egress] if egress is not None else [])
        for edge in full:
            if edge.mode != TransitMode.WAIT:
                self._assess(edge, risks)
        stops = {**snapshot.stops, **endpoints}
        assessments = {e.edge_id: risks[e.link_key] for e in full if e.link_key in risks}
        return self.assembler.assemble(full, stops, depart_after, assessments)

    def _assess(self, edge: TransitEdge, risks: Dict[LinkKey, SafetyAssessment]) -> SafetyAssessment:
        assessment = risks.get(edge.link_key)
        if assessment is None:
            assessment = self.scorer.score(list(edge.polyline))
            risks[edge.link_key] = assessment
        return assessment

    # Core search

    def _run(self, state: _SearchState, origin_stop: str, dest_stop: str,
             snapshot: GraphSnapshot, deadline: float,
             risks: Dict[LinkKey, SafetyAssessment]) -> bool:
        """Run one search round. Returns True if the deadline cut it short."""
        origin = _Label(origin_stop, state.depart_after, 0.0, 0.0, 0.0, None, None, None)
        self._insert(state, origin, relaxation=False)

        best_cost: Optional[float] = None
        wanted = self.config.max_itineraries * 3

        while state.queue:
            if time.monotonic() > deadline:
                return True

            cost, _, _, label = heapq.heappop(state.queue)
            if label.dead:
                continue
            if best_cost is not None and cost > best_cost * (1 + self.config.cost_slack) + _EPSILON:
                break

            if label.stop_id == dest_stop:
                if best_cost is None:
                    best_cost = cost
                state.destination_labels.append(label)
                if len(state.destination_labels) >= wanted:
                    break
                continue

            if state.relaxed >= self.config.max_labels:
                logger.warning(f"Label limit {self.config.max_labels} reached; stopping search early")
                break

            for successor in self._expand(state, label, snapshot, risks):
                self._insert(state, successor)

        return False

    def _expand(self, state: _SearchState, label: _Label, snapshot: GraphSnapshot,
                risks: Dict[LinkKey, SafetyAssessment]) -> List[_Label]:
        successors = []

        for edge in snapshot.walk_edges_from(label.stop_id):
            arrival = label.arrival + timedelta(seconds=edge.walk_seconds)
            successors.append(self._extend(state, label, edge, label.arrival, arrival, None, risks))

        on_board = label.edge is not None and label.edge.is_timed
        if on_board:
            following = snapshot.next_hop(label.edge)
            if following is not None:
                departure = max(following.departure, label.arrival)
                arrival = max(following.arrival, departure)
                successors.append(self._extend(state, label, following, departure, arrival,
                                               following.trip_id, risks))

        not_before = label.arrival
        if on_board:
            not_before += timedelta(seconds=self.config.transfer_buffer_s)

        boarded: Set[LinkKey] = set()
        for edge in snapshot.departures_from(label.stop_id, not_before):
            if edge.trip_id == label.trip_id or edge.link_key in boarded:
                continue
            boarded.add(edge.link_key)
            board_from = label
            if edge.departure > label.arrival:
                board_from = self._wait(state, label, edge.departure)
            successors.append(self._extend(state, board_from, edge, edge.departure,
                                           max(edge.arrival, edge.departure), edge.trip_id, risks))
        return successors

    def _wait(self, state: _SearchState, label: _Label, until: datetime) -> _Label:
        """Intermediate label for time spent at a stop before boarding."""
        seconds = (until - label.arrival).total_seconds()
        stop = label.stop_id
        edge = TransitEdge(
            edge_id=f"wait:{stop}:{label.arrival.timestamp():.0f}-{until.timestamp():.0f}",
            origin=stop,
            destination=stop,
            mode=TransitMode.WAIT,
            confidence=Confidence.LIVE,
            walk_seconds=seconds,
        )
        cost = label.cost + self.edge_cost(seconds, 0.0, state.alpha)
        return _Label(stop, until, label.safety, label.penalty, cost, edge, label, None)

    def _extend(self, state: _SearchState, label: _Label, edge: TransitEdge,
                departure: datetime, arrival: datetime, trip_id: Optional[str],
                risks: Dict[LinkKey, SafetyAssessment]) -> _Label:
        assessment = self._assess(edge, risks)

        seconds = (arrival - label.arrival).total_seconds()
        penalty = self.config.reuse_penalty if edge.link_key in state.penalized else 0.0
        cost = label.cost + self.edge_cost(seconds, assessment.score, state.alpha) + penalty
        return _Label(edge.destination, arrival, label.safety + assessment.score / 100.0,
                      label.penalty + penalty, cost, edge, label, trip_id)

    def _insert(self, state: _SearchState, label: _Label, relaxation: bool = True) -> None:
        """Add a label unless an existing one dominates it; retire labels it dominates."""
        bucket = state.buckets.setdefault((label.stop_id, label.trip_id), [])
        weight = state.alpha * label.safety + label.penalty
        for other in bucket:
            if (other.arrival <= label.arrival and
                    state.alpha * other.safety + other.penalty <= weight + _EPSILON and
                    other.safety <= label.safety + _EPSILON):
                return

        survivors = []
        for other in bucket:
            if (label.arrival <= other.arrival and
                    weight <= state.alpha * other.safety + other.penalty + _EPSILON and
                    label.safety <= other.safety + _EPSILON):
                other.dead = True
            else:
                survivors.append(other)
        survivors.append(label)
        state.buckets[(label.stop_id, label.trip_id)] = survivors

        if relaxation:
            state.relaxed += 1
        heapq.heappush(state.queue, (label.cost, label.safety, next(state.counter), label))

    # Ranking

    def _select_diverse(self, candidates: List[Itinerary], alpha: float) -> List[Itinerary]:
        """Rank by weighted cost and drop candidates too similar to an accepted one."""
        ranked = sorted(candidates, key=lambda i: (i.total_cost(alpha), i.total_duration_s, i.safety_cost))
        accepted: List[Itinerary] = []
        for candidate in ranked:
            if any(jaccard(candidate.link_keys, other.link_keys) >= self.config.diversity_threshold
                   for other in accepted):
                continue
            accepted.append(candidate)
            if len(accepted) >= self.config.max_itineraries:
                break
        return accepted


def jaccard(a: FrozenSet, b: FrozenSet) -> float:
    """Jaccard similarity of two sets; two empty sets are identical."""
    if not a and not b:
        return 1.0
    return len(a & b) / len(a | b)

