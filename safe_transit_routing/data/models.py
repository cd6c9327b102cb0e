"""
Core data model shared by the graph builder, safety scorer and route search.

All records are frozen dataclasses: snapshots and safety surfaces are
superseded wholesale, never edited in place.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

Coordinate = Tuple[float, float]  # (lat, lon)


class TransitMode(str, Enum):
    """Travel mode of an edge or leg."""
    WALK = 'walk'
    BUS = 'bus'
    TRAIN = 'train'
    WAIT = 'wait'


class Confidence(str, Enum):
    """How an edge's times were obtained."""
    SCHEDULED = 'scheduled'
    LIVE = 'live'


_CONFIDENCE_RANK = {Confidence.SCHEDULED: 0, Confidence.LIVE: 1}


def worst_confidence(values: Iterable[Confidence]) -> Confidence:
    """Lowest confidence among ``values``; LIVE when there is nothing to compare."""
    return min(values, key=_CONFIDENCE_RANK.__getitem__, default=Confidence.LIVE)


class SafetyConfidence(str, Enum):
    """Whether a safety score is backed by incident data."""
    HIGH = 'high'
    LOW = 'low'


class RouteStatus(str, Enum):
    """Freshness of a route's live data in a snapshot."""
    FRESH = 'fresh'
    STALE = 'stale'
    SCHEDULE_ONLY = 'schedule_only'


# Severity weight per Chicago Data Portal primary_type. Unlisted categories weigh 1.0.
CATEGORY_SEVERITY: Dict[str, float] = {
    'HOMICIDE': 10.0,
    'CRIMINAL SEXUAL ASSAULT': 9.0,
    'CRIM SEXUAL ASSAULT': 9.0,
    'KIDNAPPING': 8.0,
    'ROBBERY': 8.0,
    'ASSAULT': 7.0,
    'BATTERY': 6.0,
    'WEAPONS VIOLATION': 6.0,
    'SEX OFFENSE': 5.0,
    'STALKING': 5.0,
    'INTIMIDATION': 4.0,
    'NARCOTICS': 3.0,
    'THEFT': 3.0,
    'MOTOR VEHICLE THEFT': 3.0,
    'BURGLARY': 2.5,
    'CRIMINAL DAMAGE': 2.0,
    'CRIMINAL TRESPASS': 2.0,
    'PUBLIC PEACE VIOLATION': 1.5,
    'DECEPTIVE PRACTICE': 0.5,
}


def severity_for(category: str) -> float:
    return CATEGORY_SEVERITY.get(category.strip().upper(), 1.0)


@dataclass(frozen=True)
class Stop:
    """A bus stop or train station. Immutable once loaded."""
    stop_id: str
    name: str
    lat: float
    lon: float
    modes: FrozenSet[TransitMode] = frozenset()

    @property
    def coords(self) -> Coordinate:
        return (self.lat, self.lon)


@dataclass(frozen=True)
class RoutePattern:
    """
    One direction of a route: its ordered stops, run times and headway.

    Departures from the first stop happen every ``headway_s`` seconds between
    ``service_start_s`` and ``service_end_s`` (seconds after local midnight).
    """
    route_id: str
    name: str
    mode: TransitMode
    direction: str
    stop_ids: Tuple[str, ...]
    hop_seconds: Tuple[float, ...]
    headway_s: float
    service_start_s: float = 5 * 3600
    service_end_s: float = 24 * 3600

    def __post_init__(self):
        if len(self.stop_ids) < 2:
            raise ValueError(f"Route {self.route_id} needs at least two stops")
        if len(self.hop_seconds) != len(self.stop_ids) - 1:
            raise ValueError(f"Route {self.route_id}: expected {len(self.stop_ids) - 1} hop times, "
                             f"got {len(self.hop_seconds)}")
        if any(h <= 0 for h in self.hop_seconds) or self.headway_s <= 0:
            raise ValueError(f"Route {self.route_id}: hop times and headway must be positive")

    @property
    def pattern_id(self) -> str:
        return f"{self.route_id}:{self.direction}"


@dataclass(frozen=True)
class RouteTopology:
    """Static stop and route layout the graph is expanded from."""
    stops: Mapping[str, Stop]
    routes: Tuple[RoutePattern, ...]

    @property
    def route_ids(self) -> Tuple[str, ...]:
        seen = dict.fromkeys(r.route_id for r in self.routes)
        return tuple(seen)

    def patterns_for(self, route_id: str) -> Tuple[RoutePattern, ...]:
        return tuple(r for r in self.routes if r.route_id == route_id)

    def mode_of(self, route_id: str) -> TransitMode:
        for pattern in self.routes:
            if pattern.route_id == route_id:
                return pattern.mode
        raise KeyError(route_id)


@dataclass(frozen=True)
class TransitEdge:
    """
    A directed, time-bound hop between two stops.

    Ride edges carry scheduled (and optionally predicted) departure and
    arrival times. Walk edges have no fixed departure: they can be started
    at any time and take ``walk_seconds``. Wait edges are synthesized by the
    search for time spent at a stop.
    """
    edge_id: str
    origin: str
    destination: str
    mode: TransitMode
    scheduled_departure: Optional[datetime] = None
    scheduled_arrival: Optional[datetime] = None
    predicted_departure: Optional[datetime] = None
    predicted_arrival: Optional[datetime] = None
    confidence: Confidence = Confidence.SCHEDULED
    route_id: Optional[str] = None
    trip_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    walk_seconds: float = 0.0
    polyline: Tuple[Coordinate, ...] = ()

    def __post_init__(self):
        for dep, arr in ((self.scheduled_departure, self.scheduled_arrival),
                         (self.predicted_departure, self.predicted_arrival)):
            if dep is not None and arr is not None and arr < dep:
                raise ValueError(f"Edge {self.edge_id}: arrival precedes departure")
        if self.confidence == Confidence.LIVE and self.is_timed and self.predicted_departure is None:
            raise ValueError(f"Edge {self.edge_id}: live edge without prediction")

    @property
    def is_timed(self) -> bool:
        return self.scheduled_departure is not None

    @property
    def departure(self) -> Optional[datetime]:
        if self.confidence == Confidence.LIVE and self.predicted_departure is not None:
            return self.predicted_departure
        return self.scheduled_departure

    @property
    def arrival(self) -> Optional[datetime]:
        if self.confidence == Confidence.LIVE and self.predicted_arrival is not None:
            return self.predicted_arrival
        return self.scheduled_arrival

    @property
    def link_key(self) -> Tuple[str, str, str, Optional[str]]:
        """Identity of the physical link, shared by every trip over it."""
        return (self.origin, self.destination, self.mode.value, self.route_id)


@dataclass(frozen=True)
class LivePrediction:
    """A provider's predicted arrival of one vehicle at one stop."""
    route_id: str
    stop_id: str
    vehicle_id: str
    predicted_time: datetime
    generated_at: datetime
    delayed: bool = False
    direction: Optional[str] = None


@dataclass(frozen=True)
class VehicleState:
    """Last reported position of a vehicle. Replaced wholesale on each refresh."""
    vehicle_id: str
    route_id: str
    lat: float
    lon: float
    heading: Optional[float]
    delayed: bool
    observed_at: datetime


@dataclass(frozen=True)
class CrimeIncident:
    """A point incident from the crime portal."""
    incident_id: str
    lat: float
    lon: float
    category: str
    timestamp: datetime

    @property
    def severity(self) -> float:
        return severity_for(self.category)


@dataclass(frozen=True)
class SafetyCell:
    """
    Aggregated risk of one grid cell.

    ``raw_risk`` is the decayed incident sum as of ``last_updated``;
    ``score`` is its normalized value in [0, 100] at that instant.
    """
    cell_id: str
    score: float
    raw_risk: float
    incident_count: int
    last_updated: datetime


@dataclass(frozen=True)
class SafetyAssessment:
    """Risk score for a polyline or area."""
    score: float
    confidence: SafetyConfidence
    sample_count: int = 0
    segment_scores: Tuple[float, ...] = ()


@dataclass(frozen=True)
class Leg:
    """One single-mode travel segment of an itinerary."""
    mode: TransitMode
    start_stop: Stop
    end_stop: Stop
    start_time: datetime
    end_time: datetime
    polyline: Tuple[Coordinate, ...] = ()
    route_id: Optional[str] = None
    trip_id: Optional[str] = None
    confidence: Confidence = Confidence.LIVE
    description: str = ''

    @property
    def duration_s(self) -> float:
        return (self.end_time - self.start_time).total_seconds()


@dataclass(frozen=True)
class Itinerary:
    """An ordered, contiguous chain of legs with aggregate costs."""
    legs: Tuple[Leg, ...]
    total_duration_s: float
    time_cost: float
    safety_cost: float
    confidence: Confidence
    safety_confidence: SafetyConfidence = SafetyConfidence.HIGH
    max_risk: float = 0.0
    link_keys: FrozenSet[Tuple] = field(default=frozenset(), compare=False)

    @property
    def departure_time(self) -> Optional[datetime]:
        return self.legs[0].start_time if self.legs else None

    @property
    def arrival_time(self) -> Optional[datetime]:
        return self.legs[-1].end_time if self.legs else None

    def total_cost(self, alpha: float) -> float:
        return (1 - alpha) * self.time_cost + alpha * self.safety_cost
