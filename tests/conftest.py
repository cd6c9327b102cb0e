"""Shared fixtures: a small two-option topology, a fixed clock and stub collaborators."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

import pytest

from safe_transit_routing.config import RoutingConfig
from safe_transit_routing.data import (
    LivePrediction,
    SafetyAssessment,
    SafetyConfidence,
    parse_topology,
)
from safe_transit_routing.exceptions import ProviderUnavailable
from safe_transit_routing.mapping import TransitGraphBuilder
from safe_transit_routing.providers import RouteFeed

CHICAGO = ZoneInfo("America/Chicago")
NOW = datetime(2024, 5, 6, 8, 0, tzinfo=CHICAGO)

# Origin, a walkable side street ~360 m north, and a destination ~2.2 km north.
ORIGIN = (41.8800, -87.6300)
WALKWAY = (41.883234, -87.6300)
DESTINATION = (41.9000, -87.6300)

# Express bus S -> T in 10 minutes, or walk S -> W and ride the train W -> T in 10 minutes.
TWO_OPTION_TOPOLOGY = {
    "stops": [
        {"id": "S", "name": "Clark & Lake", "lat": ORIGIN[0], "lon": ORIGIN[1]},
        {"id": "W", "name": "Lake Walkway", "lat": WALKWAY[0], "lon": WALKWAY[1]},
        {"id": "T", "name": "Clark & Division", "lat": DESTINATION[0], "lon": DESTINATION[1]},
    ],
    "routes": [
        {"route_id": "X", "name": "Clark Express", "mode": "bus", "direction": "Northbound",
         "stops": ["S", "T"], "hop_seconds": [600], "headway_s": 600,
         "service_start": "00:00", "service_end": "24:00"},
        {"route_id": "G", "name": "Green", "mode": "train", "direction": "Northbound",
         "stops": ["W", "T"], "hop_seconds": [600], "headway_s": 600,
         "service_start": "00:05", "service_end": "24:00"},
    ],
}

# Two bus routes for refresh tests.
TWO_ROUTE_TOPOLOGY = {
    "stops": [
        {"id": "1900", "name": "Clark & Harrison", "lat": 41.8743, "lon": -87.6310},
        {"id": "1902", "name": "Clark & Madison", "lat": 41.8819, "lon": -87.6312},
        {"id": "1905", "name": "Clark & Chicago", "lat": 41.8966, "lon": -87.6313},
        {"id": "1520", "name": "Lake Shore & 47th", "lat": 41.8095, "lon": -87.5908},
        {"id": "1525", "name": "Hyde Park Blvd & 53rd", "lat": 41.7995, "lon": -87.5870},
    ],
    "routes": [
        {"route_id": "22", "name": "Clark", "mode": "bus", "direction": "Northbound",
         "stops": ["1900", "1902", "1905"], "hop_seconds": [240, 420], "headway_s": 600,
         "service_start": "00:00", "service_end": "24:00"},
        {"route_id": "6", "name": "Jackson Park Express", "mode": "bus", "direction": "Southbound",
         "stops": ["1520", "1525"], "hop_seconds": [300], "headway_s": 600,
         "service_start": "00:00", "service_end": "24:00"},
    ],
}

# Risk (0-100) by (first vertex, last vertex) of an edge polyline.
SCENARIO_RISKS = {
    (ORIGIN, DESTINATION): 20.0,
    (ORIGIN, WALKWAY): 5.0,
    (WALKWAY, DESTINATION): 5.0,
}


class FakeScorer:
    """Looks up a fixed risk for each polyline by its endpoints."""

    def __init__(self, risks: Dict[Tuple, float], default: float = 0.0,
                 confidence: SafetyConfidence = SafetyConfidence.HIGH) -> None:
        self.risks = risks
        self.default = default
        self.confidence = confidence
        self.calls = 0

    def score(self, polyline):
        self.calls += 1
        key = (tuple(polyline[0]), tuple(polyline[-1]))
        return SafetyAssessment(score=self.risks.get(key, self.default), confidence=self.confidence,
                                sample_count=len(polyline))


class StubProvider:
    """Stands in for a live data client; fails or blocks on chosen routes."""

    def __init__(self, feeds: Optional[Dict[str, RouteFeed]] = None, failing: Iterable[str] = (),
                 blocking: Iterable[str] = (), release: Optional[threading.Event] = None) -> None:
        self.feeds = feeds or {}
        self.failing = set(failing)
        self.blocking = set(blocking)
        self.release = release or threading.Event()
        self.requested = []

    def fetch_route(self, route_id: str, stop_ids: Sequence[str] = ()) -> RouteFeed:
        self.requested.append((route_id, tuple(stop_ids)))
        if route_id in self.failing:
            raise ProviderUnavailable(f"route {route_id} is down", provider="stub")
        if route_id in self.blocking:
            self.release.wait(5)
        return self.feeds.get(route_id, RouteFeed(route_id=route_id))

    def close(self) -> None:
        pass


def prediction(route_id: str, stop_id: str, vehicle_id: str, minutes_after_now: float,
               age_s: float = 0.0, direction: Optional[str] = None) -> LivePrediction:
    return LivePrediction(
        route_id=route_id,
        stop_id=stop_id,
        vehicle_id=vehicle_id,
        predicted_time=NOW + timedelta(minutes=minutes_after_now),
        generated_at=NOW - timedelta(seconds=age_s),
        direction=direction,
    )


@pytest.fixture
def config() -> RoutingConfig:
    return RoutingConfig()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def topology():
    return parse_topology(TWO_OPTION_TOPOLOGY)


@pytest.fixture
def bus_topology():
    return parse_topology(TWO_ROUTE_TOPOLOGY)


@pytest.fixture
def builder(config) -> TransitGraphBuilder:
    return TransitGraphBuilder(config)


@pytest.fixture
def snapshot(builder, topology):
    return builder.build_graph(topology, [], NOW)


@pytest.fixture
def scenario_scorer() -> FakeScorer:
    return FakeScorer(SCENARIO_RISKS)
