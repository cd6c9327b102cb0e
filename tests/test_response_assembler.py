"""Tests for turning edge paths into legs, itineraries and GeoJSON."""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW
from safe_transit_routing.algorithms import ResponseAssembler
from safe_transit_routing.data import (
    Confidence,
    SafetyAssessment,
    SafetyConfidence,
    Stop,
    TransitEdge,
    TransitMode,
)

STOPS = {
    "A": Stop("A", "Clark & Harrison", 41.8743, -87.6310),
    "B": Stop("B", "Clark & Madison", 41.8819, -87.6312),
    "C": Stop("C", "Clark & Chicago", 41.8966, -87.6313),
    "D": Stop("D", "Chicago", 41.8967, -87.6282),
}


def _walk(origin: str, destination: str, seconds: float) -> TransitEdge:
    return TransitEdge(
        edge_id=f"walk:{origin}->{destination}", origin=origin, destination=destination,
        mode=TransitMode.WALK, confidence=Confidence.LIVE, walk_seconds=seconds,
        polyline=(STOPS[origin].coords, STOPS[destination].coords),
    )


def _hop(trip: str, index: int, origin: str, destination: str, depart_min: float, arrive_min: float,
         confidence: Confidence = Confidence.SCHEDULED, mode: TransitMode = TransitMode.BUS,
         route: str = "22") -> TransitEdge:
    live = confidence == Confidence.LIVE
    return TransitEdge(
        edge_id=f"{trip}:{index}", origin=origin, destination=destination, mode=mode,
        scheduled_departure=NOW + timedelta(minutes=depart_min),
        scheduled_arrival=NOW + timedelta(minutes=arrive_min),
        predicted_departure=NOW + timedelta(minutes=depart_min) if live else None,
        predicted_arrival=NOW + timedelta(minutes=arrive_min) if live else None,
        confidence=confidence, route_id=route, trip_id=trip,
        polyline=(STOPS[origin].coords, STOPS[destination].coords),
    )


@pytest.fixture
def assembler(config) -> ResponseAssembler:
    return ResponseAssembler(config)


@pytest.fixture
def path():
    return [
        _hop("22:N:1", 0, "A", "B", 2, 6, confidence=Confidence.LIVE),
        _hop("22:N:1", 1, "B", "C", 6, 11),
        _walk("C", "D", 120),
    ]


def test_hops_of_one_trip_become_one_leg(assembler, path) -> None:
    itinerary = assembler.assemble(path, STOPS, NOW)

    assert [leg.mode for leg in itinerary.legs] == [TransitMode.BUS, TransitMode.WALK]
    bus, walk = itinerary.legs
    assert bus.start_stop.stop_id == "A"
    assert bus.end_stop.stop_id == "C"
    assert bus.polyline == (STOPS["A"].coords, STOPS["B"].coords, STOPS["C"].coords)
    assert bus.description == "Take Bus 22 to Clark & Chicago"
    assert walk.description == "Walk to Chicago"


def test_leg_confidence_is_the_worst_of_its_edges(assembler, path) -> None:
    itinerary = assembler.assemble(path, STOPS, NOW)
    assert itinerary.legs[0].confidence == Confidence.SCHEDULED
    assert itinerary.confidence == Confidence.SCHEDULED


def test_times_are_replayed_along_the_chain(assembler, path) -> None:
    itinerary = assembler.assemble(path, STOPS, NOW)
    bus, walk = itinerary.legs

    assert bus.start_time == NOW + timedelta(minutes=2)
    assert bus.end_time == NOW + timedelta(minutes=11)
    assert walk.start_time == bus.end_time
    assert walk.end_time == bus.end_time + timedelta(seconds=120)
    assert itinerary.total_duration_s == pytest.approx(13 * 60)
    assert itinerary.time_cost == pytest.approx(13 * 60 / 3600)


def test_walk_only_path_needs_departure_time(assembler) -> None:
    with pytest.raises(ValueError):
        assembler.assemble([_walk("C", "D", 120)], STOPS)


def test_safety_cost_sums_edge_risks(assembler, path) -> None:
    assessments = {
        path[0].edge_id: SafetyAssessment(10.0, SafetyConfidence.HIGH),
        path[1].edge_id: SafetyAssessment(30.0, SafetyConfidence.LOW),
        path[2].edge_id: SafetyAssessment(5.0, SafetyConfidence.HIGH),
    }
    itinerary = assembler.assemble(path, STOPS, NOW, assessments)

    assert itinerary.safety_cost == pytest.approx(0.45)
    assert itinerary.max_risk == 30.0
    assert itinerary.safety_confidence == SafetyConfidence.LOW
    assert itinerary.total_cost(0.5) == pytest.approx(0.5 * itinerary.time_cost + 0.5 * 0.45)


def test_link_keys_identify_physical_links(assembler, path) -> None:
    itinerary = assembler.assemble(path, STOPS, NOW)
    assert itinerary.link_keys == frozenset({
        ("A", "B", "bus", "22"), ("B", "C", "bus", "22"), ("C", "D", "walk", None)})


def test_transfer_between_trips_starts_a_new_leg(assembler) -> None:
    path = [
        _hop("22:N:1", 0, "A", "B", 0, 4),
        _hop("22:N:2", 1, "B", "C", 10, 15),
    ]
    itinerary = assembler.assemble(path, STOPS, NOW)
    assert len(itinerary.legs) == 2
    assert itinerary.legs[1].start_time == NOW + timedelta(minutes=10)


def test_train_and_wait_descriptions(assembler) -> None:
    train = _hop("Red:S:1", 0, "C", "D", 0, 3, mode=TransitMode.TRAIN, route="Red")
    wait = TransitEdge(edge_id="wait:C", origin="C", destination="C", mode=TransitMode.WAIT,
                       confidence=Confidence.LIVE, walk_seconds=240)
    itinerary = assembler.assemble([wait, train], STOPS, NOW - timedelta(minutes=4))

    assert [leg.description for leg in itinerary.legs] == [
        "Wait 4 min at Clark & Chicago", "Take Red Line train to Chicago"]


def test_empty_and_broken_paths_are_rejected(assembler, path) -> None:
    with pytest.raises(ValueError):
        assembler.assemble([], STOPS)
    with pytest.raises(ValueError):
        assembler.assemble([path[0], path[2]], STOPS, NOW)


def test_feature_collection(assembler, path) -> None:
    itinerary = assembler.assemble(path, STOPS, NOW)
    collection = assembler.to_feature_collection(itinerary)

    assert collection["type"] == "FeatureCollection"
    features = collection["features"]
    assert len(features) == len(itinerary.legs) + 2

    first = features[0]
    assert first["geometry"]["type"] == "LineString"
    lon, lat = first["geometry"]["coordinates"][0]
    assert (lat, lon) == STOPS["A"].coords
    assert first["properties"]["mode"] == "bus"
    assert first["properties"]["confidence"] == "scheduled"

    assert [f["properties"]["type"] for f in features[-2:]] == ["start", "end"]
    assert collection.is_valid


def test_empty_itinerary(assembler) -> None:
    itinerary = assembler.empty_itinerary()
    assert itinerary.legs == ()
    assert itinerary.departure_time is None
    assert assembler.to_feature_collection(itinerary)["features"] == []
