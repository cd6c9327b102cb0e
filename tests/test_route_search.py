"""Tests for the time/safety trade-off route search."""

from __future__ import annotations

import time
from datetime import timedelta

import pytest

from conftest import DESTINATION, NOW, ORIGIN, SCENARIO_RISKS, FakeScorer, prediction
from safe_transit_routing.algorithms import RouteSearchEngine
from safe_transit_routing.algorithms.routing import jaccard
from safe_transit_routing.data import (
    Confidence,
    Itinerary,
    SafetyConfidence,
    TransitMode,
)
from safe_transit_routing.data.distance_utils import haversine_distance
from safe_transit_routing.exceptions import InvalidQuery, NoRouteFound

NORTH_OF_DESTINATION = (DESTINATION[0] + 0.005, DESTINATION[1])
SOUTH_OF_ORIGIN = (ORIGIN[0] - 0.002, ORIGIN[1])


@pytest.fixture
def engine(scenario_scorer, config) -> RouteSearchEngine:
    return RouteSearchEngine(scenario_scorer, config)


def _modes(itinerary: Itinerary):
    return [leg.mode for leg in itinerary.legs]


def _assert_contiguous(itinerary: Itinerary) -> None:
    for leg in itinerary.legs:
        assert leg.start_time <= leg.end_time
    for previous, leg in zip(itinerary.legs, itinerary.legs[1:]):
        assert previous.end_stop.stop_id == leg.start_stop.stop_id
        assert previous.end_time <= leg.start_time


def test_regular_query_prefers_the_faster_riskier_bus(engine, snapshot) -> None:
    itineraries = engine.search("S", "T", NOW, 0.3, snapshot)

    assert len(itineraries) == 2
    best = itineraries[0]
    assert _modes(best) == [TransitMode.BUS]
    assert best.legs[0].route_id == "X"
    assert best.total_duration_s == pytest.approx(600)
    assert best.safety_cost == pytest.approx(0.20)
    assert best.max_risk == pytest.approx(20.0)


def test_safety_priority_prefers_walk_and_train(engine, snapshot) -> None:
    itineraries = engine.search("S", "T", NOW, 0.8, snapshot)

    best = itineraries[0]
    assert _modes(best) == [TransitMode.WALK, TransitMode.WAIT, TransitMode.TRAIN]
    assert best.total_duration_s == pytest.approx(900)
    assert best.safety_cost == pytest.approx(0.10)
    assert best.legs[-1].end_time == NOW + timedelta(minutes=15)
    assert best.legs[-1].description == "Take G Line train to Clark & Division"


def test_itineraries_are_contiguous_and_ranked(engine, snapshot) -> None:
    for alpha in (0.0, 0.3, 0.8, 1.0):
        itineraries = engine.search("S", "T", NOW, alpha, snapshot)
        assert itineraries
        for itinerary in itineraries:
            _assert_contiguous(itinerary)
            assert itinerary.legs[0].start_stop.stop_id == "S"
            assert itinerary.legs[-1].end_stop.stop_id == "T"
            assert itinerary.departure_time >= NOW
        costs = [i.total_cost(alpha) for i in itineraries]
        assert costs == sorted(costs)


def test_raising_safety_weight_never_makes_the_best_route_less_safe(engine, snapshot) -> None:
    previous = None
    for step in range(11):
        alpha = step / 10
        best = engine.search("S", "T", NOW, alpha, snapshot)[0]
        if previous is not None:
            assert best.safety_cost <= previous.safety_cost + 1e-9
            assert best.time_cost >= previous.time_cost - 1e-9
        previous = best


def test_returned_itineraries_are_mutually_diverse(engine, snapshot, config) -> None:
    itineraries = engine.search("S", "T", NOW, 0.3, snapshot)
    for i, first in enumerate(itineraries):
        for second in itineraries[i + 1:]:
            assert jaccard(first.link_keys, second.link_keys) < config.diversity_threshold


def test_wait_time_is_not_charged_as_risk(engine, snapshot) -> None:
    best = engine.search("S", "T", NOW, 0.8, snapshot)[0]
    wait = [leg for leg in best.legs if leg.mode == TransitMode.WAIT]
    assert len(wait) == 1
    assert wait[0].start_stop.stop_id == wait[0].end_stop.stop_id == "W"
    # Walk and train at 5 each; nothing for standing at the platform
    assert best.safety_cost == pytest.approx(0.10)


def test_same_origin_and_destination_gives_zero_leg_itinerary(engine, snapshot) -> None:
    itineraries = engine.search("S", "S", NOW, 0.3, snapshot)

    assert len(itineraries) == 1
    assert itineraries[0].legs == ()
    assert itineraries[0].total_duration_s == 0
    assert itineraries[0].total_cost(0.3) == 0


def test_unreachable_destination_returns_empty_list(engine, snapshot) -> None:
    # Both routes only run northbound and T has no walkable neighbours
    assert engine.search("T", "S", NOW, 0.3, snapshot) == []


def test_egress_walk_is_part_of_the_itinerary(snapshot, config) -> None:
    scorer = FakeScorer({**SCENARIO_RISKS, (DESTINATION, NORTH_OF_DESTINATION): 10.0})
    engine = RouteSearchEngine(scorer, config)
    walk_s = haversine_distance(*DESTINATION, *NORTH_OF_DESTINATION) / config.walk_speed_mps

    itineraries = engine.search("S", "T", NOW, 0.3, snapshot, dest_point=NORTH_OF_DESTINATION)

    assert len(itineraries) == 2
    best = itineraries[0]
    assert _modes(best) == [TransitMode.BUS, TransitMode.WALK]
    _assert_contiguous(best)
    walk = best.legs[-1]
    assert walk.description == "Walk to Destination"
    assert walk.start_stop.stop_id == "T"
    assert walk.duration_s == pytest.approx(walk_s)
    assert best.total_duration_s == pytest.approx(600 + walk_s)
    assert best.arrival_time == NOW + timedelta(seconds=600 + walk_s)
    assert best.safety_cost == pytest.approx(0.30)
    assert best.max_risk == pytest.approx(20.0)


def test_access_walk_starts_at_the_query_location(engine, snapshot, config) -> None:
    walk_s = haversine_distance(*SOUTH_OF_ORIGIN, *ORIGIN) / config.walk_speed_mps

    itineraries = engine.search("S", "T", NOW, 0.3, snapshot, origin_point=SOUTH_OF_ORIGIN)

    assert itineraries
    for itinerary in itineraries:
        _assert_contiguous(itinerary)
        first = itinerary.legs[0]
        assert first.mode == TransitMode.WALK
        assert first.start_stop.stop_id == "point:origin"
        assert first.start_time == NOW
        assert itinerary.departure_time == NOW
        assert itinerary.legs[-1].end_stop.stop_id == "T"
        assert itinerary.total_duration_s >= walk_s + 600


def test_query_points_sharing_a_stop_give_a_walk_only_itinerary(engine, snapshot, config) -> None:
    (itinerary,) = engine.search("T", "T", NOW, 0.3, snapshot, dest_point=NORTH_OF_DESTINATION)

    assert _modes(itinerary) == [TransitMode.WALK]
    walk_s = haversine_distance(*DESTINATION, *NORTH_OF_DESTINATION) / config.walk_speed_mps
    assert itinerary.total_duration_s == pytest.approx(walk_s)


def test_scheduled_confidence_propagates_to_itinerary(engine, snapshot) -> None:
    best = engine.search("S", "T", NOW, 0.3, snapshot)[0]
    assert best.legs[0].confidence == Confidence.SCHEDULED
    assert best.confidence == Confidence.SCHEDULED


def test_live_prediction_drives_leg_times(engine, builder, topology) -> None:
    live = builder.build_graph(topology, [prediction("X", "S", "1234", 1)], NOW)

    best = engine.search("S", "T", NOW, 0.3, live)[0]
    bus = [leg for leg in best.legs if leg.mode == TransitMode.BUS][0]
    assert bus.confidence == Confidence.LIVE
    assert bus.start_time == NOW + timedelta(minutes=1)
    assert bus.end_time == NOW + timedelta(minutes=11)
    assert best.confidence == Confidence.LIVE


def test_low_safety_confidence_is_flagged(snapshot, config) -> None:
    scorer = FakeScorer(SCENARIO_RISKS, confidence=SafetyConfidence.LOW)
    best = RouteSearchEngine(scorer, config).search("S", "T", NOW, 0.3, snapshot)[0]
    assert best.safety_confidence == SafetyConfidence.LOW


def test_each_link_is_scored_once_per_search(snapshot, config) -> None:
    scorer = FakeScorer(SCENARIO_RISKS)
    RouteSearchEngine(scorer, config).search("S", "T", NOW, 0.3, snapshot)
    # S->T bus, S->W walk, W->S walk, W->T train
    assert scorer.calls == 4


def test_naive_departure_is_read_as_agency_local_time(engine, snapshot) -> None:
    best = engine.search("S", "T", NOW.replace(tzinfo=None), 0.3, snapshot)[0]
    assert best.departure_time == NOW


def test_past_deadline_raises_no_route_found(engine, snapshot) -> None:
    with pytest.raises(NoRouteFound):
        engine.search("S", "T", NOW, 0.3, snapshot, deadline=time.monotonic() - 1)


@pytest.mark.parametrize("alpha", [-0.1, 1.5])
def test_alpha_outside_unit_interval_is_rejected(engine, snapshot, alpha) -> None:
    with pytest.raises(InvalidQuery):
        engine.search("S", "T", NOW, alpha, snapshot)


def test_unknown_stop_is_rejected(engine, snapshot) -> None:
    with pytest.raises(InvalidQuery):
        engine.search("S", "NOPE", NOW, 0.3, snapshot)


def test_edge_cost_weights_time_in_hours_and_risk_in_hundredths(engine) -> None:
    assert engine.edge_cost(3600, 0.0, 0.0) == pytest.approx(1.0)
    assert engine.edge_cost(0, 50.0, 1.0) == pytest.approx(0.5)
    assert engine.edge_cost(1800, 40.0, 0.5) == pytest.approx(0.25 + 0.2)


class TestJaccard:
    def test_identical_sets(self) -> None:
        keys = frozenset({("S", "T", "bus", "X")})
        assert jaccard(keys, keys) == 1.0

    def test_disjoint_sets(self) -> None:
        assert jaccard(frozenset({1, 2}), frozenset({3})) == 0.0

    def test_partial_overlap(self) -> None:
        assert jaccard(frozenset({1, 2, 3}), frozenset({2, 3, 4})) == pytest.approx(0.5)

    def test_two_empty_sets_are_identical(self) -> None:
        assert jaccard(frozenset(), frozenset()) == 1.0
