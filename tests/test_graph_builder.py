"""Tests for time-expanded graph construction and snapshot publication."""

from __future__ import annotations

import gc
import threading
from datetime import timedelta

import networkx as nx
import pytest

from conftest import NOW, FakeScorer, prediction
from safe_transit_routing.algorithms import RouteSearchEngine
from safe_transit_routing.data import Confidence, RouteStatus, TransitMode, load_topology, parse_topology
from safe_transit_routing.exceptions import TopologyLoadError
from safe_transit_routing.mapping import SnapshotStore, TransitGraphBuilder

# One trip an hour: the 07:46 trip is due at M 07:52 and at T 07:58.
HOURLY_TOPOLOGY = {
    "stops": [
        {"id": "S", "name": "Clark & Polk", "lat": 41.8700, "lon": -87.6300},
        {"id": "M", "name": "Clark & Madison", "lat": 41.8800, "lon": -87.6300},
        {"id": "T", "name": "Clark & Kinzie", "lat": 41.8900, "lon": -87.6300},
    ],
    "routes": [
        {"route_id": "N", "name": "Clark Night", "mode": "bus", "direction": "Northbound",
         "stops": ["S", "M", "T"], "hop_seconds": [360, 360], "headway_s": 3600,
         "service_start": "00:46", "service_end": "24:00"},
    ],
}


def _ride_edges(snapshot):
    return [edge for _, _, edge in snapshot.graph.edges(data="edge") if edge.is_timed]


class TestBuildGraph:
    def test_schedule_only_snapshot(self, snapshot) -> None:
        rides = _ride_edges(snapshot)
        assert rides
        assert all(edge.confidence == Confidence.SCHEDULED for edge in rides)
        assert all(edge.arrival >= edge.departure for edge in rides)
        assert snapshot.route_status == {"X": RouteStatus.SCHEDULE_ONLY, "G": RouteStatus.SCHEDULE_ONLY}
        assert snapshot.horizon_end == NOW + timedelta(hours=1.5)

    def test_trips_cover_the_horizon(self, snapshot) -> None:
        departures = [edge.departure for edge in snapshot.departures_from("S", NOW)]
        assert departures[0] == NOW
        assert departures == sorted(departures)
        assert departures[-1] <= snapshot.horizon_end
        assert all(b - a == timedelta(minutes=10) for a, b in zip(departures, departures[1:]))

    def test_fresh_prediction_makes_edge_live(self, builder, topology) -> None:
        snapshot = builder.build_graph(topology, [prediction("X", "S", "1234", 2, age_s=30)], NOW)

        first = next(snapshot.departures_from("S", NOW))
        assert first.confidence == Confidence.LIVE
        assert first.vehicle_id == "1234"
        assert first.departure == NOW + timedelta(minutes=2)
        assert first.arrival == NOW + timedelta(minutes=12)
        assert first.scheduled_departure == NOW
        assert snapshot.route_status["X"] == RouteStatus.FRESH
        assert snapshot.route_status["G"] == RouteStatus.SCHEDULE_ONLY

    def test_stale_prediction_falls_back_to_schedule(self, builder, topology, config) -> None:
        stale = prediction("X", "S", "1234", 2, age_s=config.staleness_threshold_s + 60)
        snapshot = builder.build_graph(topology, [stale], NOW)

        assert all(edge.confidence == Confidence.SCHEDULED for edge in _ride_edges(snapshot))
        assert snapshot.route_status["X"] == RouteStatus.SCHEDULE_ONLY
        # Raw predictions are kept so a later cycle can carry them forward
        assert snapshot.predictions["X"] == (stale,)

    def test_prediction_for_other_direction_is_ignored(self, builder, topology) -> None:
        snapshot = builder.build_graph(
            topology, [prediction("X", "S", "1234", 2, direction="Southbound")], NOW)
        assert all(edge.confidence == Confidence.SCHEDULED for edge in _ride_edges(snapshot))

    def test_prediction_far_from_any_trip_is_ignored(self, bus_topology, config) -> None:
        config.prediction_match_window_s = 60
        builder = TransitGraphBuilder(config)
        # Trips leave every 10 minutes, this one would be 5 minutes off
        snapshot = builder.build_graph(bus_topology, [prediction("22", "1900", "4001", 5)], NOW)
        assert snapshot.route_status["22"] == RouteStatus.SCHEDULE_ONLY

    def test_route_status_override(self, builder, topology) -> None:
        snapshot = builder.build_graph(topology, [], NOW, route_status={"X": RouteStatus.STALE})
        assert snapshot.route_status["X"] == RouteStatus.STALE
        assert snapshot.route_status["G"] == RouteStatus.SCHEDULE_ONLY

    def test_versions_strictly_increase(self, builder, topology) -> None:
        versions = [builder.build_graph(topology, [], NOW).version for _ in range(3)]
        assert versions == sorted(set(versions))
        assert versions[0] >= 1

    def test_missing_topology_is_fatal(self, builder) -> None:
        with pytest.raises(TopologyLoadError):
            builder.build_graph(None, [], NOW)

    def test_naive_reference_time_is_localized(self, builder, topology) -> None:
        snapshot = builder.build_graph(topology, [], NOW.replace(tzinfo=None))
        assert snapshot.as_of == NOW

    def test_late_vehicle_keeps_its_remaining_hops(self, builder, config) -> None:
        topology = parse_topology(HOURLY_TOPOLOGY)
        # Nine minutes late: leaves M at 08:01 and reaches T at 08:08
        late = [prediction("N", "M", "7001", 1), prediction("N", "T", "7001", 8)]

        snapshot = builder.build_graph(topology, late, NOW)

        first = next(snapshot.departures_from("M", NOW))
        assert first.confidence == Confidence.LIVE
        assert first.vehicle_id == "7001"
        assert first.departure == NOW + timedelta(minutes=1)
        assert first.arrival == NOW + timedelta(minutes=8)
        assert first.scheduled_arrival < NOW
        # Hops the vehicle has already run are gone
        assert next(snapshot.departures_from("S", NOW)).departure == NOW + timedelta(minutes=46)

        itineraries = RouteSearchEngine(FakeScorer({}), config).search("M", "T", NOW, 0.3, snapshot)
        assert itineraries[0].arrival_time == NOW + timedelta(minutes=8)

    def test_past_trip_without_a_vehicle_is_dropped(self, builder) -> None:
        snapshot = builder.build_graph(parse_topology(HOURLY_TOPOLOGY), [], NOW)
        first = next(snapshot.departures_from("M", NOW))
        assert first.departure == NOW + timedelta(minutes=52)


class TestSnapshotQueries:
    def test_walk_edges_connect_nearby_stops_both_ways(self, snapshot, config) -> None:
        walks = snapshot.walk_edges_from("S")
        assert [edge.destination for edge in walks] == ["W"]
        walk = walks[0]
        assert walk.mode == TransitMode.WALK
        assert not walk.is_timed
        assert walk.walk_seconds == pytest.approx(360 / config.walk_speed_mps, rel=0.02)
        assert [edge.destination for edge in snapshot.walk_edges_from("W")] == ["S"]
        assert snapshot.walk_edges_from("T") == ()

    def test_departures_respect_not_before(self, snapshot) -> None:
        later = NOW + timedelta(minutes=25)
        first = next(snapshot.departures_from("S", later))
        assert first.departure == NOW + timedelta(minutes=30)

    def test_next_hop_follows_the_same_trip(self) -> None:
        topology = load_topology()
        snapshot = TransitGraphBuilder().build_graph(topology, [], NOW)

        edge = next(e for e in snapshot.departures_from("1900", NOW) if e.route_id == "22")
        following = snapshot.next_hop(edge)
        assert following is not None
        assert following.trip_id == edge.trip_id
        assert following.origin == edge.destination
        assert following.departure >= edge.arrival

    def test_nearest_stop(self, snapshot) -> None:
        stop, distance = snapshot.nearest_stop(41.8801, -87.6301)
        assert stop.stop_id == "S"
        assert distance < 20
        assert snapshot.nearest_stop(41.95, -87.70, max_distance_m=800) is None

    def test_snapshot_is_frozen(self, snapshot) -> None:
        with pytest.raises(nx.NetworkXError):
            snapshot.graph.add_node("Z")
        with pytest.raises(TypeError):
            snapshot.stops["Z"] = None

    def test_confidence_counts(self, builder, topology) -> None:
        snapshot = builder.build_graph(topology, [prediction("X", "S", "1234", 0)], NOW)
        counts = snapshot.confidence_counts()
        assert counts["live"] == 1
        assert counts["scheduled"] == len(_ride_edges(snapshot)) - 1


class TestSnapshotStore:
    def test_publish_and_read(self, builder, topology) -> None:
        store = SnapshotStore()
        assert store.current() is None

        snapshot = builder.build_graph(topology, [], NOW)
        assert store.publish(snapshot)
        assert store.current() is snapshot

    def test_older_version_is_rejected(self, builder, topology) -> None:
        store = SnapshotStore()
        older = builder.build_graph(topology, [], NOW)
        newer = builder.build_graph(topology, [], NOW)

        assert store.publish(newer)
        assert not store.publish(older)
        assert store.current() is newer

    def test_reader_keeps_its_snapshot_across_publish(self, builder, topology) -> None:
        store = SnapshotStore()
        store.publish(builder.build_graph(topology, [], NOW))
        held = store.current()

        store.publish(builder.build_graph(topology, [prediction("X", "S", "1234", 1)], NOW))
        assert store.current() is not held
        assert held.route_status["X"] == RouteStatus.SCHEDULE_ONLY
        assert held.version in store.live_versions

    def test_superseded_snapshot_is_retired_once_unreferenced(self, builder, topology) -> None:
        store = SnapshotStore()
        first = builder.build_graph(topology, [], NOW)
        first_version = first.version
        store.publish(first)
        store.publish(builder.build_graph(topology, [], NOW))

        del first
        gc.collect()
        assert store.retired_count == 1
        assert first_version not in store.live_versions

    def test_retirement_while_another_thread_reads_versions(self, builder, topology) -> None:
        store = SnapshotStore()
        snapshots = [builder.build_graph(topology, [], NOW) for _ in range(30)]
        errors = []
        done = threading.Event()

        def read_versions():
            while not done.is_set():
                try:
                    sorted(store.live_versions)
                except RuntimeError as e:
                    errors.append(e)

        reader = threading.Thread(target=read_versions)
        reader.start()
        try:
            for snapshot in snapshots:
                store.publish(snapshot)
            last_version = snapshots[-1].version
            del snapshot
            snapshots.clear()
            gc.collect()
        finally:
            done.set()
            reader.join(5)

        assert errors == []
        assert store.retired_count == 29
        assert store.live_versions == {last_version}
