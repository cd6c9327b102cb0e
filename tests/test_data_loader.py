"""Tests for topology and crime data loading."""

from __future__ import annotations

import copy
import json
from datetime import datetime, timezone

import pytest

from conftest import TWO_OPTION_TOPOLOGY
from safe_transit_routing.data import TransitMode, load_crime_data, load_topology, parse_topology
from safe_transit_routing.exceptions import TopologyLoadError


class TestTopology:
    def test_bundled_chicago_topology(self) -> None:
        topology = load_topology()
        assert {"22", "6", "Red"} <= set(topology.route_ids)
        assert topology.mode_of("Red") == TransitMode.TRAIN
        assert len(topology.patterns_for("22")) == 2
        assert TransitMode.BUS in topology.stops["1900"].modes

    def test_missing_file_is_fatal(self, tmp_path) -> None:
        with pytest.raises(TopologyLoadError):
            load_topology(str(tmp_path / "missing.json"))

    def test_invalid_json_is_fatal(self, tmp_path) -> None:
        path = tmp_path / "topology.json"
        path.write_text("{not json")
        with pytest.raises(TopologyLoadError):
            load_topology(str(path))

    def test_service_hours_past_midnight(self) -> None:
        raw = copy.deepcopy(TWO_OPTION_TOPOLOGY)
        raw["routes"][0]["service_end"] = "25:30"
        pattern = parse_topology(raw).routes[0]
        assert pattern.service_end_s == 25.5 * 3600
        assert pattern.service_start_s == 0

    def test_unknown_stop_reference(self) -> None:
        raw = copy.deepcopy(TWO_OPTION_TOPOLOGY)
        raw["routes"][0]["stops"] = ["S", "NOWHERE"]
        with pytest.raises(TopologyLoadError, match="NOWHERE"):
            parse_topology(raw)

    @pytest.mark.parametrize("change", [
        {"hop_seconds": [600, 600]},
        {"hop_seconds": [-1]},
        {"mode": "ferry"},
        {"headway_s": 0},
    ])
    def test_inconsistent_route_is_rejected(self, change) -> None:
        raw = copy.deepcopy(TWO_OPTION_TOPOLOGY)
        raw["routes"][0].update(change)
        with pytest.raises(TopologyLoadError):
            parse_topology(raw)

    def test_empty_topology(self) -> None:
        with pytest.raises(TopologyLoadError):
            parse_topology({"stops": [], "routes": []})


class TestCrimeData:
    def _write(self, tmp_path, features) -> str:
        path = tmp_path / "crimes.geojson"
        path.write_text(json.dumps({"type": "FeatureCollection", "features": features}))
        return str(path)

    def test_point_features_become_incidents(self, tmp_path) -> None:
        path = self._write(tmp_path, [
            {"type": "Feature", "geometry": {"type": "Point", "coordinates": [-87.63, 41.88]},
             "properties": {"id": "13001", "primary_type": "ROBBERY", "date": "2024-05-01T22:15:00"}},
            {"type": "Feature", "geometry": {"type": "Point", "coordinates": [-87.62, 41.87]},
             "properties": {"category": "THEFT", "date": "2024-05-02T10:00:00-05:00"}},
            {"type": "Feature", "geometry": {"type": "Point", "coordinates": [-87.62, 41.87]},
             "properties": {"primary_type": "THEFT"}},
            {"type": "Feature", "geometry": {"type": "LineString", "coordinates": [[-87.6, 41.8], [-87.7, 41.9]]},
             "properties": {"primary_type": "THEFT", "date": "2024-05-02T10:00:00"}},
        ])

        incidents = load_crime_data(path)

        assert len(incidents) == 2
        first, second = incidents
        assert (first.incident_id, first.lat, first.lon) == ("13001", 41.88, -87.63)
        assert first.timestamp == datetime(2024, 5, 1, 22, 15, tzinfo=timezone.utc)
        assert first.severity > second.severity
        assert second.timestamp.utcoffset().total_seconds() == -5 * 3600

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_crime_data(str(tmp_path / "nope.geojson"))

    def test_not_geojson(self, tmp_path) -> None:
        path = tmp_path / "crimes.json"
        path.write_text(json.dumps([{"id": 1}]))
        with pytest.raises(ValueError):
            load_crime_data(str(path))
