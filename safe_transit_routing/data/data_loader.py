"""
Loaders for the static transit topology and offline crime incident files.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from ..exceptions import TopologyLoadError
from .models import CrimeIncident, RoutePattern, RouteTopology, Stop, TransitMode

logger = logging.getLogger(__name__)

DEFAULT_TOPOLOGY_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'chicago_topology.json')


def _parse_clock(value: Any) -> float:
    """Convert 'HH:MM' (hours may exceed 23) or a number of seconds to seconds after midnight."""
    if isinstance(value, (int, float)):
        return float(value)
    hours, minutes = str(value).split(':')[:2]
    return int(hours) * 3600 + int(minutes) * 60


def parse_topology(raw: Dict[str, Any]) -> RouteTopology:
    """
    Build a RouteTopology from its JSON representation.

    Args:
        raw: Dictionary with 'stops' and 'routes' lists

    Returns:
        Validated RouteTopology

    Raises:
        TopologyLoadError: If stops or routes are missing or inconsistent
    """
    if not raw.get('stops') or not raw.get('routes'):
        raise TopologyLoadError("Topology must contain non-empty 'stops' and 'routes'")

    try:
        routes = []
        served: Dict[str, Set[TransitMode]] = {}
        for entry in raw['routes']:
            mode = TransitMode(entry['mode'])
            pattern = RoutePattern(
                route_id=str(entry['route_id']),
                name=entry.get('name', str(entry['route_id'])),
                mode=mode,
                direction=entry.get('direction', ''),
                stop_ids=tuple(str(s) for s in entry['stops']),
                hop_seconds=tuple(float(h) for h in entry['hop_seconds']),
                headway_s=float(entry['headway_s']),
                service_start_s=_parse_clock(entry.get('service_start', '05:00')),
                service_end_s=_parse_clock(entry.get('service_end', '24:00')),
            )
            routes.append(pattern)
            for stop_id in pattern.stop_ids:
                served.setdefault(stop_id, set()).add(mode)

        stops = {}
        for entry in raw['stops']:
            stop_id = str(entry['id'])
            declared = {TransitMode(m) for m in entry.get('modes', [])}
            stops[stop_id] = Stop(
                stop_id=stop_id,
                name=entry['name'],
                lat=float(entry['lat']),
                lon=float(entry['lon']),
                modes=frozenset(declared | served.get(stop_id, set())),
            )
    except (KeyError, TypeError, ValueError) as e:
        raise TopologyLoadError(f"Invalid topology entry: {e}") from e

    unknown = sorted(s for r in routes for s in r.stop_ids if s not in stops)
    if unknown:
        raise TopologyLoadError(f"Routes reference unknown stops: {', '.join(unknown[:10])}")

    return RouteTopology(stops=stops, routes=tuple(routes))


def load_topology(data_path: Optional[str] = None) -> RouteTopology:
    """
    Load the static stop/route topology.

    Args:
        data_path: Path to the topology JSON file (defaults to the bundled Chicago sample)

    Returns:
        RouteTopology

    Raises:
        TopologyLoadError: If the file is missing or malformed
    """
    if data_path is None:
        data_path = DEFAULT_TOPOLOGY_PATH

    if not os.path.exists(data_path):
        raise TopologyLoadError(f"Topology file not found: {data_path}")

    logger.info(f"Loading transit topology from: {data_path}")

    try:
        with open(data_path, 'r') as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise TopologyLoadError(f"Invalid JSON format in topology file: {e}") from e

    topology = parse_topology(raw)
    logger.info(f"Loaded {len(topology.stops)} stops and {len(topology.routes)} route patterns")
    return topology


def load_crime_data(data_path: str) -> List[CrimeIncident]:
    """
    Load crime incidents from a GeoJSON file.

    Point features need a 'primary_type' (or 'category') property and a
    'date' property in ISO format; features without them are skipped.

    Raises:
        FileNotFoundError: If crime data file not found
        ValueError: If data format is invalid
    """
    if not os.path.exists(data_path):
        raise FileNotFoundError(f"Crime data file not found: {data_path}")

    logger.info(f"Loading crime data from: {data_path}")

    try:
        with open(data_path, 'r') as f:
            crime_data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON format in crime data file: {e}")

    if 'features' not in crime_data:
        raise ValueError("Crime data must be in GeoJSON format with 'features' key")

    incidents = []
    skipped = 0
    for index, feature in enumerate(crime_data['features']):
        geometry = feature.get('geometry') or {}
        props = feature.get('properties') or {}
        if geometry.get('type') != 'Point' or len(geometry.get('coordinates', [])) < 2:
            skipped += 1
            continue
        lon, lat = geometry['coordinates'][0], geometry['coordinates'][1]
        category = props.get('primary_type') or props.get('category')
        date = props.get('date')
        if not category or not date:
            skipped += 1
            continue
        try:
            timestamp = datetime.fromisoformat(str(date))
        except ValueError:
            skipped += 1
            continue
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        incidents.append(CrimeIncident(
            incident_id=str(props.get('id', index)),
            lat=float(lat),
            lon=float(lon),
            category=str(category),
            timestamp=timestamp,
        ))

    logger.info(f"Loaded {len(incidents)} crime incidents ({skipped} skipped)")
    return incidents
