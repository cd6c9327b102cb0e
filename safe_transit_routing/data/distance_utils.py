"""
Distance and geometry utilities for stops, edges and safety sampling.
"""

import math
from typing import Dict, List, Sequence, Tuple

from shapely.geometry import LineString

Coordinate = Tuple[float, float]

EARTH_RADIUS_M = 6371000
METERS_PER_DEGREE_LAT = 111320.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates
        lat2, lon2: Second point coordinates

    Returns:
        Distance in meters
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def polyline_length(polyline: Sequence[Coordinate]) -> float:
    """
    Calculate the length of a (lat, lon) polyline.

    Returns:
        Length in meters
    """
    total_length = 0.0
    for (lat1, lon1), (lat2, lon2) in zip(polyline, polyline[1:]):
        total_length += haversine_distance(lat1, lon1, lat2, lon2)
    return total_length


def sample_polyline(polyline: Sequence[Coordinate], interval_m: float) -> List[Coordinate]:
    """
    Sample points at regular intervals along a polyline, endpoints included.

    Args:
        polyline: (lat, lon) vertices
        interval_m: Distance between samples in meters

    Returns:
        List of (lat, lon) sample points
    """
    if not polyline:
        return []
    if len(polyline) == 1:
        return [tuple(polyline[0])]

    length = polyline_length(polyline)
    num_samples = max(2, int(length / interval_m) + 1)

    # Shapely works in (x, y) = (lon, lat)
    line = LineString([(lon, lat) for lat, lon in polyline])
    if line.length == 0:
        return [tuple(polyline[0])]

    sample_points = []
    for i in range(num_samples):
        ratio = i / (num_samples - 1)
        point = line.interpolate(ratio, normalized=True)
        sample_points.append((point.y, point.x))
    return sample_points


def meters_to_degrees(distance_m: float, latitude: float) -> Tuple[float, float]:
    """Convert a distance to (lat_degrees, lon_degrees) at ``latitude``."""
    lat_deg = distance_m / METERS_PER_DEGREE_LAT
    lon_deg = distance_m / (METERS_PER_DEGREE_LAT * math.cos(math.radians(latitude)))
    return lat_deg, lon_deg


def bounds_of(points: Sequence[Coordinate], buffer_m: float = 0.0) -> Dict[str, float]:
    """
    Get the bounding box of a set of (lat, lon) points with an optional buffer.

    Returns:
        Dictionary with lat_min, lat_max, lon_min, lon_max
    """
    lats = [p[0] for p in points]
    lons = [p[1] for p in points]
    lat_buf, lon_buf = meters_to_degrees(buffer_m, sum(lats) / len(lats))
    return {
        'lat_min': min(lats) - lat_buf,
        'lat_max': max(lats) + lat_buf,
        'lon_min': min(lons) - lon_buf,
        'lon_max': max(lons) + lon_buf
    }


def in_bounds(lat: float, lon: float, bounds: Dict[str, float]) -> bool:
    return (bounds['lat_min'] <= lat <= bounds['lat_max'] and
            bounds['lon_min'] <= lon <= bounds['lon_max'])
