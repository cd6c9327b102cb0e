"""
Decay-kernel safety surface over a metric grid.

Each cell's risk is

    score(cell) = normalize( sum_i severity(i) * timeDecay(now - t_i) * spatialDecay(dist(i, cell)) )

with an exponential half-life for time and a bounded gaussian for distance.
Ingestion builds a new SafetySurface touching only cells inside the kernel
radius of the new incidents, then swaps it in; scoring reads whichever
surface was current when it started.
"""

import logging
import math
import threading
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ...config.routing_config import RoutingConfig
from ...data.distance_utils import Coordinate, METERS_PER_DEGREE_LAT, bounds_of, in_bounds
from ...data.models import CrimeIncident, SafetyAssessment, SafetyCell, SafetyConfidence
from ...exceptions import InsufficientSafetyData, InvalidQuery
from .base_weighter import BaseCrimeWeighter

logger = logging.getLogger(__name__)

CellIndex = Tuple[int, int]

MAX_BBOX_CELLS = 40000


class SafetySurface:
    """One immutable version of the safety grid."""

    def __init__(self, version: int, cells: Mapping[str, SafetyCell],
                 coverage: Tuple[Dict[str, float], ...], incident_ids: FrozenSet[str]):
        self.version = version
        self.cells = MappingProxyType(dict(cells))
        self.coverage = coverage
        self.incident_ids = incident_ids

    def is_covered(self, lat: float, lon: float) -> bool:
        return any(in_bounds(lat, lon, b) for b in self.coverage)


class SafetyScorer(BaseCrimeWeighter):
    """
    Grid-based safety scorer with time and distance decay.

    Path scores are the configured percentile (default 90th) of the cell
    scores sampled along the polyline, so one dangerous block is not averaged
    away by a long quiet stretch.
    """

    def __init__(self, config: Optional[RoutingConfig] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the safety scorer.

        Args:
            config: Routing configuration
            clock: Returns the current time; defaults to UTC now
        """
        super().__init__(config)
        self.config.validate()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._cos_ref = math.cos(math.radians(self.config.reference_latitude))
        self._surface = SafetySurface(0, {}, (), frozenset())
        self._ingest_lock = threading.Lock()

        logger.info(f"SafetyScorer initialized with {self.config.cell_size_m:.0f}m cells, "
                    f"{self.config.time_half_life_days:.0f}-day half-life, "
                    f"{self.config.spatial_radius_m:.0f}m kernel radius")

    @property
    def surface(self) -> SafetySurface:
        return self._surface

    @property
    def version(self) -> int:
        return self._surface.version

    # Grid geometry

    def cell_index(self, lat: float, lon: float) -> CellIndex:
        size = self.config.cell_size_m
        y = lat * METERS_PER_DEGREE_LAT
        x = lon * METERS_PER_DEGREE_LAT * self._cos_ref
        return (math.floor(y / size), math.floor(x / size))

    @staticmethod
    def cell_key(index: CellIndex) -> str:
        return f"{index[0]}:{index[1]}"

    def cell_center(self, index: CellIndex) -> Coordinate:
        size = self.config.cell_size_m
        lat = (index[0] + 0.5) * size / METERS_PER_DEGREE_LAT
        lon = (index[1] + 0.5) * size / (METERS_PER_DEGREE_LAT * self._cos_ref)
        return (lat, lon)

    # Decay kernels

    def time_decay(self, age_seconds: float) -> float:
        half_life_s = self.config.time_half_life_days * 86400.0
        return 0.5 ** (max(age_seconds, 0.0) / half_life_s)

    def spatial_decay(self, distance_m: float) -> float:
        if distance_m > self.config.spatial_radius_m:
            return 0.0
        sigma = self.config.spatial_sigma_m
        return math.exp(-(distance_m ** 2) / (2.0 * sigma ** 2))

    def _kernel_cells(self, lat: float, lon: float) -> List[Tuple[CellIndex, float]]:
        """Cells within the kernel radius of a point with their spatial weights."""
        size = self.config.cell_size_m
        reach = int(math.ceil(self.config.spatial_radius_m / size)) + 1
        ci, cj = self.cell_index(lat, lon)
        y = lat * METERS_PER_DEGREE_LAT
        x = lon * METERS_PER_DEGREE_LAT * self._cos_ref

        cells = []
        for i in range(ci - reach, ci + reach + 1):
            for j in range(cj - reach, cj + reach + 1):
                cy, cx = (i + 0.5) * size, (j + 0.5) * size
                weight = self.spatial_decay(math.hypot(cy - y, cx - x))
                if weight > 0:
                    cells.append(((i, j), weight))
        return cells

    # Ingestion

    def fit(self, incidents: Iterable[CrimeIncident],
            bounds: Optional[Dict[str, float]] = None,
            now: Optional[datetime] = None) -> int:
        """
        Ingest a batch of incidents and publish a new surface version.

        Incidents already ingested (by id) are skipped. Only cells inside the
        kernel radius of new incidents are recomputed.
        """
        now = now or self.clock()
        with self._ingest_lock:
            current = self._surface
            new_incidents = [i for i in incidents if i.incident_id not in current.incident_ids]

            delta: Dict[CellIndex, float] = {}
            counts: Dict[CellIndex, int] = {}
            for incident in new_incidents:
                weight = incident.severity * self.time_decay((now - incident.timestamp).total_seconds())
                for index, spatial in self._kernel_cells(incident.lat, incident.lon):
                    delta[index] = delta.get(index, 0.0) + weight * spatial
                    counts[index] = counts.get(index, 0) + 1

            cells = dict(current.cells)
            for index, added in delta.items():
                key = self.cell_key(index)
                previous = cells.get(key)
                raw = added
                count = counts[index]
                if previous is not None:
                    age = (now - previous.last_updated).total_seconds()
                    raw += previous.raw_risk * self.time_decay(age)
                    count += previous.incident_count
                cells[key] = SafetyCell(
                    cell_id=key,
                    score=self.normalize_score(raw),
                    raw_risk=raw,
                    incident_count=count,
                    last_updated=now,
                )

            coverage = current.coverage
            if bounds is not None:
                coverage = coverage + (dict(bounds),)
            elif new_incidents:
                points = [(i.lat, i.lon) for i in new_incidents]
                coverage = coverage + (bounds_of(points, buffer_m=self.config.spatial_radius_m),)

            self._surface = SafetySurface(
                version=current.version + 1,
                cells=cells,
                coverage=coverage,
                incident_ids=current.incident_ids | {i.incident_id for i in new_incidents},
            )

        logger.info(f"Ingested {len(new_incidents)} incidents into safety surface "
                    f"v{self._surface.version} ({len(delta)} cells updated, {len(cells)} total)")
        return len(new_incidents)

    # Scoring

    def _cell_score(self, surface: SafetySurface, index: CellIndex,
                    at: datetime) -> Tuple[float, bool]:
        """Decayed score of a cell at ``at`` and whether any incident contributed."""
        cell = surface.cells.get(self.cell_key(index))
        if cell is None:
            return 0.0, False
        age = (at - cell.last_updated).total_seconds()
        return self.normalize_score(cell.raw_risk * self.time_decay(age)), cell.incident_count > 0

    def _percentile(self, scores: Sequence[float]) -> float:
        return float(np.clip(np.percentile(scores, self.config.safety_percentile), 0.0, 100.0))

    def score(self, polyline: Sequence[Coordinate], at: Optional[datetime] = None,
              strict: bool = False, per_segment: bool = False) -> SafetyAssessment:
        """
        Score a polyline.

        Args:
            polyline: (lat, lon) vertices
            at: Time the score is evaluated for (defaults to now)
            strict: Raise InsufficientSafetyData instead of returning a low-confidence score
            per_segment: Also score each vertex-to-vertex segment

        Returns:
            SafetyAssessment with the percentile score in [0, 100]
        """
        if not polyline:
            raise InvalidQuery("Cannot score an empty polyline")

        at = at or self.clock()
        surface = self._surface
        samples = self.sample_points(polyline)

        scores = []
        any_data = False
        covered = True
        for lat, lon in samples:
            value, has_data = self._cell_score(surface, self.cell_index(lat, lon), at)
            scores.append(value)
            any_data = any_data or has_data
            covered = covered and surface.is_covered(lat, lon)

        segment_scores: Tuple[float, ...] = ()
        if per_segment and len(polyline) > 1:
            segment_scores = tuple(
                self._percentile([
                    self._cell_score(surface, self.cell_index(lat, lon), at)[0]
                    for lat, lon in self.sample_points([a, b])
                ])
                for a, b in zip(polyline, polyline[1:])
            )

        return self._assess(scores, covered and any_data, strict, segment_scores)

    def score_bbox(self, bounds: Dict[str, float], at: Optional[datetime] = None,
                   strict: bool = False) -> SafetyAssessment:
        """
        Score an area as the percentile of all cell scores inside it.

        Raises:
            InvalidQuery: If the box is inverted or spans too many cells
        """
        if bounds['lat_min'] > bounds['lat_max'] or bounds['lon_min'] > bounds['lon_max']:
            raise InvalidQuery("Bounding box minimum exceeds maximum")

        at = at or self.clock()
        surface = self._surface
        i0, j0 = self.cell_index(bounds['lat_min'], bounds['lon_min'])
        i1, j1 = self.cell_index(bounds['lat_max'], bounds['lon_max'])
        if (i1 - i0 + 1) * (j1 - j0 + 1) > MAX_BBOX_CELLS:
            raise InvalidQuery("Bounding box is too large to score")

        scores = []
        any_data = False
        for i in range(i0, i1 + 1):
            for j in range(j0, j1 + 1):
                value, has_data = self._cell_score(surface, (i, j), at)
                scores.append(value)
                any_data = any_data or has_data

        corners = [(bounds['lat_min'], bounds['lon_min']), (bounds['lat_max'], bounds['lon_max'])]
        covered = all(surface.is_covered(lat, lon) for lat, lon in corners)
        return self._assess(scores, covered and any_data, strict)

    def _assess(self, scores: Sequence[float], confident: bool, strict: bool,
                segment_scores: Tuple[float, ...] = ()) -> SafetyAssessment:
        value = self._percentile(scores)
        if not confident:
            if strict:
                raise InsufficientSafetyData("No incident data covers the requested area", score=value)
            logger.debug(f"Low-confidence safety score {value:.1f} over {len(scores)} samples")
        return SafetyAssessment(
            score=value,
            confidence=SafetyConfidence.HIGH if confident else SafetyConfidence.LOW,
            sample_count=len(scores),
            segment_scores=segment_scores,
        )
