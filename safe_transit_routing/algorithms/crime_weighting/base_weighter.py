"""
Base abstract class for crime weighting strategies.
"""

import math
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from ...config.routing_config import RoutingConfig
from ...data.distance_utils import Coordinate, sample_polyline
from ...data.models import CrimeIncident, SafetyAssessment


class BaseCrimeWeighter(ABC):
    """
    Abstract base class for crime weighting strategies.

    This defines the interface the route search relies on: incidents go in
    through ``fit``, risk scores in [0, 100] come out per polyline.
    """

    def __init__(self, config: Optional[RoutingConfig] = None):
        """
        Initialize the crime weighter.

        Args:
            config: Routing configuration parameters
        """
        self.config = config or RoutingConfig()

    @abstractmethod
    def fit(self, incidents: Iterable[CrimeIncident],
            bounds: Optional[Dict[str, float]] = None,
            now: Optional[datetime] = None) -> int:
        """
        Ingest a batch of crime incidents.

        Args:
            incidents: Incidents returned for one bounding-box query
            bounds: The queried bounding box, recorded as covered even if empty
            now: Reference time for recency decay

        Returns:
            Number of new incidents ingested
        """

    @abstractmethod
    def score(self, polyline: Sequence[Coordinate], at: Optional[datetime] = None,
              strict: bool = False) -> SafetyAssessment:
        """Risk score in [0, 100] for a polyline, with a confidence flag."""

    def sample_points(self, polyline: Sequence[Coordinate]) -> List[Coordinate]:
        """Sample points along a polyline at the configured interval."""
        return sample_polyline(polyline, self.config.safety_sample_interval_m)

    def normalize_score(self, raw_risk: float) -> float:
        """
        Map an unbounded raw risk onto [0, 100].

        Saturating transform: monotonic, 0 for no risk, approaching 100 as
        raw risk grows, and independent of other cells.
        """
        if raw_risk <= 0:
            return 0.0
        return float(np.clip(100.0 * (1.0 - math.exp(-raw_risk / self.config.risk_saturation)), 0.0, 100.0))
