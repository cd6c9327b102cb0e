"""
Configuration management for safety-weighted transit routing parameters.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv


@dataclass
class RoutingConfig:
    """Configuration parameters for graph building, safety scoring, search and refresh."""

    # Transit Graph
    staleness_threshold_s: float = 120.0  # seconds - live predictions older than this fall back to schedule
    graph_horizon_s: float = 5400.0  # seconds - how far ahead scheduled trips are expanded
    prediction_match_window_s: float = 600.0  # seconds - max gap between a prediction and the trip it updates
    walk_speed_mps: float = 1.3  # meters/second - pedestrian speed for walk edges
    max_transfer_walk_m: float = 400.0  # meters - stops closer than this get walk edges

    # Safety Surface
    cell_size_m: float = 150.0  # meters - safety grid resolution
    time_half_life_days: float = 30.0  # days - incident influence halves every half-life
    spatial_radius_m: float = 300.0  # meters - incidents never influence cells further than this
    spatial_sigma_m: float = 120.0  # meters - gaussian width of the spatial kernel
    risk_saturation: float = 5.0  # raw risk mapped to ~63 on the 0-100 scale
    safety_sample_interval_m: float = 25.0  # meters - sample spacing along polylines
    safety_percentile: float = 90.0  # percentile of sampled cell scores used as segment score
    reference_latitude: float = 41.88  # degrees - projection latitude for the metric grid

    # Route Search
    default_alpha: float = 0.3  # safety weight for regular queries
    safety_priority_alpha: float = 0.8  # safety weight when the rider prioritizes safety
    time_normalization_s: float = 3600.0  # seconds - one unit of normalized time
    max_itineraries: int = 3  # K ranked itineraries returned per query
    diversity_threshold: float = 0.6  # Jaccard similarity at or above which a candidate is rejected
    transfer_buffer_s: float = 60.0  # seconds - min connection time between different trips
    search_budget_s: float = 2.0  # seconds - default deadline for a single query
    alternative_rounds: int = 3  # extra searches with reused links penalized
    reuse_penalty: float = 0.5  # added cost factor for links already in an accepted itinerary
    cost_slack: float = 0.5  # labels costlier than (1 + slack) * best destination cost are pruned
    max_labels: int = 200000  # hard cap on labels created per search
    max_access_walk_m: float = 800.0  # meters - max walk from query coordinates to a stop

    # Prediction Refresh
    refresh_interval_s: float = 30.0  # seconds between refresh cycles
    provider_timeout_s: float = 5.0  # seconds - per-call timeout
    provider_attempts: int = 2  # attempts per provider call
    backoff_base_s: float = 0.5  # seconds - first retry delay, doubled each attempt
    refresh_workers: int = 8  # parallel provider fetches per cycle
    refresh_budget_s: float = 15.0  # seconds - fetches still running after this are abandoned for the cycle

    # Service Area (Chicago)
    service_bounds: Dict[str, float] = field(default_factory=lambda: {
        'lat_min': 41.60, 'lat_max': 42.10,
        'lon_min': -87.95, 'lon_max': -87.50
    })
    timezone: str = 'America/Chicago'

    def validate(self) -> None:
        """Validate configuration parameters."""
        for name in ('default_alpha', 'safety_priority_alpha'):
            if not 0 <= getattr(self, name) <= 1:
                raise ValueError(f"{name} must be between 0 and 1")
        if not 0 < self.diversity_threshold <= 1:
            raise ValueError("diversity_threshold must be in (0, 1]")
        if not 0 <= self.safety_percentile <= 100:
            raise ValueError("safety_percentile must be between 0 and 100")
        if self.cell_size_m <= 0:
            raise ValueError("cell_size_m must be positive")
        if self.spatial_radius_m < 0 or self.spatial_sigma_m <= 0:
            raise ValueError("spatial kernel radius and sigma must be positive")
        if self.time_half_life_days <= 0:
            raise ValueError("time_half_life_days must be positive")
        if self.risk_saturation <= 0:
            raise ValueError("risk_saturation must be positive")
        if self.max_itineraries < 1:
            raise ValueError("max_itineraries must be >= 1")
        if self.provider_attempts < 1:
            raise ValueError("provider_attempts must be >= 1")
        if self.refresh_interval_s <= 0 or self.refresh_budget_s <= 0:
            raise ValueError("refresh_interval_s and refresh_budget_s must be positive")
        if self.walk_speed_mps <= 0 or self.time_normalization_s <= 0:
            raise ValueError("walk_speed_mps and time_normalization_s must be positive")

    def alpha_for(self, prioritize_safety: bool) -> float:
        """Safety weight for a query."""
        return self.safety_priority_alpha if prioritize_safety else self.default_alpha

    @classmethod
    def from_env(cls, prefix: str = 'SAFE_TRANSIT_') -> 'RoutingConfig':
        """
        Create configuration with overrides from environment variables.

        Every scalar field can be overridden by an upper-cased, prefixed
        variable, e.g. ``SAFE_TRANSIT_REFRESH_INTERVAL_S=15``.
        """
        config = cls()
        for f in fields(cls):
            raw = os.environ.get(prefix + f.name.upper())
            if raw is None or f.name == 'service_bounds':
                continue
            current = getattr(config, f.name)
            if isinstance(current, int) and not isinstance(current, bool):
                setattr(config, f.name, int(raw))
            elif isinstance(current, float):
                setattr(config, f.name, float(raw))
            else:
                setattr(config, f.name, raw)
        config.validate()
        return config

    @classmethod
    def create_safety_priority_config(cls) -> 'RoutingConfig':
        """Create configuration whose default queries already favor safety."""
        return cls(
            default_alpha=0.8,
            safety_percentile=95.0,
            spatial_radius_m=400.0,
            max_transfer_walk_m=300.0
        )

    @classmethod
    def create_low_latency_config(cls) -> 'RoutingConfig':
        """
        Create configuration for constrained deployments.

        Shorter horizon, coarser safety grid and a tighter search budget.
        """
        return cls(
            graph_horizon_s=3600.0,
            cell_size_m=250.0,
            safety_sample_interval_m=50.0,
            search_budget_s=0.5,
            alternative_rounds=1,
            cost_slack=0.25
        )


@dataclass
class ProviderSettings:
    """Endpoints and credentials for the upstream data providers."""

    bus_base_url: str = 'http://www.ctabustracker.com/bustime/api/v2'
    train_base_url: str = 'https://lapi.transitchicago.com/api/1.0'
    crime_base_url: str = 'https://data.cityofchicago.org/resource/ijzp-q8t2.json'
    bus_api_key: str = ''
    train_api_key: str = ''
    crime_app_token: str = ''
    topology_path: Optional[str] = None
    crime_data_path: Optional[str] = None

    @property
    def bus_enabled(self) -> bool:
        return bool(self.bus_api_key)

    @property
    def train_enabled(self) -> bool:
        return bool(self.train_api_key)

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> 'ProviderSettings':
        """Load credentials from an optional .env file and the process environment."""
        load_dotenv(env_file)
        return cls(
            bus_base_url=os.environ.get('CTA_BUS_BASE_URL', cls.bus_base_url),
            train_base_url=os.environ.get('CTA_TRAIN_BASE_URL', cls.train_base_url),
            crime_base_url=os.environ.get('CHICAGO_CRIME_BASE_URL', cls.crime_base_url),
            bus_api_key=os.environ.get('CTA_BUS_API_KEY', ''),
            train_api_key=os.environ.get('CTA_TRAIN_API_KEY', ''),
            crime_app_token=os.environ.get('CHICAGO_DATA_APP_TOKEN', ''),
            topology_path=os.environ.get('SAFE_TRANSIT_TOPOLOGY_PATH'),
            crime_data_path=os.environ.get('SAFE_TRANSIT_CRIME_DATA_PATH'),
        )
