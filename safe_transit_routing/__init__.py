"""
Safe Transit Routing

Safety-weighted multimodal route search for Chicago transit: a live,
time-expanded bus/train graph, a decay-kernel crime risk surface, and a
label-correcting search that trades travel time against safety.

## Quick Start

```python
from datetime import datetime
from safe_transit_routing import (
    RoutingConfig, SafetyScorer, TransitGraphBuilder, RouteSearchEngine, load_topology
)

config = RoutingConfig()
topology = load_topology()
snapshot = TransitGraphBuilder(config).build_graph(topology, [], datetime.now())

scorer = SafetyScorer(config)
engine = RouteSearchEngine(scorer, config)
itineraries = engine.search('1900', '41450', datetime.now(), config.alpha_for(False), snapshot)
```

## Main Components

- **TransitGraphBuilder**: topology + live predictions -> immutable GraphSnapshot
- **SafetyScorer**: crime incidents -> 0-100 risk surface, polyline scoring
- **PredictionRefreshCoordinator**: periodic provider polling and snapshot publication
- **RouteSearchEngine**: ranked, diverse itineraries for a time/safety trade-off
- **ResponseAssembler**: edge paths -> legs with ETAs and descriptions
"""

from .algorithms import BaseCrimeWeighter, ResponseAssembler, RouteSearchEngine, SafetyScorer
from .config import ProviderSettings, RoutingConfig
from .data import Itinerary, Leg, load_crime_data, load_topology
from .exceptions import (
    InsufficientSafetyData,
    InvalidQuery,
    NoRouteFound,
    ProviderUnavailable,
    TopologyLoadError,
    TransitRoutingError,
)
from .mapping import GraphSnapshot, SnapshotStore, TransitGraphBuilder
from .refresh import PredictionRefreshCoordinator

# Version information
__version__ = "1.0.0"

# Public API
__all__ = [
    # Main interfaces
    'TransitGraphBuilder',
    'GraphSnapshot',
    'SnapshotStore',
    'SafetyScorer',
    'BaseCrimeWeighter',
    'RouteSearchEngine',
    'ResponseAssembler',
    'PredictionRefreshCoordinator',
    'RoutingConfig',
    'ProviderSettings',

    # Results
    'Itinerary',
    'Leg',

    # Errors
    'TransitRoutingError',
    'TopologyLoadError',
    'ProviderUnavailable',
    'InvalidQuery',
    'NoRouteFound',
    'InsufficientSafetyData',

    # Utilities
    'load_topology',
    'load_crime_data',

    # Metadata
    '__version__'
]
