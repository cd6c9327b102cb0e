"""
Data model, loaders and geometry utilities for safety-weighted transit routing.

This module contains:
- Stops, edges, incidents, legs and itineraries
- Topology and crime data loading
- Distance calculations and polyline sampling
"""

from .models import (
    Confidence,
    CrimeIncident,
    Itinerary,
    Leg,
    LivePrediction,
    RoutePattern,
    RouteStatus,
    RouteTopology,
    SafetyAssessment,
    SafetyCell,
    SafetyConfidence,
    Stop,
    TransitEdge,
    TransitMode,
    VehicleState,
    worst_confidence,
)
from .data_loader import load_topology, parse_topology, load_crime_data
from .distance_utils import haversine_distance, polyline_length, sample_polyline

__all__ = [
    'Confidence',
    'CrimeIncident',
    'Itinerary',
    'Leg',
    'LivePrediction',
    'RoutePattern',
    'RouteStatus',
    'RouteTopology',
    'SafetyAssessment',
    'SafetyCell',
    'SafetyConfidence',
    'Stop',
    'TransitEdge',
    'TransitMode',
    'VehicleState',
    'worst_confidence',
    'load_topology',
    'parse_topology',
    'load_crime_data',
    'haversine_distance',
    'polyline_length',
    'sample_polyline'
]
