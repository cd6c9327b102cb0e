"""
Clients for the external transit telemetry and crime data providers.
"""

from .base import JsonApiClient, RouteFeed
from .bus_tracker import BusTrackerClient
from .crime_portal import CrimePortalClient
from .train_tracker import TrainTrackerClient

__all__ = [
    'JsonApiClient',
    'RouteFeed',
    'BusTrackerClient',
    'TrainTrackerClient',
    'CrimePortalClient'
]
