"""
Configuration management for safety-weighted transit routing.
"""

from .routing_config import RoutingConfig, ProviderSettings

__all__ = [
    'RoutingConfig',
    'ProviderSettings'
]
