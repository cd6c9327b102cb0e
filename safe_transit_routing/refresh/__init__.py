"""
Background refresh of live transit data.
"""

from .coordinator import PredictionRefreshCoordinator

__all__ = ['PredictionRefreshCoordinator']
