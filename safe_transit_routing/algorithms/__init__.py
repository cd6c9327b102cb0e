"""
Safety scoring and route search.

This module contains:
- Crime weighting (decay-kernel safety surface)
- Time-dependent label-correcting route search
- Itinerary assembly
"""

from .crime_weighting.base_weighter import BaseCrimeWeighter
from .crime_weighting.safety_scorer import SafetyScorer, SafetySurface
from .routing.label_correcting import RouteSearchEngine
from .routing.response_assembler import ResponseAssembler

__all__ = [
    'BaseCrimeWeighter',
    'SafetyScorer',
    'SafetySurface',
    'RouteSearchEngine',
    'ResponseAssembler'
]
