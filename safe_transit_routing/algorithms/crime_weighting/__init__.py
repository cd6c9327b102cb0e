"""
Crime weighting strategies for route scoring.
"""

from .base_weighter import BaseCrimeWeighter
from .safety_scorer import SafetyScorer, SafetySurface

__all__ = ['BaseCrimeWeighter', 'SafetyScorer', 'SafetySurface']
