"""
Core routing algorithms.
"""

from .label_correcting import RouteSearchEngine, jaccard
from .response_assembler import ResponseAssembler

__all__ = [
    'RouteSearchEngine',
    'ResponseAssembler',
    'jaccard'
]
