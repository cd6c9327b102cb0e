"""
Transit graph construction and snapshot publication.
"""

from .graph_builder import GraphSnapshot, TransitGraphBuilder
from .snapshot_store import SnapshotStore

__all__ = [
    'GraphSnapshot',
    'TransitGraphBuilder',
    'SnapshotStore'
]
