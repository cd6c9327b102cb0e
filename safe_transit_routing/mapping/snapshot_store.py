"""
Publication point for graph snapshots.

Writers build a complete snapshot and swap the ``current`` reference; readers
grab the reference once and keep using that object for their whole search.
Old snapshots are retired by the garbage collector once the last reader
drops them.
"""

import logging
import threading
import weakref
from typing import Optional

from .graph_builder import GraphSnapshot

logger = logging.getLogger(__name__)


class SnapshotStore:
    """Holds the current GraphSnapshot and tracks retirement of old ones."""

    def __init__(self):
        self._current: Optional[GraphSnapshot] = None
        # Reentrant: a retirement callback can fire from GC inside publish()
        self._publish_lock = threading.RLock()
        self._live_versions = set()
        self.published_count = 0
        self.retired_count = 0

    def current(self) -> Optional[GraphSnapshot]:
        """Return the latest published snapshot. Lock-free; a single reference read."""
        return self._current

    def publish(self, snapshot: GraphSnapshot) -> bool:
        """
        Atomically make ``snapshot`` the current one.

        Snapshots older than the current version are rejected so a slow
        refresh can never roll readers back.

        Returns:
            True if the snapshot was published
        """
        with self._publish_lock:
            previous = self._current
            if previous is not None and snapshot.version <= previous.version:
                logger.warning(f"Rejected snapshot v{snapshot.version}: "
                               f"current is already v{previous.version}")
                return False
            self._live_versions.add(snapshot.version)
            weakref.finalize(snapshot, self._retire, snapshot.version)
            self._current = snapshot
            self.published_count += 1

        logger.info(f"Published graph snapshot v{snapshot.version}"
                    + (f" (replacing v{previous.version})" if previous is not None else ""))
        return True

    def _retire(self, version: int) -> None:
        with self._publish_lock:
            self._live_versions.discard(version)
            self.retired_count += 1
        logger.debug(f"Graph snapshot v{version} retired")

    @property
    def live_versions(self):
        """Versions still referenced by the store or an in-flight reader."""
        with self._publish_lock:
            return frozenset(self._live_versions)
