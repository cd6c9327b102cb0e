"""
Periodic refresh of live predictions into new graph snapshots.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Set, Tuple
from zoneinfo import ZoneInfo

from ..config.routing_config import RoutingConfig
from ..data.models import LivePrediction, RouteStatus, RouteTopology, TransitMode, VehicleState
from ..exceptions import ProviderUnavailable, TransitRoutingError
from ..mapping.graph_builder import GraphSnapshot, TransitGraphBuilder
from ..mapping.snapshot_store import SnapshotStore
from ..providers.base import JsonApiClient, RouteFeed

logger = logging.getLogger(__name__)


class PredictionRefreshCoordinator:
    """
    Pull live data for every tracked route and publish a new snapshot.

    Routes are fetched in parallel. A route whose fetch fails, or is still
    running when the cycle budget runs out, keeps the previous snapshot's
    predictions and is marked STALE; every other route is published fresh
    in the same cycle.
    """

    def __init__(self, topology: RouteTopology, builder: TransitGraphBuilder, store: SnapshotStore,
                 providers: Mapping[TransitMode, JsonApiClient],
                 config: Optional[RoutingConfig] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the refresh coordinator.

        Args:
            topology: Static topology every snapshot is built from
            builder: Graph builder
            store: Where new snapshots are published
            providers: Live data client per transit mode; routes of other modes stay schedule-only
            config: Routing configuration
            clock: Returns the current time (defaults to now in the agency timezone)
        """
        self.topology = topology
        self.builder = builder
        self.store = store
        self.providers = dict(providers)
        self.config = config or RoutingConfig()
        tz = ZoneInfo(self.config.timezone)
        self.clock = clock or (lambda: datetime.now(tz))

        self._stops_by_route: Dict[str, List[str]] = {}
        for pattern in topology.routes:
            stops = self._stops_by_route.setdefault(pattern.route_id, [])
            stops.extend(s for s in pattern.stop_ids if s not in stops)

        self._cancel: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def tracked_routes(self) -> List[str]:
        return [r for r in self.topology.route_ids if self.topology.mode_of(r) in self.providers]

    def _fetch(self, route_id: str) -> RouteFeed:
        client = self.providers[self.topology.mode_of(route_id)]
        return client.fetch_route(route_id, self._stops_by_route.get(route_id, []))

    def _fetch_all(self, routes: List[str]) -> Tuple[Dict[str, RouteFeed], Set[str]]:
        """Fetch routes in parallel, abandoning whatever outlives the cycle budget."""
        feeds: Dict[str, RouteFeed] = {}
        failed: Set[str] = set()
        if not routes:
            return feeds, failed

        executor = ThreadPoolExecutor(max_workers=min(self.config.refresh_workers, len(routes)),
                                      thread_name_prefix='prediction-refresh')
        try:
            futures = {executor.submit(self._fetch, route): route for route in routes}
            done, not_done = wait(futures, timeout=self.config.refresh_budget_s)
        finally:
            # Do not block on stragglers; their results are discarded
            executor.shutdown(wait=False, cancel_futures=True)

        for future in not_done:
            route = futures[future]
            failed.add(route)
            logger.warning(f"Route {route}: fetch exceeded {self.config.refresh_budget_s:.1f}s, abandoned")

        for future in done:
            route = futures[future]
            try:
                feeds[route] = future.result()
            except ProviderUnavailable as e:
                failed.add(route)
                logger.warning(f"Route {route}: provider unavailable ({e}); keeping previous data")
            except Exception as e:
                failed.add(route)
                logger.error(f"Route {route}: unexpected fetch error: {e}")

        return feeds, failed

    def refresh_once(self, now: Optional[datetime] = None) -> GraphSnapshot:
        """
        Run one refresh cycle and publish its snapshot.

        Returns:
            The snapshot built in this cycle
        """
        start_time = time.time()
        now = now or self.clock()
        previous = self.store.current()

        feeds, failed = self._fetch_all(self.tracked_routes)

        predictions: List[LivePrediction] = []
        vehicles: List[VehicleState] = []
        for feed in feeds.values():
            predictions.extend(feed.predictions)
            vehicles.extend(feed.vehicles)
        for route in failed:
            if previous is not None:
                predictions.extend(previous.predictions.get(route, ()))
                vehicles.extend(previous.vehicles_for(route))

        snapshot = self.builder.build_graph(
            self.topology, predictions, now,
            route_status={route: RouteStatus.STALE for route in failed},
            vehicles=vehicles,
        )
        self.store.publish(snapshot)

        elapsed = time.time() - start_time
        logger.info(f"Refresh cycle published v{snapshot.version} in {elapsed:.2f}s: "
                    f"{len(feeds)} routes fresh, {len(failed)} stale"
                    + (f" ({', '.join(sorted(failed))})" if failed else ""))
        return snapshot

    def run(self, cancel_token: threading.Event) -> None:
        """Refresh every ``refresh_interval_s`` until ``cancel_token`` is set."""
        logger.info(f"Prediction refresh started for routes {', '.join(self.tracked_routes) or '(none)'} "
                    f"every {self.config.refresh_interval_s:.0f}s")
        while not cancel_token.is_set():
            try:
                self.refresh_once()
            except TransitRoutingError as e:
                logger.error(f"Refresh cycle failed: {e}")
            except Exception:
                logger.exception("Unexpected error in refresh cycle; retrying next interval")
            cancel_token.wait(self.config.refresh_interval_s)
        logger.info("Prediction refresh stopped")

    def start(self) -> threading.Thread:
        """Run the refresh loop on a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._cancel = threading.Event()
        self._thread = threading.Thread(target=self.run, args=(self._cancel,),
                                        name='prediction-refresh-loop', daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        if self._cancel is not None:
            self._cancel.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
