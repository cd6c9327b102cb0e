"""
Service layer for the safe transit routing API.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional
from zoneinfo import ZoneInfo

from safe_transit_routing import __version__
from safe_transit_routing.algorithms import RouteSearchEngine, SafetyScorer
from safe_transit_routing.config import ProviderSettings, RoutingConfig
from safe_transit_routing.data import (
    CrimeIncident,
    Itinerary,
    Leg,
    RouteStatus,
    RouteTopology,
    Stop,
    TransitMode,
    load_crime_data,
    load_topology,
)
from safe_transit_routing.data.distance_utils import in_bounds
from safe_transit_routing.exceptions import InvalidQuery, NoRouteFound
from safe_transit_routing.mapping import GraphSnapshot, SnapshotStore, TransitGraphBuilder
from safe_transit_routing.providers import BusTrackerClient, CrimePortalClient, TrainTrackerClient
from safe_transit_routing.refresh import PredictionRefreshCoordinator

from api.schemas.routing import (
    HealthResponse,
    ItineraryResponse,
    LegResponse,
    RouteQuery,
    RouteResult,
    SnapshotResponse,
    StopInfo,
    VehicleResponse,
    VehiclesResponse,
)
from api.schemas.safety import (
    IncidentBatch,
    IncidentRefreshRequest,
    IngestResponse,
    SafetyQuery,
    SafetyResponse,
)

logger = logging.getLogger(__name__)


class ServiceNotReady(Exception):
    """The service has no published snapshot yet."""


class TransitRoutingService:
    """
    Service class that wires the routing core together for the API.

    Owns the snapshot store, the safety scorer, the search engine and the
    background refresh coordinator.
    """

    def __init__(self, config: Optional[RoutingConfig] = None,
                 settings: Optional[ProviderSettings] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """Initialize the routing service. Nothing is loaded until start()."""
        self.config = config or RoutingConfig()
        self.settings = settings or ProviderSettings()
        tz = ZoneInfo(self.config.timezone)
        self.clock = clock or (lambda: datetime.now(tz))

        self.topology: Optional[RouteTopology] = None
        self.builder = TransitGraphBuilder(self.config)
        self.store = SnapshotStore()
        self.scorer = SafetyScorer(self.config, clock=self.clock)
        self.engine = RouteSearchEngine(self.scorer, self.config)
        self.coordinator: Optional[PredictionRefreshCoordinator] = None
        self.crime_client: Optional[CrimePortalClient] = None

    @property
    def is_ready(self) -> bool:
        return self.store.current() is not None

    def _client_options(self) -> Dict[str, float]:
        return {
            'timeout_s': self.config.provider_timeout_s,
            'attempts': self.config.provider_attempts,
            'backoff_base_s': self.config.backoff_base_s,
            'timezone': self.config.timezone,
        }

    def start(self, topology: Optional[RouteTopology] = None, start_refresh: bool = True) -> None:
        """
        Load topology, publish the first snapshot and start live refresh.

        Raises:
            TopologyLoadError: If the topology cannot be loaded (fatal)
        """
        logger.info("Initializing safe transit routing service...")
        self.topology = topology or load_topology(self.settings.topology_path)
        self.store.publish(self.builder.build_graph(self.topology, [], self.clock()))

        if self.settings.crime_data_path:
            try:
                incidents = load_crime_data(self.settings.crime_data_path)
                self.scorer.fit(incidents)
            except (FileNotFoundError, ValueError) as e:
                logger.warning(f"Crime data not loaded, safety scores will be low-confidence: {e}")

        self.crime_client = CrimePortalClient(self.settings.crime_base_url, self.settings.crime_app_token,
                                              **self._client_options())

        providers = {}
        if self.settings.bus_enabled:
            providers[TransitMode.BUS] = BusTrackerClient(self.settings.bus_api_key, self.settings.bus_base_url,
                                                          **self._client_options())
        if self.settings.train_enabled:
            providers[TransitMode.TRAIN] = TrainTrackerClient(self.settings.train_api_key,
                                                              self.settings.train_base_url,
                                                              **self._client_options())
        if not providers:
            logger.warning("No transit API keys configured; serving schedule-only snapshots")
        elif start_refresh:
            self.coordinator = PredictionRefreshCoordinator(
                self.topology, self.builder, self.store, providers, self.config, clock=self.clock)
            self.coordinator.start()

        logger.info(f"Service initialized with {len(self.topology.stops)} stops, "
                    f"{len(self.topology.route_ids)} routes, live providers: "
                    f"{', '.join(m.value for m in providers) or 'none'}")

    def shutdown(self) -> None:
        if self.coordinator is not None:
            self.coordinator.stop(timeout=self.config.provider_timeout_s)
            for client in self.coordinator.providers.values():
                client.close()
            self.coordinator = None
        if self.crime_client is not None:
            self.crime_client.close()

    def _snapshot(self) -> GraphSnapshot:
        snapshot = self.store.current()
        if snapshot is None:
            raise ServiceNotReady("Transit graph not loaded yet")
        return snapshot

    # Routing

    def get_health_status(self) -> HealthResponse:
        snapshot = self.store.current()
        live = [r for r, s in snapshot.route_status.items() if s == RouteStatus.FRESH] if snapshot else []
        return HealthResponse(
            status="healthy" if snapshot is not None else "starting",
            version=__version__,
            topology_loaded=self.topology is not None,
            snapshot_version=snapshot.version if snapshot else None,
            live_routes=sorted(live),
            crime_incidents_count=len(self.scorer.surface.incident_ids),
            safety_surface_version=self.scorer.version,
        )

    def get_snapshot_info(self) -> SnapshotResponse:
        snapshot = self._snapshot()
        counts = snapshot.confidence_counts()
        return SnapshotResponse(
            version=snapshot.version,
            as_of=snapshot.as_of,
            horizon_end=snapshot.horizon_end,
            stop_count=len(snapshot.stops),
            edge_count=snapshot.edge_count,
            live_edges=counts['live'],
            scheduled_edges=counts['scheduled'],
            route_status={route: status.value for route, status in snapshot.route_status.items()},
        )

    def get_vehicles(self, route_id: str) -> VehiclesResponse:
        snapshot = self._snapshot()
        if route_id not in snapshot.route_status:
            raise KeyError(route_id)
        return VehiclesResponse(
            route_id=route_id,
            route_status=snapshot.route_status[route_id].value,
            snapshot_version=snapshot.version,
            vehicles=[
                VehicleResponse(vehicle_id=v.vehicle_id, route_id=v.route_id, lat=v.lat, lng=v.lon,
                                heading=v.heading, delayed=v.delayed, observed_at=v.observed_at)
                for v in snapshot.vehicles_for(route_id)
            ],
        )

    def calculate_route(self, request: RouteQuery) -> RouteResult:
        """
        Calculate ranked itineraries between two coordinates.

        Raises:
            InvalidQuery: If either coordinate is outside the service area
        """
        bounds = self.config.service_bounds
        for label, point in (('origin', request.origin), ('destination', request.destination)):
            if not in_bounds(point.lat, point.lng, bounds):
                raise InvalidQuery(f"{label} ({point.lat}, {point.lng}) is outside the Chicago service area")

        snapshot = self._snapshot()
        alpha = self.config.alpha_for(request.prioritize_safety)
        now = self.clock()

        origin = snapshot.nearest_stop(request.origin.lat, request.origin.lng, self.config.max_access_walk_m)
        destination = snapshot.nearest_stop(request.destination.lat, request.destination.lng,
                                            self.config.max_access_walk_m)
        if origin is None or destination is None:
            which = 'origin' if origin is None else 'destination'
            return RouteResult(
                success=True, status="no_route", alpha=alpha, generated_at=now,
                snapshot_version=snapshot.version,
                message=f"No transit stop within {self.config.max_access_walk_m:.0f}m of the {which}",
            )

        origin_stop, access_m = origin
        dest_stop, egress_m = destination

        try:
            itineraries = self.engine.search(
                origin_stop.stop_id, dest_stop.stop_id, request.depart_after or now, alpha, snapshot,
                deadline=time.monotonic() + self.config.search_budget_s,
                origin_point=(request.origin.lat, request.origin.lng),
                dest_point=(request.destination.lat, request.destination.lng),
            )
        except NoRouteFound as e:
            logger.warning(f"Route search gave up: {e}")
            itineraries = []

        return RouteResult(
            success=True,
            status="ok" if itineraries else "no_route",
            message=f"Found {len(itineraries)} itineraries" if itineraries
            else "No route found within the current schedule horizon",
            itineraries=[self._itinerary_response(i, alpha) for i in itineraries],
            generated_at=now,
            snapshot_version=snapshot.version,
            alpha=alpha,
            origin_stop=self._stop_info(origin_stop),
            destination_stop=self._stop_info(dest_stop),
            access_walk_m=round(access_m, 1),
            egress_walk_m=round(egress_m, 1),
        )

    @staticmethod
    def _stop_info(stop: Stop) -> StopInfo:
        return StopInfo(stop_id=stop.stop_id, name=stop.name, lat=stop.lat, lng=stop.lon)

    def _leg_response(self, leg: Leg) -> LegResponse:
        return LegResponse(
            mode=leg.mode.value,
            description=leg.description,
            start_stop=self._stop_info(leg.start_stop),
            end_stop=self._stop_info(leg.end_stop),
            start_time=leg.start_time,
            end_time=leg.end_time,
            duration_s=leg.duration_s,
            route_id=leg.route_id,
            confidence=leg.confidence.value,
            polyline=[[lat, lon] for lat, lon in leg.polyline],
        )

    def _itinerary_response(self, itinerary: Itinerary, alpha: float) -> ItineraryResponse:
        return ItineraryResponse(
            legs=[self._leg_response(leg) for leg in itinerary.legs],
            departure_time=itinerary.departure_time,
            arrival_time=itinerary.arrival_time,
            total_duration_s=itinerary.total_duration_s,
            time_cost=round(itinerary.time_cost, 6),
            safety_cost=round(itinerary.safety_cost, 6),
            total_cost=round(itinerary.total_cost(alpha), 6),
            max_risk=round(itinerary.max_risk, 2),
            confidence=itinerary.confidence.value,
            safety_confidence=itinerary.safety_confidence.value,
            geojson=dict(self.engine.assembler.to_feature_collection(itinerary)),
        )

    # Safety

    def score_safety(self, request: SafetyQuery) -> SafetyResponse:
        if request.polyline is not None:
            assessment = self.scorer.score([(p.lat, p.lng) for p in request.polyline], per_segment=True)
        else:
            assessment = self.scorer.score_bbox(request.bounding_box.as_bounds())
        return SafetyResponse(
            score=round(assessment.score, 2),
            confidence=assessment.confidence.value,
            sample_count=assessment.sample_count,
            segment_scores=[round(s, 2) for s in assessment.segment_scores],
            surface_version=self.scorer.version,
        )

    def _ingest(self, incidents, bounds: Optional[Dict[str, float]]) -> IngestResponse:
        ingested = self.scorer.fit(incidents, bounds=bounds)
        surface = self.scorer.surface
        return IngestResponse(ingested=ingested, surface_version=surface.version, cell_count=len(surface.cells))

    def ingest_incidents(self, request: IncidentBatch) -> IngestResponse:
        incidents = [
            CrimeIncident(incident_id=i.id, lat=i.lat, lon=i.lng, category=i.category,
                          timestamp=i.timestamp if i.timestamp.tzinfo else
                          i.timestamp.replace(tzinfo=ZoneInfo(self.config.timezone)))
            for i in request.incidents
        ]
        bounds = request.bounding_box.as_bounds() if request.bounding_box else None
        return self._ingest(incidents, bounds)

    def refresh_incidents(self, request: IncidentRefreshRequest) -> IngestResponse:
        """
        Pull incidents for a bounding box from the crime portal.

        Raises:
            ProviderUnavailable: If the portal cannot be reached
        """
        if self.crime_client is None:
            raise ServiceNotReady("Crime portal client not initialized")
        bounds = request.bounding_box.as_bounds()
        end = self.clock()
        incidents = self.crime_client.get_incidents(bounds, start=end - timedelta(days=request.days), end=end)
        return self._ingest(incidents, bounds)


routing_service = TransitRoutingService(RoutingConfig.from_env(), ProviderSettings.from_env())


def get_routing_service() -> TransitRoutingService:
    """FastAPI dependency returning the process-wide service."""
    return routing_service
