"""
Wiring of the long-lived service objects shared by every request handler.

``build_services`` accepts keyword overrides for any component so tests can
swap in in-memory registries, a fake bridge connector or a fake Gemini client
while keeping the rest of the real wiring.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from google import genai
from tornado.ioloop import PeriodicCallback

from tour_backend.config import Settings
from tour_backend.db.context import DBContext
from tour_backend.errors import NotConnected
from tour_backend.repositories import (
    NotificationRepository,
    RobotRepository,
    RouteRepository,
    TourRepository,
    UserRepository,
)
from tour_backend.services.console import ConsoleBroadcaster
from tour_backend.services.jwt_service import JWTAuthService
from tour_backend.services.narration_service import NarrationCache, NarrationService
from tour_backend.services.notifications import NotificationBus, log_sink
from tour_backend.services.robot_controller import RobotController
from tour_backend.services.robot_telemetry import RobotTelemetry
from tour_backend.services.session_coordinator import SessionCoordinator
from tour_backend.services.transport_link import TransportLink

logger = logging.getLogger(__name__)

REPOSITORY_NAMES = ("tours", "robots", "routes", "users", "notification_store")
STALE_SWEEP_INTERVAL_SECONDS = 60


@dataclass
class Services:
    settings: Settings
    tours: Any
    robots: Any
    routes: Any
    users: Any
    notification_store: Any
    bus: NotificationBus
    console: ConsoleBroadcaster
    link: TransportLink
    controller: RobotController
    telemetry: RobotTelemetry
    narrator: NarrationService
    coordinator: SessionCoordinator
    jwt_service: JWTAuthService
    _stale_sweep: Optional[PeriodicCallback] = None

    async def start(self):
        for name in REPOSITORY_NAMES:
            ensure_indexes = getattr(getattr(self, name), "ensure_indexes", None)
            if ensure_indexes is not None:
                await ensure_indexes()
        self.bus.start()
        self.link.start()
        if self.settings.stale_tour_minutes > 0:
            self._stale_sweep = PeriodicCallback(self.expire_stale_tours, STALE_SWEEP_INTERVAL_SECONDS * 1000)
            self._stale_sweep.start()

    async def expire_stale_tours(self):
        await self.coordinator.expire_stale_tours(timedelta(minutes=self.settings.stale_tour_minutes))

    async def shutdown(self):
        if self._stale_sweep is not None:
            self._stale_sweep.stop()
            self._stale_sweep = None
        if self.link.connected:
            try:
                self.controller.stop()
            except NotConnected:
                logger.warning("Could not stop the robot before closing the bridge link")
        self.link.shutdown()
        self.telemetry.stop_simulation()
        await self.bus.stop()


def _narrator(settings: Settings) -> NarrationService:
    client = genai.Client(api_key=settings.gemini_api_key) if settings.gemini_api_key else None
    return NarrationService(
        client=client,
        model_id=settings.gemini_model,
        prompt_path=settings.narration_prompt_path,
        cache=NarrationCache(settings.narration_cache_size),
        timeout=settings.narration_timeout,
    )


def build_services(
    settings: Optional[Settings] = None,
    connector: Optional[Callable[..., Any]] = None,
    clock: Optional[Callable[[], datetime]] = None,
    **overrides: Any,
) -> Services:
    settings = settings or Settings()
    if any(name not in overrides for name in REPOSITORY_NAMES):
        db_context = DBContext(settings.mongodb_url, settings.mongodb_database)
    else:
        db_context = None
    tours = overrides.get("tours") or TourRepository(db_context)
    robots = overrides.get("robots") or RobotRepository(db_context)
    routes = overrides.get("routes") or RouteRepository(db_context)
    users = overrides.get("users") or UserRepository(db_context)
    notification_store = overrides.get("notification_store") or NotificationRepository(db_context)

    bus = overrides.get("bus") or NotificationBus(enabled=settings.notifications_enabled, clock=clock)
    console = ConsoleBroadcaster()
    bus.add_sink("log", log_sink, throttled=True)
    bus.add_sink("store", notification_store.insert)
    bus.add_sink("console", console)

    link = TransportLink(
        settings.rosbridge_url,
        bus,
        reconnect_interval=settings.reconnect_interval,
        connector=connector,
    )
    controller = RobotController(link, bus)
    telemetry = RobotTelemetry(link, bus, stop_robot=controller.stop)

    async def record_connection():
        await robots.touch_connection(settings.robot_name, datetime.now(timezone.utc))

    link.on_connected(record_connection)

    coordinator = SessionCoordinator(
        tours,
        robots,
        routes,
        users,
        bus,
        policy=settings.admission_policy,
        cancel_on_abandon=settings.cancel_on_abandon,
        clock=clock,
    )
    return Services(
        settings=settings,
        tours=tours,
        robots=robots,
        routes=routes,
        users=users,
        notification_store=notification_store,
        bus=bus,
        console=console,
        link=link,
        controller=controller,
        telemetry=telemetry,
        narrator=overrides.get("narrator") or _narrator(settings),
        coordinator=coordinator,
        jwt_service=overrides.get("jwt_service") or JWTAuthService(),
    )
