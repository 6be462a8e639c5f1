import asyncio
import logging
import os
import signal

import tornado.web

from tour_backend.config import Settings
from tour_backend.handlers import (
    AbandonTourHandler,
    CompleteTourHandler,
    ConsoleWebSocketHandler,
    DocsHandler,
    HealthHandler,
    NextWaypointHandler,
    NotificationsAdminHandler,
    PendingTourHandler,
    RatingHandler,
    RobotActiveTourHandler,
    RobotAvailabilityHandler,
    RobotCommandHandler,
    RobotMapHandler,
    RobotNavigateHandler,
    RobotPoseHandler,
    RobotsAdminHandler,
    RobotSpeakHandler,
    RobotStatusAdminHandler,
    RobotStatusHandler,
    RouteWaypointsHandler,
    StartTourHandler,
    UserActiveTourHandler,
    VerifyPinHandler,
    WaypointArrivedHandler,
)
from tour_backend.services.container import Services, build_services


def make_app(services: Services) -> tornado.web.Application:
    deps = dict(services=services)
    return tornado.web.Application(
        [
            (r"/health", HealthHandler, deps),
            (r"/docs", DocsHandler),
            (r"/api/start-tour", StartTourHandler, deps),
            (r"/api/robot/pin", VerifyPinHandler, deps),
            (r"/api/robot/tour/complete", CompleteTourHandler, deps),
            (r"/tour/complete", CompleteTourHandler, deps),
            (r"/api/tour/abandon", AbandonTourHandler, deps),
            (r"/api/tours/(\d+)/rating", RatingHandler, deps),
            (r"/api/tours/(\d+)/waypoints", RouteWaypointsHandler, deps),
            (r"/api/robot/availability/([^/]+)", RobotAvailabilityHandler, deps),
            (r"/api/robot/pending-tours/([^/]+)", PendingTourHandler, deps),
            (r"/api/users/(\d+)/active-tour", UserActiveTourHandler, deps),
            (r"/api/robots/([^/]+)/active-tour", RobotActiveTourHandler, deps),
            (r"/api/robot/tour/([^/]+)/waypoint/next/(\d+)", NextWaypointHandler, deps),
            (r"/api/robot/waypoint/arrived", WaypointArrivedHandler, deps),
            (r"/api/robot/status", RobotStatusHandler, deps),
            (r"/api/robot/pose", RobotPoseHandler, deps),
            (r"/api/robot/map", RobotMapHandler, deps),
            (r"/api/robot/command", RobotCommandHandler, deps),
            (r"/api/robot/speak", RobotSpeakHandler, deps),
            (r"/api/robot/navigate", RobotNavigateHandler, deps),
            (r"/api/admin/robots", RobotsAdminHandler, deps),
            (r"/api/admin/robots/([^/]+)/status", RobotStatusAdminHandler, deps),
            (r"/api/admin/notifications", NotificationsAdminHandler, deps),
            (r"/ws/console", ConsoleWebSocketHandler, deps),
        ]
    )


def setup_logger(name):
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


async def serve(settings: Settings) -> None:
    logger = logging.getLogger("tour_backend")
    services = build_services(settings)
    app = make_app(services)
    logger.info("Waiting for application startup...")
    await services.start()
    server = app.listen(port=settings.port, address=settings.address)
    logger.info("Application startup complete.")
    logger.info(f"Tornado running on http://{settings.address}:{settings.port} (Press Ctrl+C to quit)")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    await stop.wait()

    logger.info("Shutting down")
    server.stop()
    await services.shutdown()


def main() -> None:
    logger = setup_logger("tour_backend")
    logger.info(f"Started server process {os.getpid()}")
    asyncio.run(serve(Settings()))


if __name__ == "__main__":
    main()
