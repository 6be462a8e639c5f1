from .admin_handlers import NotificationsAdminHandler, RobotsAdminHandler, RobotStatusAdminHandler
from .console_ws_handler import ConsoleWebSocketHandler
from .docs_handler import DocsHandler
from .health_handler import HealthHandler
from .robot_handlers import (
    RobotCommandHandler,
    RobotMapHandler,
    RobotNavigateHandler,
    RobotPoseHandler,
    RobotSpeakHandler,
    RobotStatusHandler,
)
from .tour_handlers import (
    AbandonTourHandler,
    CompleteTourHandler,
    NextWaypointHandler,
    PendingTourHandler,
    RatingHandler,
    RobotActiveTourHandler,
    RobotAvailabilityHandler,
    RouteWaypointsHandler,
    StartTourHandler,
    UserActiveTourHandler,
    VerifyPinHandler,
    WaypointArrivedHandler,
)

__all__ = [
    "AbandonTourHandler",
    "CompleteTourHandler",
    "ConsoleWebSocketHandler",
    "DocsHandler",
    "HealthHandler",
    "NextWaypointHandler",
    "NotificationsAdminHandler",
    "PendingTourHandler",
    "RatingHandler",
    "RobotActiveTourHandler",
    "RobotAvailabilityHandler",
    "RobotCommandHandler",
    "RobotMapHandler",
    "RobotNavigateHandler",
    "RobotPoseHandler",
    "RobotSpeakHandler",
    "RobotStatusAdminHandler",
    "RobotStatusHandler",
    "RobotsAdminHandler",
    "RouteWaypointsHandler",
    "StartTourHandler",
    "UserActiveTourHandler",
    "VerifyPinHandler",
    "WaypointArrivedHandler",
]
