from .notification_repository import NotificationRepository
from .robot_repository import RobotRepository
from .route_repository import RouteRepository
from .tour_repository import TourRepository
from .user_repository import UserRepository

__all__ = [
    "NotificationRepository",
    "RobotRepository",
    "RouteRepository",
    "TourRepository",
    "UserRepository",
]
