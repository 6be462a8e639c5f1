"""
Session coordinator: admission control and lifecycle of tour instances.

A tour instance moves ``pending -> in_progress -> {completed, cancelled}``.
StartTour creates it pending with the robot reserved, the robot claims it
(PIN lookup or first waypoint arrival) which moves it to in_progress, and
CompleteTour / conflict resolution / the stale sweep make it terminal.

Every check-then-act sequence runs under per-key asyncio locks (one key per
user and per robot) so concurrent requests in this process cannot
double-assign a robot. The registries' updates are conditional on
``completed: False`` as well, so the second of two racing completions loses.
"""

import asyncio
import logging
import re
import secrets
import string
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from tour_backend.config import AdmissionPolicy
from tour_backend.errors import Conflict, InvalidInput, NotFound
from tour_backend.models import (
    CompletedTour,
    NotificationKind,
    Robot,
    RobotAvailability,
    RobotStatus,
    TourInstance,
    TourStatus,
    Waypoint,
    WaypointArrival,
)

logger = logging.getLogger(__name__)

PIN_LENGTH = 5
PIN_PATTERN = re.compile(r"^\d{5}$")


def generate_pin() -> str:
    return "".join(secrets.choice(string.digits) for _ in range(PIN_LENGTH))


def generate_instance_id() -> str:
    return secrets.token_hex(6)


class KeyedLocks:
    """
    Lazily created asyncio locks, acquired in sorted key order to avoid deadlocks.

    A lock is dropped once no task holds or waits for it.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, *keys: str):
        ordered = sorted({key for key in keys if key})
        for key in ordered:
            self._users[key] = self._users.get(key, 0) + 1
        try:
            async with AsyncExitStack() as stack:
                for key in ordered:
                    await stack.enter_async_context(self._locks.setdefault(key, asyncio.Lock()))
                yield
        finally:
            for key in ordered:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    self._locks.pop(key, None)


def _robot_key(robot_name: str) -> str:
    return f"robot:{robot_name}"


def _user_key(user_id: int) -> str:
    return f"user:{user_id}"


class SessionCoordinator:
    def __init__(
        self,
        tours,
        robots,
        routes,
        users,
        notifier,
        policy: AdmissionPolicy = AdmissionPolicy.REPLACE,
        cancel_on_abandon: bool = False,
        clock: Optional[Callable[[], datetime]] = None,
        pin_factory: Callable[[], str] = generate_pin,
        id_factory: Callable[[], str] = generate_instance_id,
    ):
        self.tours = tours
        self.robots = robots
        self.routes = routes
        self.users = users
        self.notifier = notifier
        self.policy = AdmissionPolicy(policy)
        self.cancel_on_abandon = cancel_on_abandon
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._pin_factory = pin_factory
        self._id_factory = id_factory
        self._locks = KeyedLocks()

    # -- admission -----------------------------------------------------------

    async def start_tour(self, user_id: Optional[int], route_id: Optional[int], robot_name: Optional[str]) -> TourInstance:
        if user_id is None:
            raise InvalidInput("user_id is required")
        if route_id is None:
            raise InvalidInput("route_id is required")
        if not robot_name:
            raise InvalidInput("robot_name is required")

        route = await self.routes.get_active_route(route_id)
        if route is None:
            raise NotFound("Tour route not found or not available", route_id=route_id)
        robot = await self.robots.get_by_name(robot_name)
        if robot is None:
            raise NotFound(f"Robot '{robot_name}' not found", robot_name=robot_name)
        if robot.status is not RobotStatus.ACTIVE:
            raise Conflict(
                f"Robot '{robot_name}' is {robot.status.value}",
                robot_name=robot_name,
                robot_status=robot.status.value,
            )
        username = await self.users.get_username(user_id)

        async with self._locks.hold(_user_key(user_id), _robot_key(robot_name)):
            robot_tours = await self.tours.find_active_by_robot(robot_name)
            user_tours = await self.tours.find_active_by_user(user_id)

            if self.policy is AdmissionPolicy.STRICT:
                if user_tours:
                    raise Conflict("User already has an active tour", active_tour=user_tours[0].summary())
                if robot_tours:
                    raise Conflict(f"Robot '{robot_name}' is busy", active_tour=robot_tours[0].summary())
            else:
                dislodged = {tour.history_id: tour for tour in robot_tours + user_tours}
                for tour in dislodged.values():
                    await self._cancel(tour, reason="replaced", replaced_by=username or user_id)

            instance = await self.tours.create(
                TourInstance(
                    instance_id=self._id_factory(),
                    user_id=user_id,
                    username=username,
                    route_id=route.id,
                    tour_name=route.name,
                    pin=self._pin_factory(),
                    robot_id=robot_name,
                    status=TourStatus.PENDING,
                    started_at=self._clock(),
                )
            )

        logger.info(f"Tour '{route.name}' ({instance.instance_id}) started for user {user_id} on {robot_name}")
        self.notifier.emit(
            NotificationKind.TOUR_STARTED,
            {
                "tour_name": route.name,
                "username": username,
                "user_id": user_id,
                "robot_name": robot_name,
                "instance_id": instance.instance_id,
            },
        )
        return instance

    async def _cancel(self, tour: TourInstance, reason: str, **extra: Any) -> bool:
        if not await self.tours.finish(tour.history_id, TourStatus.CANCELLED, self._clock()):
            return False
        logger.info(f"Tour {tour.instance_id} cancelled ({reason})")
        payload = {
            "tour_name": tour.tour_name,
            "username": tour.username,
            "user_id": tour.user_id,
            "instance_id": tour.instance_id,
            "robot_name": tour.robot_id,
            "reason": reason,
        }
        payload.update(extra)
        self.notifier.emit(NotificationKind.TOUR_ABANDONED, payload)
        return True

    async def _claim_robot(self, instance: TourInstance) -> TourInstance:
        """
        Make ``instance`` the robot's running tour: cancel any other live tour
        on the same robot, then promote a pending instance to in_progress.
        """
        async with self._locks.hold(_robot_key(instance.robot_id)):
            current = await self.tours.find_active_by_history_id(instance.history_id)
            if current is None:
                raise NotFound("Tour not found or already finished", tour_id=instance.instance_id)
            for other in await self.tours.find_active_by_robot(current.robot_id):
                if other.history_id != current.history_id:
                    logger.warning(
                        f"Robot {current.robot_id} still holds tour {other.instance_id}; "
                        f"cancelling it in favour of {current.instance_id}"
                    )
                    await self._cancel(other, reason="stale_conflict")
            if current.status is TourStatus.PENDING and await self.tours.mark_in_progress(current.history_id):
                current = current.model_copy(update={"status": TourStatus.IN_PROGRESS})
                self.notifier.emit(
                    NotificationKind.ROBOT_TOUR_STARTED,
                    {
                        "tour_name": current.tour_name,
                        "username": current.username,
                        "robot_name": current.robot_id,
                        "instance_id": current.instance_id,
                    },
                )
            return current

    async def lookup_by_pin(self, pin: str) -> TourInstance:
        if not isinstance(pin, str) or not PIN_PATTERN.match(pin):
            raise InvalidInput("PIN must be exactly 5 digits")
        matches = await self.tours.find_active_by_pin(pin)
        if not matches:
            raise NotFound("PIN is incorrect or no active tour uses it", pin=pin)
        if len(matches) > 1:
            logger.warning(
                f"PIN {pin} matches {len(matches)} active tours, using the most recent ({matches[0].instance_id})"
            )
        instance = matches[0]
        if instance.robot_id:
            instance = await self._claim_robot(instance)
        return instance

    # -- completion ----------------------------------------------------------

    async def complete_tour(self, instance_id: Optional[str] = None, history_id: Optional[int] = None) -> CompletedTour:
        if instance_id:
            instance = await self.tours.find_active_by_instance_id(instance_id)
        elif history_id is not None:
            instance = await self.tours.find_active_by_history_id(history_id)
        else:
            raise InvalidInput("tour_id or history_id is required")
        tour_ref = instance_id or history_id
        if instance is None:
            raise NotFound("Tour not found or already completed", tour_id=tour_ref)

        finished_at = self._clock()
        lock_key = _robot_key(instance.robot_id) if instance.robot_id else f"tour:{instance.history_id}"
        async with self._locks.hold(lock_key):
            if not await self.tours.finish(instance.history_id, TourStatus.COMPLETED, finished_at):
                raise NotFound("Tour not found or already completed", tour_id=tour_ref)
        if instance.robot_id:
            await self.robots.increment_completed(instance.robot_id)

        duration = max(0, round((finished_at - instance.started_at).total_seconds() / 60))
        completed = instance.model_copy(
            update={"completed": True, "status": TourStatus.COMPLETED, "completed_at": finished_at}
        )
        logger.info(f"Tour '{instance.tour_name}' ({instance.instance_id}) completed after {duration} min")
        self.notifier.emit(
            NotificationKind.TOUR_COMPLETED,
            {
                "tour_name": instance.tour_name,
                "username": instance.username,
                "instance_id": instance.instance_id,
                "robot_name": instance.robot_id,
                "duration": duration,
                "rating": instance.rating if instance.rating is not None else "N/A",
            },
        )
        return CompletedTour(instance=completed, duration_minutes=duration)

    async def abandon_tour(self, instance_id: str, progress: float = 0) -> Optional[TourInstance]:
        """
        Report that the visitor left a tour. Notification only unless
        ``cancel_on_abandon`` is set; unknown or finished tours are ignored.
        """
        if not instance_id:
            raise InvalidInput("tour_id is required")
        if progress is None or not 0 <= progress <= 100:
            raise InvalidInput("progress must be between 0 and 100")
        instance = await self.tours.find_active_by_instance_id(instance_id)
        if instance is None:
            logger.info(f"Abandon reported for unknown or finished tour {instance_id}")
            return None
        if self.cancel_on_abandon:
            await self._cancel(instance, reason="abandoned", progress=progress)
            return instance
        self.notifier.emit(
            NotificationKind.TOUR_ABANDONED,
            {
                "tour_name": instance.tour_name,
                "username": instance.username,
                "user_id": instance.user_id,
                "instance_id": instance.instance_id,
                "robot_name": instance.robot_id,
                "reason": "reported",
                "progress": progress,
            },
        )
        return instance

    async def expire_stale_tours(self, max_idle: timedelta) -> List[TourInstance]:
        cutoff = self._clock() - max_idle
        expired = []
        for tour in await self.tours.find_idle_since(cutoff):
            if await self._cancel(tour, reason="stale", idle_minutes=round(max_idle.total_seconds() / 60)):
                expired.append(tour)
        if expired:
            logger.info(f"Expired {len(expired)} idle tour(s)")
        return expired

    async def rate_tour(self, history_id: int, user_id: int, rating: int, feedback: Optional[str] = None) -> TourInstance:
        if not isinstance(rating, int) or not 1 <= rating <= 5:
            raise InvalidInput("rating must be between 1 and 5")
        instance = await self.tours.get_by_history_id(history_id)
        if instance is None or instance.user_id != user_id:
            raise NotFound("Tour not found", history_id=history_id)
        if not instance.completed:
            raise InvalidInput("Only finished tours can be rated")
        if not await self.tours.set_rating(history_id, rating, feedback):
            raise NotFound("Tour not found", history_id=history_id)
        return instance.model_copy(update={"rating": rating, "feedback": feedback})

    # -- queries -------------------------------------------------------------

    async def check_robot_availability(self, robot_name: str) -> RobotAvailability:
        robot = await self.robots.get_by_name(robot_name)
        if robot is None:
            raise NotFound(f"Robot '{robot_name}' not found", robot_name=robot_name)
        active = await self.tours.find_active_by_robot(robot_name)
        return RobotAvailability(
            robot_name=robot.name,
            available=robot.status is RobotStatus.ACTIVE and not active,
            status=robot.status,
            active_tour=active[0].summary() if active else None,
        )

    async def check_user_active_status(self, user_id: int) -> Optional[TourInstance]:
        active = await self.tours.find_active_by_user(user_id)
        return active[0] if active else None

    async def check_robot_active_status(self, robot_name: str) -> Optional[TourInstance]:
        active = await self.tours.find_active_by_robot(robot_name)
        return active[0] if active else None

    async def pending_tour_for_robot(self, robot_name: str) -> Optional[TourInstance]:
        return await self.tours.find_pending_for_robot(robot_name)

    # -- waypoints -----------------------------------------------------------

    async def next_waypoint(self, instance_id: str, current_sequence: int) -> Optional[Waypoint]:
        if current_sequence < 0:
            raise InvalidInput("current sequence must not be negative")
        instance = await self.tours.get_by_instance_id(instance_id)
        if instance is None:
            raise NotFound("Tour not found", tour_id=instance_id)
        return await self.routes.get_waypoint_by_sequence(instance.route_id, current_sequence + 1)

    async def report_waypoint_arrival(
        self,
        instance_id: str,
        waypoint_id: Optional[int] = None,
        sequence_order: Optional[int] = None,
    ) -> WaypointArrival:
        instance = await self.tours.find_active_by_instance_id(instance_id)
        if instance is None:
            raise NotFound("Tour not found or already finished", tour_id=instance_id)
        if waypoint_id is not None:
            waypoint = await self.routes.get_waypoint(waypoint_id)
            if waypoint is not None and waypoint.tour_route_id != instance.route_id:
                waypoint = None
        elif sequence_order is not None:
            waypoint = await self.routes.get_waypoint_by_sequence(instance.route_id, sequence_order)
        else:
            raise InvalidInput("waypoint_id or sequence_order is required")
        if waypoint is None:
            raise NotFound("Waypoint not found on this tour", tour_id=instance_id)

        await self.tours.record_activity(instance.history_id, waypoint.sequence_order, self._clock())
        if instance.status is TourStatus.PENDING and instance.robot_id:
            instance = await self._claim_robot(instance)
        logger.info(f"Robot reached '{waypoint.display_name}' on tour {instance.instance_id}")

        waypoints = await self.routes.list_waypoints(instance.route_id)
        last_sequence = max((wp.sequence_order for wp in waypoints), default=waypoint.sequence_order)
        if waypoint.sequence_order == 1:
            next_action = "start_tour_speech"
        elif waypoint.sequence_order >= last_sequence:
            next_action = "finish_tour"
        else:
            next_action = "continue_tour"
        return WaypointArrival(instance=instance, waypoint=waypoint, next_action=next_action)

    # -- robot registry ------------------------------------------------------

    async def list_robots(self) -> List[Robot]:
        return await self.robots.list_all()

    async def register_robot(self, name: str, status: RobotStatus = RobotStatus.ACTIVE) -> Robot:
        return await self.robots.create(Robot(name=name, status=status))

    async def set_robot_status(self, name: str, status: RobotStatus) -> Robot:
        if not await self.robots.set_status(name, status):
            raise NotFound(f"Robot '{name}' not found", robot_name=name)
        logger.info(f"Robot {name} set to {status.value}")
        return await self.robots.get_by_name(name)
