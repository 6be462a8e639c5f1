"""In-memory stand-ins for the Mongo registries, the rosbridge socket and the Gemini client."""

import json
import types
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from tornado.websocket import WebSocketClosedError

from tour_backend.errors import Conflict
from tour_backend.models import (
    Notification,
    NotificationKind,
    Robot,
    RobotStatus,
    TourInstance,
    TourRoute,
    TourStatus,
    Waypoint,
)


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingNotifier:
    def __init__(self):
        self.events: List[Notification] = []

    def emit(self, kind, payload=None) -> Notification:
        notification = Notification(kind=NotificationKind(kind), payload=payload or {})
        self.events.append(notification)
        return notification

    def of(self, kind: NotificationKind) -> List[Notification]:
        return [event for event in self.events if event.kind == kind]


def _newest_first(tours: List[TourInstance]) -> List[TourInstance]:
    return sorted(tours, key=lambda tour: (tour.started_at, tour.history_id), reverse=True)


class FakeTourRepository:
    def __init__(self):
        self.records: Dict[int, TourInstance] = {}
        self._seq = 0

    def _select(self, **criteria) -> List[TourInstance]:
        matches = [
            tour
            for tour in self.records.values()
            if all(getattr(tour, field) == value for field, value in criteria.items())
        ]
        return _newest_first(matches)

    def _first(self, **criteria) -> Optional[TourInstance]:
        matches = self._select(**criteria)
        return matches[0] if matches else None

    def _update(self, history_id: int, **changes):
        self.records[history_id] = self.records[history_id].model_copy(update=changes)

    async def create(self, instance: TourInstance) -> TourInstance:
        self._seq += 1
        stored = instance.model_copy(update={"history_id": self._seq})
        self.records[self._seq] = stored
        return stored

    async def get_by_history_id(self, history_id):
        return self.records.get(history_id)

    async def get_by_instance_id(self, instance_id):
        return self._first(instance_id=instance_id)

    async def find_active_by_instance_id(self, instance_id):
        return self._first(instance_id=instance_id, completed=False)

    async def find_active_by_history_id(self, history_id):
        return self._first(history_id=history_id, completed=False)

    async def find_active_by_pin(self, pin):
        return self._select(pin=pin, completed=False)

    async def find_active_by_robot(self, robot_id):
        return self._select(robot_id=robot_id, completed=False)

    async def find_active_by_user(self, user_id):
        return self._select(user_id=user_id, completed=False)

    async def find_pending_for_robot(self, robot_id):
        return self._first(robot_id=robot_id, completed=False, status=TourStatus.PENDING)

    async def find_idle_since(self, cutoff):
        return [
            tour
            for tour in self._select(completed=False)
            if (tour.last_activity_at or tour.started_at) < cutoff
        ]

    async def mark_in_progress(self, history_id) -> bool:
        tour = self.records.get(history_id)
        if tour is None or tour.completed or tour.status is not TourStatus.PENDING:
            return False
        if self._select(robot_id=tour.robot_id, completed=False, status=TourStatus.IN_PROGRESS):
            raise Conflict("Robot is already running another tour", history_id=history_id)
        self._update(history_id, status=TourStatus.IN_PROGRESS)
        return True

    async def finish(self, history_id, status, finished_at) -> bool:
        tour = self.records.get(history_id)
        if tour is None or tour.completed:
            return False
        self._update(history_id, completed=True, status=status, completed_at=finished_at)
        return True

    async def record_activity(self, history_id, sequence, at) -> bool:
        tour = self.records.get(history_id)
        if tour is None or tour.completed:
            return False
        self._update(history_id, last_waypoint_sequence=sequence, last_activity_at=at)
        return True

    async def set_rating(self, history_id, rating, feedback) -> bool:
        tour = self.records.get(history_id)
        if tour is None or not tour.completed:
            return False
        self._update(history_id, rating=rating, feedback=feedback)
        return True

    def active_for_robot(self, robot_id: str) -> List[TourInstance]:
        return [tour for tour in self.records.values() if tour.robot_id == robot_id and not tour.completed]


class FakeRobotRepository:
    def __init__(self, *robots: Robot):
        self.robots: Dict[str, Robot] = {robot.name: robot for robot in robots}
        self.connections: List[str] = []

    async def get_by_name(self, name):
        return self.robots.get(name)

    async def list_all(self):
        return [self.robots[name] for name in sorted(self.robots)]

    async def create(self, robot):
        if robot.name in self.robots:
            raise Conflict(f"Robot '{robot.name}' is already registered")
        self.robots[robot.name] = robot
        return robot

    async def set_status(self, name, status) -> bool:
        if name not in self.robots:
            return False
        self.robots[name] = self.robots[name].model_copy(update={"status": status})
        return True

    async def touch_connection(self, name, at):
        self.connections.append(name)
        robot = self.robots.get(name) or Robot(name=name)
        self.robots[name] = robot.model_copy(update={"last_connection": at})

    async def increment_completed(self, name):
        if name in self.robots:
            robot = self.robots[name]
            self.robots[name] = robot.model_copy(update={"completed_tours": robot.completed_tours + 1})


class FakeRouteRepository:
    def __init__(self, routes: List[TourRoute], waypoints: List[Waypoint]):
        self.routes = {route.id: route for route in routes}
        self.waypoints = list(waypoints)

    async def get_route(self, route_id):
        return self.routes.get(route_id)

    async def get_active_route(self, route_id):
        route = self.routes.get(route_id)
        return route if route is not None and route.is_active else None

    async def list_waypoints(self, route_id):
        return sorted(
            (wp for wp in self.waypoints if wp.tour_route_id == route_id),
            key=lambda wp: wp.sequence_order,
        )

    async def get_waypoint(self, waypoint_id):
        return next((wp for wp in self.waypoints if wp.id == waypoint_id), None)

    async def get_waypoint_by_sequence(self, route_id, sequence_order):
        return next(
            (wp for wp in self.waypoints if wp.tour_route_id == route_id and wp.sequence_order == sequence_order),
            None,
        )


class FakeUserRepository:
    def __init__(self, users: Dict[int, str]):
        self.users = users

    async def get_username(self, user_id):
        return self.users.get(user_id)


class FakeNotificationStore:
    def __init__(self):
        self.records: List[Dict[str, Any]] = []

    async def insert(self, notification: Notification):
        self.records.append(
            {
                "kind": notification.kind.value,
                "priority": notification.priority.value,
                "payload": notification.payload,
            }
        )

    async def list_recent(self, limit=50):
        return list(reversed(self.records))[:limit]


class FakeBridgeConnection:
    """Mimics ``tornado.websocket.WebSocketClientConnection`` for the transport link."""

    def __init__(self, on_message_callback):
        self.on_message_callback = on_message_callback
        self.sent: List[Dict[str, Any]] = []
        self.closed = False

    def write_message(self, message):
        if self.closed:
            raise WebSocketClosedError()
        self.sent.append(json.loads(message))
        return None

    def close(self, code=None, reason=None):
        if self.closed:
            return
        self.closed = True
        self.on_message_callback(None)

    def receive(self, frame: Dict[str, Any]):
        self.on_message_callback(json.dumps(frame))

    def drop(self):
        """Server side went away."""
        self.closed = True
        self.on_message_callback(None)

    def frames(self, op: str, topic: Optional[str] = None) -> List[Dict[str, Any]]:
        return [frame for frame in self.sent if frame["op"] == op and (topic is None or frame.get("topic") == topic)]


class FakeConnector:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.attempts = 0
        self.connections: List[FakeBridgeConnection] = []

    async def __call__(self, url, connect_timeout=None, on_message_callback=None):
        self.attempts += 1
        if self.fail:
            raise ConnectionRefusedError(f"cannot reach {url}")
        connection = FakeBridgeConnection(on_message_callback)
        self.connections.append(connection)
        return connection

    @property
    def last(self) -> FakeBridgeConnection:
        return self.connections[-1]


class FakeModels:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    async def generate_content(self, model=None, contents=None):
        self.calls.append({"model": model, "contents": contents})
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return types.SimpleNamespace(text=response)


class FakeGenaiClient:
    def __init__(self, *responses):
        self.models = FakeModels(responses or ("A narrated stop.",))
        self.aio = types.SimpleNamespace(models=self.models)


ROUTE_ID = 7


def sample_route(**overrides) -> TourRoute:
    data = dict(id=ROUTE_ID, name="Old Town", description="Walk through the historic centre", duration=45)
    data.update(overrides)
    return TourRoute(**data)


def sample_waypoints(route_id: int = ROUTE_ID) -> List[Waypoint]:
    return [
        Waypoint(id=71, tour_route_id=route_id, x=1.0, y=2.0, sequence_order=1, name="Entrance", description="Main door"),
        Waypoint(id=72, tour_route_id=route_id, x=3.5, y=2.0, sequence_order=2, name="Fountain"),
        Waypoint(id=73, tour_route_id=route_id, x=6.0, y=4.0, sequence_order=3, description="Final hall"),
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def tours():
    return FakeTourRepository()


@pytest.fixture
def robots():
    return FakeRobotRepository(
        Robot(name="Robot-A"),
        Robot(name="Robot-B"),
        Robot(name="Robot-M", status=RobotStatus.MAINTENANCE),
    )


@pytest.fixture
def routes():
    return FakeRouteRepository(
        [sample_route(), sample_route(id=8, name="Closed wing", is_active=False)],
        sample_waypoints(),
    )


@pytest.fixture
def users():
    return FakeUserRepository({42: "ana", 43: "ben", 44: "carla"})


@pytest.fixture
def connector():
    return FakeConnector()
