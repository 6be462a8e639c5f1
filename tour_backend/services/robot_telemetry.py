import logging
import math
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError
from tornado.ioloop import PeriodicCallback

from tour_backend.errors import NotConnected
from tour_backend.models import KobukiSensorState, NotificationKind, PoseWithCovarianceStamped

logger = logging.getLogger(__name__)

BATTERY_TOPIC = "/mobile_base/sensors/core"
AMCL_POSE_TOPIC = "/amcl_pose"
ODOM_TOPIC = "/odom"
MAP_TOPIC = "/map"

KOBUKI_BATTERY_FULL = 164.0


class BatteryMonitor:
    """
    Threshold alerting on the battery level.

    LOW and CRITICAL fire once each; both flags re-arm only after the level
    climbs above RESET. Reaching CRITICAL also stops the robot.
    """

    LOW = 20
    CRITICAL = 10
    RESET = 25

    def __init__(self, notifier, on_critical: Callable[[], Any], locate: Callable[[], str], level: float = 100.0):
        self.notifier = notifier
        self.on_critical = on_critical
        self.locate = locate
        self.level = level
        self.low_notified = False
        self.critical_notified = False

    @property
    def rounded_level(self) -> int:
        return int(math.floor(self.level + 0.5))

    def update(self, level: float):
        self.level = max(0.0, min(100.0, float(level)))
        self.check()

    def check(self):
        level = self.rounded_level
        if level <= self.CRITICAL and not self.critical_notified:
            self.critical_notified = True
            self.low_notified = True
            self.notifier.emit(
                NotificationKind.BATTERY_CRITICAL,
                {"battery_level": level, "location": self.locate()},
            )
            logger.error(f"Battery critical ({level}%), stopping robot")
            self.on_critical()
        elif level <= self.LOW and not self.low_notified:
            self.low_notified = True
            self.notifier.emit(
                NotificationKind.BATTERY_LOW,
                {"battery_level": level, "location": self.locate()},
            )
        elif level > self.RESET:
            self.low_notified = False
            self.critical_notified = False

    def status(self) -> Dict[str, Any]:
        return {
            "level": self.rounded_level,
            "low_battery_notified": self.low_notified,
            "critical_battery_notified": self.critical_notified,
        }


class RobotTelemetry:
    """
    Last-seen robot state fed by standing subscriptions on the transport link:
    battery, AMCL and odometry poses, and the occupancy map on demand.

    When the topic listing shows no battery sensor the level is simulated with
    a slow linear drain so low-battery alerting stays exercised.
    """

    def __init__(
        self,
        link,
        notifier,
        stop_robot: Callable[[], Any],
        simulation_interval: float = 60.0,
        simulation_step: float = 0.1,
        simulation_floor: float = 5.0,
    ):
        self.link = link
        self.stop_robot = stop_robot
        self.simulation_interval = simulation_interval
        self.simulation_step = simulation_step
        self.simulation_floor = simulation_floor
        self.amcl_pose: Optional[PoseWithCovarianceStamped] = None
        self.odom_pose: Optional[PoseWithCovarianceStamped] = None
        self.current_map: Optional[Dict[str, Any]] = None
        self.battery = BatteryMonitor(notifier, on_critical=self._stop_for_battery, locate=self.location)
        self._simulation: Optional[PeriodicCallback] = None

        link.add_standing_subscription(BATTERY_TOPIC, self.handle_sensor_state, "kobuki_msgs/SensorState")
        link.add_standing_subscription(AMCL_POSE_TOPIC, self.handle_amcl_pose, "geometry_msgs/PoseWithCovarianceStamped")
        link.add_standing_subscription(ODOM_TOPIC, self.handle_odom, "nav_msgs/Odometry")
        link.on_topics(self.check_battery_source)

    @property
    def simulating(self) -> bool:
        return self._simulation is not None

    def check_battery_source(self, topics: List[str]):
        if BATTERY_TOPIC in topics:
            self.stop_simulation()
        elif not self.simulating:
            logger.warning(f"{BATTERY_TOPIC} not available, simulating battery drain")
            self._simulation = PeriodicCallback(self.simulate_tick, self.simulation_interval * 1000)
            self._simulation.start()

    def stop_simulation(self):
        if self._simulation is not None:
            self._simulation.stop()
            self._simulation = None

    def simulate_tick(self):
        if not self.link.connected:
            return
        self.battery.update(max(self.simulation_floor, self.battery.level - self.simulation_step))

    def handle_sensor_state(self, msg: Dict[str, Any]):
        try:
            state = KobukiSensorState.model_validate(msg)
        except ValidationError:
            logger.warning("Ignoring malformed sensor state message")
            return
        if state.battery is None:
            return
        self.battery.update(state.battery / KOBUKI_BATTERY_FULL * 100)

    def _parse_pose(self, msg: Dict[str, Any]) -> Optional[PoseWithCovarianceStamped]:
        try:
            return PoseWithCovarianceStamped.model_validate(msg)
        except ValidationError:
            logger.warning("Ignoring malformed pose message")
            return None

    def handle_amcl_pose(self, msg: Dict[str, Any]):
        pose = self._parse_pose(msg)
        if pose is not None:
            self.amcl_pose = pose

    def handle_odom(self, msg: Dict[str, Any]):
        pose = self._parse_pose(msg)
        if pose is not None:
            self.odom_pose = pose

    def handle_map(self, msg: Dict[str, Any]):
        self.current_map = msg

    def watch_map(self) -> Optional[Dict[str, Any]]:
        if MAP_TOPIC not in self.link.subscribers:
            self.link.subscribe(MAP_TOPIC, self.handle_map, "nav_msgs/OccupancyGrid")
        return self.current_map

    def location(self) -> str:
        if self.amcl_pose is not None:
            position = self.amcl_pose.pose.pose.position
            return f"X: {position.x:.2f}, Y: {position.y:.2f}"
        if self.odom_pose is not None:
            position = self.odom_pose.pose.pose.position
            return f"Odometry X: {position.x:.2f}, Y: {position.y:.2f}"
        return "unknown"

    def pose_snapshot(self) -> Dict[str, Any]:
        return {
            "amcl_pose": self.amcl_pose.model_dump() if self.amcl_pose else None,
            "odom_pose": self.odom_pose.model_dump() if self.odom_pose else None,
            "location": self.location(),
        }

    def _stop_for_battery(self):
        try:
            self.stop_robot()
        except NotConnected:
            logger.error("Battery critical but the robot is not reachable to stop it")

    def status(self) -> Dict[str, Any]:
        return {
            "battery": self.battery.status(),
            "battery_simulated": self.simulating,
            "location": self.location(),
        }
