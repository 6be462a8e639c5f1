import pytest

from tour_backend.conftest import FakeConnector, RecordingNotifier
from tour_backend.models import NotificationKind
from tour_backend.services.robot_controller import VELOCITY_TOPIC, RobotController
from tour_backend.services.robot_telemetry import (
    AMCL_POSE_TOPIC,
    BATTERY_TOPIC,
    BatteryMonitor,
    RobotTelemetry,
)
from tour_backend.services.transport_link import TransportLink


def kobuki_raw(percent):
    return {"battery": percent * 164 / 100}


def pose_message(x, y):
    return {"header": {"frame_id": "map"}, "pose": {"pose": {"position": {"x": x, "y": y, "z": 0.0}}}}


@pytest.fixture
def robot():
    notifier = RecordingNotifier()
    connector = FakeConnector()
    link = TransportLink("ws://robot.test:9090", notifier, connector=connector)
    controller = RobotController(link, notifier)
    telemetry = RobotTelemetry(link, notifier, stop_robot=controller.stop)
    return link, telemetry, notifier, connector


def test_battery_thresholds_fire_once_and_reset():
    notifier = RecordingNotifier()
    stops = []
    monitor = BatteryMonitor(notifier, on_critical=lambda: stops.append(True), locate=lambda: "X: 1.00, Y: 2.00")

    for level in (25, 18, 8, 28):
        monitor.update(level)
        if level == 18:
            monitor.update(17)

    assert len(notifier.of(NotificationKind.BATTERY_LOW)) == 1
    assert len(notifier.of(NotificationKind.BATTERY_CRITICAL)) == 1
    assert stops == [True]
    assert monitor.low_notified is False
    assert monitor.critical_notified is False
    assert notifier.of(NotificationKind.BATTERY_CRITICAL)[0].payload == {
        "battery_level": 8,
        "location": "X: 1.00, Y: 2.00",
    }


def test_battery_level_is_clamped_and_rounded():
    monitor = BatteryMonitor(RecordingNotifier(), on_critical=lambda: None, locate=lambda: "unknown")

    monitor.update(150)
    assert monitor.rounded_level == 100
    monitor.update(20.5)
    assert monitor.rounded_level == 21
    monitor.update(-3)
    assert monitor.status()["level"] == 0


@pytest.mark.asyncio
async def test_sensor_readings_drive_alerts_and_stop_robot(robot):
    link, telemetry, notifier, connector = robot
    await link.connect()
    assert connector.last.frames("subscribe", BATTERY_TOPIC)

    for percent in (25, 18, 8, 28):
        connector.last.receive({"op": "publish", "topic": BATTERY_TOPIC, "msg": kobuki_raw(percent)})

    assert len(notifier.of(NotificationKind.BATTERY_LOW)) == 1
    assert len(notifier.of(NotificationKind.BATTERY_CRITICAL)) == 1
    stops = connector.last.frames("publish", VELOCITY_TOPIC)
    assert len(stops) == 1
    assert stops[0]["msg"]["linear"]["x"] == 0.0
    assert stops[0]["msg"]["angular"]["z"] == 0.0
    assert telemetry.battery.rounded_level == 28
    assert telemetry.status()["battery"]["low_battery_notified"] is False


@pytest.mark.asyncio
async def test_critical_battery_while_disconnected_does_not_raise(robot):
    link, telemetry, notifier, _ = robot

    telemetry.battery.update(5)

    assert len(notifier.of(NotificationKind.BATTERY_CRITICAL)) == 1
    assert len(notifier.of(NotificationKind.ROBOT_ERROR)) == 1


@pytest.mark.asyncio
async def test_simulation_starts_without_battery_topic(robot):
    link, telemetry, _, _ = robot
    await link.connect()

    telemetry.check_battery_source(["/odom", "/amcl_pose"])
    assert telemetry.simulating is True

    telemetry.simulate_tick()
    assert telemetry.battery.level == pytest.approx(99.9)

    telemetry.check_battery_source([BATTERY_TOPIC])
    assert telemetry.simulating is False


@pytest.mark.asyncio
async def test_simulation_respects_floor_and_connection(robot):
    link, telemetry, _, connector = robot
    telemetry.battery.level = 5.05

    telemetry.simulate_tick()
    assert telemetry.battery.level == 5.05

    await link.connect()
    telemetry.simulate_tick()
    telemetry.simulate_tick()
    assert telemetry.battery.level == 5.0


@pytest.mark.asyncio
async def test_location_prefers_amcl_over_odometry(robot):
    link, telemetry, _, connector = robot
    assert telemetry.location() == "unknown"
    await link.connect()

    connector.last.receive({"op": "publish", "topic": "/odom", "msg": pose_message(0.5, 0.25)})
    assert telemetry.location() == "Odometry X: 0.50, Y: 0.25"

    connector.last.receive({"op": "publish", "topic": AMCL_POSE_TOPIC, "msg": pose_message(3, 4.126)})
    assert telemetry.location() == "X: 3.00, Y: 4.13"
    assert telemetry.pose_snapshot()["amcl_pose"]["pose"]["pose"]["position"]["x"] == 3.0


@pytest.mark.asyncio
async def test_malformed_sensor_message_is_ignored(robot):
    link, telemetry, notifier, connector = robot
    await link.connect()

    connector.last.receive({"op": "publish", "topic": BATTERY_TOPIC, "msg": {"battery": "lots"}})
    connector.last.receive({"op": "publish", "topic": AMCL_POSE_TOPIC, "msg": {"pose": "nowhere"}})

    assert telemetry.battery.level == 100.0
    assert telemetry.amcl_pose is None
