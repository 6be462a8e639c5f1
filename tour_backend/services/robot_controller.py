import logging
import time
from typing import Any, Dict, List, Optional

from tour_backend.errors import InvalidInput, NotConnected
from tour_backend.models import (
    NarratedWaypoint,
    NotificationKind,
    PoseStamped,
    StringMessage,
    TourAssignmentMessage,
    TourInstance,
    Twist,
)
from tour_backend.models.messages import Header, Pose, Quaternion, Vector3

logger = logging.getLogger(__name__)

VELOCITY_TOPIC = "/mobile_base/commands/velocity"
VOICE_TOPIC = "/voice"
TOUR_ASSIGNMENT_TOPIC = "/web_tour_assignment"
NAVIGATION_GOAL_TOPIC = "/move_base_simple/goal"

MAX_SPEECH_LENGTH = 500
DEFAULT_LINEAR_SPEED = 0.2
DEFAULT_ANGULAR_SPEED = 0.5


class RobotController:
    """Robot commands expressed as publications on the transport link."""

    def __init__(self, link, notifier):
        self.link = link
        self.notifier = notifier

    def send_velocity(self, linear_x: float = 0.0, angular_z: float = 0.0) -> Dict[str, float]:
        try:
            self.link.publish(VELOCITY_TOPIC, Twist.planar(linear_x, angular_z))
        except NotConnected as exc:
            self.notifier.emit(
                NotificationKind.ROBOT_ERROR,
                {"error": "Velocity command failed", "details": exc.message},
            )
            raise
        return {"linear": linear_x, "angular": angular_z}

    def stop(self) -> Dict[str, float]:
        return self.send_velocity(0.0, 0.0)

    def execute(self, action: str, parameters: Optional[Dict[str, float]] = None) -> Dict[str, float]:
        params = parameters or {}
        if action == "move_forward":
            return self.send_velocity(params.get("speed", DEFAULT_LINEAR_SPEED), 0.0)
        if action == "move_backward":
            return self.send_velocity(-params.get("speed", DEFAULT_LINEAR_SPEED), 0.0)
        if action == "turn_left":
            return self.send_velocity(0.0, params.get("speed", DEFAULT_ANGULAR_SPEED))
        if action == "turn_right":
            return self.send_velocity(0.0, -params.get("speed", DEFAULT_ANGULAR_SPEED))
        if action == "stop":
            return self.stop()
        if action == "custom_velocity":
            return self.send_velocity(params.get("linear", 0.0), params.get("angular", 0.0))
        raise InvalidInput(f"Unknown robot action: {action}")

    def speak(self, text: str) -> str:
        if not self.link.connected:
            raise NotConnected()
        clean = (text or "").strip()
        if not clean:
            raise InvalidInput("Text to speak is required")
        if len(clean) > MAX_SPEECH_LENGTH:
            raise InvalidInput(f"Text is too long (max {MAX_SPEECH_LENGTH} characters)")
        self.link.publish(VOICE_TOPIC, StringMessage(data=clean))
        logger.info(f"Voice message sent to robot: {clean[:50]!r}")
        return clean

    def send_tour_assignment(self, instance: TourInstance, waypoints: List[NarratedWaypoint]) -> TourAssignmentMessage:
        message = TourAssignmentMessage(
            robot_id=instance.robot_id or "",
            tour_id=instance.instance_id,
            tour_name=instance.tour_name,
            pin=instance.pin,
            username=instance.username,
            waypoints=waypoints,
        )
        self.link.publish(TOUR_ASSIGNMENT_TOPIC, StringMessage(data=message.model_dump_json()))
        logger.info(f"Tour {instance.instance_id} sent to robot {instance.robot_id} over the bridge")
        return message

    def send_navigation_goal(self, x: float, y: float, z: float = 0.0, orientation: Optional[Dict[str, Any]] = None):
        goal = PoseStamped(
            header=Header(stamp={"sec": int(time.time()), "nanosec": 0}, frame_id="map"),
            pose=Pose(position=Vector3(x=x, y=y, z=z), orientation=Quaternion(**(orientation or {}))),
        )
        self.link.publish(NAVIGATION_GOAL_TOPIC, goal)
        logger.info(f"Navigation goal sent: ({x}, {y}, {z})")
        return goal
