import json
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from tour_backend.errors import InvalidInput
from tour_backend.models.tours import NarratedWaypoint


# ---------------------------------------------------------------------------
# Robotics message bodies (mirroring the ROS message schemas the robot uses)
# ---------------------------------------------------------------------------
class Vector3(BaseModel):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


class Quaternion(BaseModel):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    w: float = 1.0


class Twist(BaseModel):
    """geometry_msgs/Twist"""

    linear: Vector3 = Field(default_factory=Vector3)
    angular: Vector3 = Field(default_factory=Vector3)

    @classmethod
    def planar(cls, linear_x: float = 0.0, angular_z: float = 0.0) -> "Twist":
        return cls(linear=Vector3(x=linear_x), angular=Vector3(z=angular_z))


class Pose(BaseModel):
    model_config = ConfigDict(extra="allow")

    position: Vector3 = Field(default_factory=Vector3)
    orientation: Quaternion = Field(default_factory=Quaternion)


class Header(BaseModel):
    model_config = ConfigDict(extra="allow")

    stamp: Dict[str, int] = Field(default_factory=dict)
    frame_id: str = ""


class PoseStamped(BaseModel):
    """geometry_msgs/PoseStamped"""

    header: Header
    pose: Pose


class PoseWithCovariance(BaseModel):
    model_config = ConfigDict(extra="allow")

    pose: Pose


class PoseWithCovarianceStamped(BaseModel):
    """Shape shared by /amcl_pose and /odom (pose.pose.position)."""

    model_config = ConfigDict(extra="allow")

    pose: PoseWithCovariance


class StringMessage(BaseModel):
    """std_msgs/String"""

    data: str


class KobukiSensorState(BaseModel):
    """Subset of kobuki_msgs/SensorState. ``battery`` is a raw reading (full is ~164)."""

    model_config = ConfigDict(extra="allow")

    battery: Optional[float] = None


# ---------------------------------------------------------------------------
# Bridge frames (rosbridge JSON protocol)
# ---------------------------------------------------------------------------
class InboundPublish(BaseModel):
    model_config = ConfigDict(extra="allow")

    op: Literal["publish"]
    topic: str
    msg: Dict[str, Any] = Field(default_factory=dict)


class InboundServiceResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    op: Literal["service_response"]
    service: str
    values: Optional[Dict[str, Any]] = None
    result: Optional[bool] = None
    id: Optional[str] = None


class InboundSetLevel(BaseModel):
    model_config = ConfigDict(extra="allow")

    op: Literal["set_level"]
    level: Optional[str] = None


class InboundStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    op: Literal["status"]
    level: Optional[str] = None
    msg: Optional[str] = None


InboundFrame = Annotated[
    Union[InboundPublish, InboundServiceResponse, InboundSetLevel, InboundStatus],
    Field(discriminator="op"),
]
_inbound_adapter: TypeAdapter = TypeAdapter(InboundFrame)


def decode_inbound(raw: Union[str, bytes]) -> Union[InboundPublish, InboundServiceResponse, InboundSetLevel, InboundStatus]:
    """Parse a raw bridge frame. Unknown ops and malformed frames raise ``InvalidInput``."""
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, TypeError, UnicodeDecodeError) as exc:
        raise InvalidInput(f"Bridge frame is not valid JSON: {exc}")
    if not isinstance(payload, dict) or "op" not in payload:
        raise InvalidInput("Bridge frame has no 'op' field")
    try:
        return _inbound_adapter.validate_python(payload)
    except ValidationError as exc:
        raise InvalidInput(f"Unsupported bridge frame op={payload.get('op')!r}: {exc.error_count()} error(s)")


class PublishFrame(BaseModel):
    op: Literal["publish"] = "publish"
    topic: str
    msg: Dict[str, Any]


class SubscribeFrame(BaseModel):
    op: Literal["subscribe"] = "subscribe"
    topic: str
    type: Optional[str] = None


class UnsubscribeFrame(BaseModel):
    op: Literal["unsubscribe"] = "unsubscribe"
    topic: str


class CallServiceFrame(BaseModel):
    op: Literal["call_service"] = "call_service"
    service: str
    args: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None


OutboundFrame = Union[PublishFrame, SubscribeFrame, UnsubscribeFrame, CallServiceFrame]


class TourAssignmentMessage(BaseModel):
    """Body published (JSON-encoded inside std_msgs/String) on /web_tour_assignment."""

    robot_id: str
    tour_id: str
    tour_name: str
    pin: str
    username: Optional[str] = None
    waypoints: List[NarratedWaypoint] = Field(default_factory=list)
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


# ---------------------------------------------------------------------------
# Technician console WebSocket frames
# ---------------------------------------------------------------------------
class ConsoleSubscribeMessage(BaseModel):
    """Console -> backend: restrict the feed to some notification kinds."""

    type: Literal["subscribe"] = "subscribe"
    kinds: Optional[List[str]] = Field(default=None, description="Notification kinds to receive; all when omitted.")


class ConsoleNotificationMessage(BaseModel):
    """Backend -> console: one delivered notification."""

    type: Literal["notification"] = "notification"
    kind: str
    priority: str
    payload: Dict[str, Any]
    timestamp: str


class SchemaDocument(BaseModel):
    """Documentation payload served at /docs for quick reference."""

    http_endpoints: Dict[str, str]
    websocket_endpoints: Dict[str, str]
    request_schemas: Dict[str, Dict[str, Any]]
    response_schemas: Dict[str, Dict[str, Any]]
    bridge_topics: Dict[str, str] = Field(default_factory=dict)
    examples: Dict[str, Any] = Field(default_factory=dict)
    notes: List[str] = []
