"""Pydantic models for tour records, HTTP bodies and bridge/console frames."""

from .api import (
    AbandonTourRequest,
    CompleteTourRequest,
    NavigationGoalRequest,
    RatingRequest,
    RobotCommandRequest,
    RobotRegistrationRequest,
    RobotStatusUpdateRequest,
    SpeakRequest,
    StartTourRequest,
    VerifyPinRequest,
    WaypointArrivedRequest,
)
from .messages import (
    CallServiceFrame,
    ConsoleNotificationMessage,
    ConsoleSubscribeMessage,
    InboundPublish,
    InboundServiceResponse,
    InboundSetLevel,
    InboundStatus,
    KobukiSensorState,
    PoseStamped,
    PoseWithCovarianceStamped,
    PublishFrame,
    SchemaDocument,
    StringMessage,
    SubscribeFrame,
    TourAssignmentMessage,
    Twist,
    UnsubscribeFrame,
    decode_inbound,
)
from .notifications import Notification, NotificationKind, Priority
from .tours import (
    CompletedTour,
    NarratedWaypoint,
    Robot,
    RobotAvailability,
    RobotStatus,
    TourInstance,
    TourRoute,
    TourStatus,
    Waypoint,
    WaypointArrival,
)

__all__ = [
    "AbandonTourRequest",
    "CompleteTourRequest",
    "NavigationGoalRequest",
    "RatingRequest",
    "RobotCommandRequest",
    "RobotRegistrationRequest",
    "RobotStatusUpdateRequest",
    "SpeakRequest",
    "StartTourRequest",
    "VerifyPinRequest",
    "WaypointArrivedRequest",
    "CallServiceFrame",
    "ConsoleNotificationMessage",
    "ConsoleSubscribeMessage",
    "InboundPublish",
    "InboundServiceResponse",
    "InboundSetLevel",
    "InboundStatus",
    "KobukiSensorState",
    "PoseStamped",
    "PoseWithCovarianceStamped",
    "PublishFrame",
    "SchemaDocument",
    "StringMessage",
    "SubscribeFrame",
    "TourAssignmentMessage",
    "Twist",
    "UnsubscribeFrame",
    "decode_inbound",
    "Notification",
    "NotificationKind",
    "Priority",
    "CompletedTour",
    "NarratedWaypoint",
    "Robot",
    "RobotAvailability",
    "RobotStatus",
    "TourInstance",
    "TourRoute",
    "TourStatus",
    "Waypoint",
    "WaypointArrival",
]
