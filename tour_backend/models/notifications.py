from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class NotificationKind(str, Enum):
    TOUR_STARTED = "TOUR_STARTED"
    TOUR_COMPLETED = "TOUR_COMPLETED"
    TOUR_ABANDONED = "TOUR_ABANDONED"
    ROBOT_TOUR_STARTED = "ROBOT_TOUR_STARTED"
    ROBOT_DISCONNECTED = "ROBOT_DISCONNECTED"
    ROBOT_RECONNECTED = "ROBOT_RECONNECTED"
    ROBOT_ERROR = "ROBOT_ERROR"
    BATTERY_LOW = "BATTERY_LOW"
    BATTERY_CRITICAL = "BATTERY_CRITICAL"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


PRIORITIES: Dict[NotificationKind, Priority] = {
    NotificationKind.TOUR_STARTED: Priority.LOW,
    NotificationKind.TOUR_COMPLETED: Priority.LOW,
    NotificationKind.TOUR_ABANDONED: Priority.MEDIUM,
    NotificationKind.ROBOT_TOUR_STARTED: Priority.MEDIUM,
    NotificationKind.ROBOT_DISCONNECTED: Priority.HIGH,
    NotificationKind.ROBOT_RECONNECTED: Priority.MEDIUM,
    NotificationKind.ROBOT_ERROR: Priority.HIGH,
    NotificationKind.BATTERY_LOW: Priority.HIGH,
    NotificationKind.BATTERY_CRITICAL: Priority.CRITICAL,
}

# Minimum minutes between two alerts of the same kind and subject; absent means no throttle.
THROTTLE_MINUTES: Dict[NotificationKind, float] = {
    NotificationKind.BATTERY_LOW: 30,
    NotificationKind.BATTERY_CRITICAL: 15,
    NotificationKind.ROBOT_ERROR: 10,
    NotificationKind.ROBOT_DISCONNECTED: 5,
    NotificationKind.ROBOT_RECONNECTED: 5,
    NotificationKind.TOUR_ABANDONED: 2,
}


class Notification(BaseModel):
    kind: NotificationKind
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def priority(self) -> Priority:
        return PRIORITIES.get(self.kind, Priority.MEDIUM)
