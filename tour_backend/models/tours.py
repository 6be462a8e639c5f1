from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TourStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RobotStatus(str, Enum):
    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    OFFLINE = "offline"


class TourRoute(BaseModel):
    """Admin-authored route template."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    description: Optional[str] = None
    duration: Optional[int] = Field(default=None, description="Expected duration in minutes.")
    languages: Optional[str] = None
    icon: Optional[str] = None
    price: Optional[float] = None
    is_active: bool = True


class Waypoint(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    tour_route_id: int
    x: float
    y: float
    z: float = 0.0
    sequence_order: int = Field(..., ge=1, description="1-based position within the route.")
    waypoint_type: str = "navigation"
    name: str = ""
    description: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or f"Waypoint {self.sequence_order}"

    @property
    def base_description(self) -> str:
        return self.description or ""


class NarratedWaypoint(BaseModel):
    """Waypoint plus the speech-ready text handed to the robot and UI."""

    id: int
    x: float
    y: float
    z: float = 0.0
    sequence_order: int
    waypoint_type: str = "navigation"
    name: str
    description: str = ""
    description_detailed: str
    speech_text: str
    speech_text_arrival: str
    speech_text_navigation: str

    @classmethod
    def from_waypoint(cls, waypoint: Waypoint, narration: str) -> "NarratedWaypoint":
        name = waypoint.display_name
        return cls(
            id=waypoint.id,
            x=waypoint.x,
            y=waypoint.y,
            z=waypoint.z,
            sequence_order=waypoint.sequence_order,
            waypoint_type=waypoint.waypoint_type or "navigation",
            name=name,
            description=waypoint.base_description,
            description_detailed=narration,
            speech_text=narration,
            speech_text_arrival=f"We have arrived at {name}. {narration}",
            speech_text_navigation=f"Now heading to {name}.",
        )


class Robot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1)
    status: RobotStatus = RobotStatus.ACTIVE
    last_connection: Optional[datetime] = None
    completed_tours: int = 0


class TourInstance(BaseModel):
    """
    One execution attempt of a route (a row of the tour history).

    ``instance_id`` is the opaque client-facing id, ``history_id`` the numeric
    storage id. Once ``completed`` is set the record only accepts rating and
    feedback updates.
    """

    model_config = ConfigDict(extra="ignore")

    history_id: Optional[int] = None
    instance_id: str
    user_id: int
    username: Optional[str] = None
    route_id: int
    tour_name: str
    pin: str = Field(..., pattern=r"^\d{5}$")
    robot_id: Optional[str] = None
    status: TourStatus = TourStatus.PENDING
    started_at: datetime
    completed: bool = False
    completed_at: Optional[datetime] = None
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    feedback: Optional[str] = None
    last_waypoint_sequence: Optional[int] = None
    last_activity_at: Optional[datetime] = None

    def summary(self) -> Dict[str, Any]:
        """Display subset used by availability and polling responses."""
        return {
            "instance_id": self.instance_id,
            "history_id": self.history_id,
            "tour_name": self.tour_name,
            "user_id": self.user_id,
            "username": self.username,
            "robot_id": self.robot_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
        }

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="python")


class RobotAvailability(BaseModel):
    robot_name: str
    available: bool
    status: RobotStatus
    active_tour: Optional[Dict[str, Any]] = None


class WaypointArrival(BaseModel):
    instance: TourInstance
    waypoint: Waypoint
    next_action: str


class CompletedTour(BaseModel):
    instance: TourInstance
    duration_minutes: int


def waypoint_list(documents: List[Dict[str, Any]]) -> List[Waypoint]:
    return sorted((Waypoint.model_validate(doc) for doc in documents), key=lambda wp: wp.sequence_order)
