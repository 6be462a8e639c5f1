"""Request bodies accepted by the HTTP handlers."""

from typing import Annotated, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from tour_backend.models.tours import RobotStatus

PinDigit = Annotated[int, Field(ge=0, le=9, strict=True)]


class StartTourRequest(BaseModel):
    user_id: Optional[int] = Field(default=None, description="Owner; defaults to the token subject. Only staff may name another user.")
    route_id: int
    robot_name: str = Field(..., min_length=1)


class VerifyPinRequest(BaseModel):
    pin: List[PinDigit] = Field(..., min_length=5, max_length=5, description="Five digits, 0-9.")

    @property
    def pin_string(self) -> str:
        return "".join(str(digit) for digit in self.pin)


class CompleteTourRequest(BaseModel):
    tour_id: Optional[str] = Field(default=None, description="Opaque instance id.")
    history_id: Optional[int] = Field(default=None, description="Numeric history row id.")

    @model_validator(mode="after")
    def require_identifier(self):
        if not self.tour_id and self.history_id is None:
            raise ValueError("tour_id or history_id is required")
        return self


class AbandonTourRequest(BaseModel):
    tour_id: str = Field(..., min_length=1)
    progress: float = Field(default=0, ge=0, le=100)


class RatingRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    feedback: Optional[str] = Field(default=None, max_length=2000)


class WaypointArrivedRequest(BaseModel):
    tour_id: str = Field(..., min_length=1)
    waypoint_id: Optional[int] = None
    sequence_order: Optional[int] = Field(default=None, ge=1)
    timestamp: Optional[str] = None

    @model_validator(mode="after")
    def require_waypoint_reference(self):
        if self.waypoint_id is None and self.sequence_order is None:
            raise ValueError("waypoint_id or sequence_order is required")
        return self


RobotAction = Literal["move_forward", "move_backward", "turn_left", "turn_right", "stop", "custom_velocity"]


class RobotCommandRequest(BaseModel):
    action: RobotAction
    parameters: Dict[str, float] = Field(default_factory=dict)


class SpeakRequest(BaseModel):
    text: str


class RobotRegistrationRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    status: RobotStatus = RobotStatus.ACTIVE


class RobotStatusUpdateRequest(BaseModel):
    status: RobotStatus


class NavigationGoalRequest(BaseModel):
    x: float
    y: float
    z: float = 0.0
    orientation: Optional[Dict[str, float]] = None
