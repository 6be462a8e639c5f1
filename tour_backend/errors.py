"""
Error taxonomy shared by the registries, the session coordinator and the
transport link.

Handlers translate any ``TourBackendError`` into a JSON error envelope with the
matching HTTP status (see ``tour_backend.handlers.base``).
"""

from typing import Any, Dict, Optional


class TourBackendError(Exception):
    """Base class for all domain errors raised by the backend."""

    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details: Dict[str, Any] = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "error": self.message}
        body.update(self.details)
        return body


class NotFound(TourBackendError):
    """Referenced route, robot, tour or waypoint does not exist (or is no longer active)."""

    status_code = 404
    default_message = "Resource not found"


class Conflict(TourBackendError):
    """User or robot already busy, or robot not administratively active."""

    status_code = 409
    default_message = "Resource is busy"


class InvalidInput(TourBackendError):
    """Malformed PIN, missing required field, out-of-range value."""

    status_code = 400
    default_message = "Invalid input"


class NotConnected(TourBackendError):
    """The robot's message bus is not reachable."""

    status_code = 503
    default_message = "Robot is not connected"


class ExternalServiceFailure(TourBackendError):
    """The narration service failed. Recovered locally, never sent to clients."""

    status_code = 502
    default_message = "External service failure"
