import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import tornado.web
from pydantic import ValidationError

from tour_backend.errors import Conflict, InvalidInput, NotConnected, NotFound
from tour_backend.handlers.base import OPERATOR_ROLES, BaseHandler
from tour_backend.models import (
    AbandonTourRequest,
    CompleteTourRequest,
    NarratedWaypoint,
    RatingRequest,
    StartTourRequest,
    TourInstance,
    VerifyPinRequest,
    WaypointArrivedRequest,
)

logger = logging.getLogger(__name__)


def _tour_or_none(instance: Optional[TourInstance]) -> Optional[Dict[str, Any]]:
    return instance.summary() if instance is not None else None


class StartTourHandler(BaseHandler):
    async def post(self):
        principal = self.authenticate()
        body = self.parse_body(StartTourRequest)
        user_id = principal.user_id
        if body.user_id is not None and body.user_id != user_id:
            # Staff may start a tour on behalf of a visitor; visitors only for themselves.
            if not principal.has_role(*OPERATOR_ROLES):
                raise tornado.web.HTTPError(403, log_message="cannot start a tour for another user")
            user_id = body.user_id
        instance = await self.coordinator.start_tour(user_id, body.route_id, body.robot_name)
        self.write_json(
            {
                "success": True,
                "message": f'Tour "{instance.tour_name}" started',
                "instance_id": instance.instance_id,
                "history_id": instance.history_id,
                "tour_name": instance.tour_name,
                "pin": instance.pin,
                "robot_name": instance.robot_id,
                "status": instance.status.value,
                "started_at": instance.started_at.isoformat(),
            }
        )


class VerifyPinHandler(BaseHandler):
    """
    Robot-facing PIN check. Always answers 200; validity travels in the body
    so a polling robot client sees a stable contract.
    """

    async def post(self):
        try:
            raw = self.json_body().get("pin")
        except InvalidInput:
            raw = None
        try:
            request = VerifyPinRequest.model_validate({"pin": raw})
        except ValidationError:
            self.write_json(
                {
                    "success": False,
                    "valid": False,
                    "message": "PIN must be an array of 5 digits between 0 and 9",
                    "pin_received": raw,
                    "feedback": {"type": "invalid_format"},
                }
            )
            return

        pin = request.pin_string
        try:
            instance = await self.coordinator.lookup_by_pin(pin)
        except NotFound:
            self.write_json(
                {
                    "success": False,
                    "valid": False,
                    "message": "PIN is incorrect or no active tour uses it",
                    "pin_received": raw,
                    "pin_string": pin,
                    "feedback": {"type": "invalid_pin"},
                }
            )
            return
        except Conflict as exc:
            logger.warning(f"PIN {pin} could not claim its robot: {exc.message}")
            self.write_json(
                {
                    "success": False,
                    "valid": False,
                    "message": "The robot is busy with another tour, try again",
                    "pin_received": raw,
                    "pin_string": pin,
                    "feedback": {"type": "robot_busy"},
                }
            )
            return

        route = await self.services.routes.get_route(instance.route_id)
        waypoints = await self.services.routes.list_waypoints(instance.route_id)
        narrated = await self.services.narrator.narrate_route(
            instance.route_id,
            route.name if route else instance.tour_name,
            route.description if route else None,
            waypoints,
        )
        self._send_assignment(instance, narrated)

        tour: Dict[str, Any] = instance.summary()
        tour.update(
            {
                "route_id": instance.route_id,
                "pin": instance.pin,
                "name": instance.tour_name,
                "description": route.description if route else None,
                "duration": route.duration if route else None,
                "waypoints": [wp.model_dump(mode="json") for wp in narrated],
                "waypoint_count": len(narrated),
            }
        )
        self.write_json(
            {
                "success": True,
                "valid": True,
                "message": "PIN valid, tour found",
                "pin_received": raw,
                "pin_string": pin,
                "username": instance.username,
                "tour": tour,
                "waypoints": tour["waypoints"],
                "feedback": {
                    "type": "valid_pin",
                    "action": "tour_ready",
                    "waypoints_loaded": len(narrated),
                },
            }
        )

    def _send_assignment(self, instance: TourInstance, waypoints: List[NarratedWaypoint]):
        if instance.robot_id != self.services.settings.robot_name or not self.services.link.connected:
            return
        try:
            self.services.controller.send_tour_assignment(instance, waypoints)
        except NotConnected:
            logger.warning(f"Tour {instance.instance_id} verified but the bridge dropped before the assignment was sent")


class CompleteTourHandler(BaseHandler):
    async def post(self):
        body = self.parse_body(CompleteTourRequest)
        result = await self.coordinator.complete_tour(instance_id=body.tour_id, history_id=body.history_id)
        tour = result.instance.summary()
        tour["completed_at"] = result.instance.completed_at.isoformat()
        self.write_json(
            {
                "success": True,
                "message": f'Tour "{result.instance.tour_name}" completed',
                "tour": tour,
                "duration_minutes": result.duration_minutes,
            }
        )


class AbandonTourHandler(BaseHandler):
    async def post(self):
        self.authenticate()
        body = self.parse_body(AbandonTourRequest)
        instance = await self.coordinator.abandon_tour(body.tour_id, body.progress)
        self.write_json(
            {
                "success": True,
                "tour_id": body.tour_id,
                "known": instance is not None,
                "cancelled": instance is not None and self.coordinator.cancel_on_abandon,
            }
        )


class RatingHandler(BaseHandler):
    async def post(self, history_id: str):
        principal = self.authenticate()
        if principal.user_id is None:
            raise InvalidInput("Token does not identify a user")
        body = self.parse_body(RatingRequest)
        instance = await self.coordinator.rate_tour(int(history_id), principal.user_id, body.rating, body.feedback)
        self.write_json(
            {
                "success": True,
                "history_id": instance.history_id,
                "rating": instance.rating,
                "feedback": instance.feedback,
            }
        )


class RobotAvailabilityHandler(BaseHandler):
    async def get(self, robot_name: str):
        availability = await self.coordinator.check_robot_availability(robot_name)
        payload = availability.model_dump(mode="json")
        payload["success"] = True
        self.write_json(payload)


class PendingTourHandler(BaseHandler):
    async def get(self, robot_name: str):
        instance = await self.coordinator.pending_tour_for_robot(robot_name)
        self.write_json({"success": True, "has_pending_tour": instance is not None, "tour": _tour_or_none(instance)})


class UserActiveTourHandler(BaseHandler):
    async def get(self, user_id: str):
        instance = await self.coordinator.check_user_active_status(int(user_id))
        self.write_json({"success": True, "has_active_tour": instance is not None, "tour": _tour_or_none(instance)})


class RobotActiveTourHandler(BaseHandler):
    async def get(self, robot_name: str):
        instance = await self.coordinator.check_robot_active_status(robot_name)
        self.write_json({"success": True, "has_active_tour": instance is not None, "tour": _tour_or_none(instance)})


class NextWaypointHandler(BaseHandler):
    async def get(self, instance_id: str, current_sequence: str):
        waypoint = await self.coordinator.next_waypoint(instance_id, int(current_sequence))
        if waypoint is None:
            self.write_json({"success": True, "waypoint": None, "tour_completed": True})
            return
        payload = waypoint.model_dump(mode="json")
        payload["name"] = waypoint.display_name
        payload["speech_text"] = f"Next stop: {waypoint.display_name}. {waypoint.base_description}".strip()
        self.write_json({"success": True, "waypoint": payload, "tour_completed": False})


class WaypointArrivedHandler(BaseHandler):
    async def post(self):
        body = self.parse_body(WaypointArrivedRequest)
        arrival = await self.coordinator.report_waypoint_arrival(
            body.tour_id, waypoint_id=body.waypoint_id, sequence_order=body.sequence_order
        )
        waypoint = arrival.waypoint
        self.write_json(
            {
                "success": True,
                "waypoint": {
                    "id": waypoint.id,
                    "name": waypoint.display_name,
                    "description": waypoint.base_description,
                    "sequence_order": waypoint.sequence_order,
                    "coordinates": {"x": waypoint.x, "y": waypoint.y, "z": waypoint.z},
                },
                "tour": {
                    "tour_id": arrival.instance.instance_id,
                    "tour_name": arrival.instance.tour_name,
                    "username": arrival.instance.username,
                    "status": arrival.instance.status.value,
                },
                "timestamp": body.timestamp or datetime.now(timezone.utc).isoformat(),
                "next_action": arrival.next_action,
            }
        )


class RouteWaypointsHandler(BaseHandler):
    async def get(self, route_id: str):
        route = await self.services.routes.get_active_route(int(route_id))
        if route is None:
            raise NotFound("Tour route not found or not available", route_id=int(route_id))
        waypoints = await self.services.routes.list_waypoints(route.id)
        narrated = await self.services.narrator.narrate_route(route.id, route.name, route.description, waypoints)
        self.write_json(
            {
                "success": True,
                "route": route.model_dump(mode="json"),
                "waypoints": [wp.model_dump(mode="json") for wp in narrated],
            }
        )
