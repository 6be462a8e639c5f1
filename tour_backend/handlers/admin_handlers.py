from tour_backend.errors import InvalidInput
from tour_backend.handlers.base import OPERATOR_ROLES, BaseHandler
from tour_backend.models import RobotRegistrationRequest, RobotStatusUpdateRequest

MAX_NOTIFICATIONS = 200


class RobotsAdminHandler(BaseHandler):
    async def get(self):
        self.authenticate("admin")
        robots = await self.coordinator.list_robots()
        self.write_json({"success": True, "robots": [robot.model_dump(mode="json") for robot in robots]})

    async def post(self):
        self.authenticate("admin")
        body = self.parse_body(RobotRegistrationRequest)
        robot = await self.coordinator.register_robot(body.name, body.status)
        self.write_json({"success": True, "robot": robot.model_dump(mode="json")}, status=201)


class RobotStatusAdminHandler(BaseHandler):
    async def put(self, robot_name: str):
        self.authenticate(*OPERATOR_ROLES)
        body = self.parse_body(RobotStatusUpdateRequest)
        robot = await self.coordinator.set_robot_status(robot_name, body.status)
        self.write_json({"success": True, "robot": robot.model_dump(mode="json")})


class NotificationsAdminHandler(BaseHandler):
    async def get(self):
        self.authenticate(*OPERATOR_ROLES)
        try:
            limit = int(self.get_argument("limit", "50"))
        except ValueError:
            raise InvalidInput("limit must be an integer")
        limit = max(1, min(limit, MAX_NOTIFICATIONS))
        notifications = await self.services.notification_store.list_recent(limit)
        self.write_json(
            {
                "success": True,
                "enabled": self.services.bus.enabled,
                "notifications": notifications,
            }
        )
