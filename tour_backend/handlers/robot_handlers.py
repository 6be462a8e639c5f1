from tour_backend.errors import NotConnected
from tour_backend.handlers.base import OPERATOR_ROLES, BaseHandler
from tour_backend.models import NavigationGoalRequest, RobotCommandRequest, SpeakRequest


class RobotStatusHandler(BaseHandler):
    def get(self):
        self.authenticate()
        status = self.services.link.status()
        status.update(self.services.telemetry.status())
        status["robot_name"] = self.services.settings.robot_name
        status["success"] = True
        self.write_json(status)


class RobotPoseHandler(BaseHandler):
    def get(self):
        self.authenticate()
        if not self.services.link.connected:
            raise NotConnected()
        payload = self.services.telemetry.pose_snapshot()
        payload["success"] = True
        self.write_json(payload)


class RobotMapHandler(BaseHandler):
    def get(self):
        self.authenticate()
        if not self.services.link.connected:
            raise NotConnected()
        current_map = self.services.telemetry.watch_map()
        if current_map is None:
            self.write_json({"success": True, "map": None, "message": "Map subscription started, no data received yet"})
            return
        self.write_json({"success": True, "map": current_map})


class RobotCommandHandler(BaseHandler):
    def post(self):
        self.authenticate(*OPERATOR_ROLES)
        body = self.parse_body(RobotCommandRequest)
        velocity = self.services.controller.execute(body.action, body.parameters)
        self.write_json({"success": True, "action": body.action, "velocity": velocity})


class RobotSpeakHandler(BaseHandler):
    def post(self):
        self.authenticate(*OPERATOR_ROLES)
        body = self.parse_body(SpeakRequest)
        text = self.services.controller.speak(body.text)
        self.write_json({"success": True, "text": text, "length": len(text)})


class RobotNavigateHandler(BaseHandler):
    def post(self):
        self.authenticate(*OPERATOR_ROLES)
        body = self.parse_body(NavigationGoalRequest)
        goal = self.services.controller.send_navigation_goal(body.x, body.y, body.z, body.orientation)
        self.write_json({"success": True, "goal": goal.model_dump()})
