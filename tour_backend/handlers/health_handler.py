from tour_backend.handlers.base import BaseHandler


class HealthHandler(BaseHandler):
    def get(self):
        self.write_json({"status": "ok", "robot_connected": self.services.link.connected})
