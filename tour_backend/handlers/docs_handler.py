import tornado.web

from tour_backend.models import (
    AbandonTourRequest,
    CompleteTourRequest,
    ConsoleNotificationMessage,
    ConsoleSubscribeMessage,
    NarratedWaypoint,
    NavigationGoalRequest,
    RatingRequest,
    RobotAvailability,
    RobotCommandRequest,
    RobotRegistrationRequest,
    RobotStatusUpdateRequest,
    SchemaDocument,
    SpeakRequest,
    StartTourRequest,
    TourAssignmentMessage,
    TourInstance,
    VerifyPinRequest,
    WaypointArrivedRequest,
)
from tour_backend.services.robot_controller import (
    NAVIGATION_GOAL_TOPIC,
    TOUR_ASSIGNMENT_TOPIC,
    VELOCITY_TOPIC,
    VOICE_TOPIC,
)
from tour_backend.services.robot_telemetry import AMCL_POSE_TOPIC, BATTERY_TOPIC, MAP_TOPIC, ODOM_TOPIC


class DocsHandler(tornado.web.RequestHandler):
    def get(self):
        start_tour_example = {"route_id": 7, "robot_name": "Robot-A"}
        verify_pin_example = {"pin": [0, 1, 2, 3, 4]}
        waypoint_arrived_example = {"tour_id": "3f9c1a2b7d4e", "sequence_order": 2}

        schema = SchemaDocument(
            http_endpoints={
                "POST /api/start-tour": "Start a tour for the token's user on a robot (bearer).",
                "POST /api/robot/pin": "Robot verifies a visitor PIN; always 200 with a 'valid' flag.",
                "POST /api/robot/tour/complete": "Robot finishes a tour (also /tour/complete).",
                "POST /api/tour/abandon": "Visitor left the tour (bearer).",
                "POST /api/tours/{history_id}/rating": "Rate a finished tour (bearer).",
                "GET /api/robot/availability/{robot}": "Is the robot free for a new tour.",
                "GET /api/robot/pending-tours/{robot}": "Newest pending tour reserved on the robot.",
                "GET /api/users/{user_id}/active-tour": "Non-completed tour of a user.",
                "GET /api/robots/{robot}/active-tour": "Non-completed tour of a robot.",
                "GET /api/robot/tour/{tour_id}/waypoint/next/{sequence}": "Waypoint after the given sequence.",
                "POST /api/robot/waypoint/arrived": "Robot reached a waypoint.",
                "GET /api/tours/{route_id}/waypoints": "Narrated waypoints of an active route.",
                "GET /api/robot/status": "Bridge link, battery and location (bearer).",
                "GET /api/robot/pose": "Last AMCL and odometry poses (bearer, 503 when disconnected).",
                "GET /api/robot/map": "Occupancy grid (bearer, 503 when disconnected).",
                "POST /api/robot/command": "Velocity command (admin/technician).",
                "POST /api/robot/speak": "Speech on the robot (admin/technician).",
                "POST /api/robot/navigate": "Navigation goal in the map frame (admin/technician).",
                "GET|POST /api/admin/robots": "List or register robots (admin).",
                "PUT /api/admin/robots/{robot}/status": "Set a robot's administrative status.",
                "GET /api/admin/notifications": "Recently delivered notifications.",
            },
            websocket_endpoints={
                "console": "/ws/console",
            },
            request_schemas={
                "StartTourRequest": StartTourRequest.model_json_schema(),
                "VerifyPinRequest": VerifyPinRequest.model_json_schema(),
                "CompleteTourRequest": CompleteTourRequest.model_json_schema(),
                "AbandonTourRequest": AbandonTourRequest.model_json_schema(),
                "RatingRequest": RatingRequest.model_json_schema(),
                "WaypointArrivedRequest": WaypointArrivedRequest.model_json_schema(),
                "RobotCommandRequest": RobotCommandRequest.model_json_schema(),
                "SpeakRequest": SpeakRequest.model_json_schema(),
                "NavigationGoalRequest": NavigationGoalRequest.model_json_schema(),
                "RobotRegistrationRequest": RobotRegistrationRequest.model_json_schema(),
                "RobotStatusUpdateRequest": RobotStatusUpdateRequest.model_json_schema(),
                "ConsoleSubscribeMessage": ConsoleSubscribeMessage.model_json_schema(),
            },
            response_schemas={
                "TourInstance": TourInstance.model_json_schema(),
                "NarratedWaypoint": NarratedWaypoint.model_json_schema(),
                "RobotAvailability": RobotAvailability.model_json_schema(),
                "ConsoleNotificationMessage": ConsoleNotificationMessage.model_json_schema(),
                "TourAssignmentMessage": TourAssignmentMessage.model_json_schema(),
            },
            bridge_topics={
                VELOCITY_TOPIC: "geometry_msgs/Twist (out)",
                VOICE_TOPIC: "std_msgs/String (out)",
                TOUR_ASSIGNMENT_TOPIC: "std_msgs/String with a JSON TourAssignmentMessage (out)",
                NAVIGATION_GOAL_TOPIC: "geometry_msgs/PoseStamped (out)",
                BATTERY_TOPIC: "kobuki_msgs/SensorState (in)",
                AMCL_POSE_TOPIC: "geometry_msgs/PoseWithCovarianceStamped (in)",
                ODOM_TOPIC: "nav_msgs/Odometry (in)",
                MAP_TOPIC: "nav_msgs/OccupancyGrid (in, on demand)",
            },
            examples={
                "start_tour": start_tour_example,
                "verify_pin": verify_pin_example,
                "waypoint_arrived": waypoint_arrived_example,
            },
            notes=[
                "All bodies are JSON. Errors use {\"success\": false, \"error\": <message>}.",
                "PIN verification always answers 200; check the 'valid' field.",
                "Completing an unknown or already finished tour answers 404.",
                "Authentication: provide Bearer token via 'Authorization: Bearer <token>' header or '?token=' query param on WebSocket connect.",
                "Console clients may send {\"type\": \"subscribe\", \"kinds\": [...]} to filter notifications.",
            ],
        )
        self.set_header("Content-Type", "application/json")
        self.write(schema.model_dump(mode="json"))
