from typing import List, Optional

from tour_backend.db.context import DBContext
from tour_backend.models import TourRoute, Waypoint
from tour_backend.models.tours import waypoint_list


class RouteRepository:
    """Read access to route templates and their ordered waypoints."""

    def __init__(self, db_context: Optional[DBContext] = None):
        context = db_context or DBContext()
        self.routes = context.database.tour_routes
        self.waypoints = context.database.tour_waypoints

    async def ensure_indexes(self):
        await self.routes.create_index("id", unique=True)
        await self.waypoints.create_index("id", unique=True)
        await self.waypoints.create_index([("tour_route_id", 1), ("sequence_order", 1)], unique=True)

    async def get_route(self, route_id: int) -> Optional[TourRoute]:
        doc = await self.routes.find_one({"id": route_id})
        return TourRoute.model_validate(doc) if doc else None

    async def get_active_route(self, route_id: int) -> Optional[TourRoute]:
        doc = await self.routes.find_one({"id": route_id, "is_active": True})
        return TourRoute.model_validate(doc) if doc else None

    async def list_waypoints(self, route_id: int) -> List[Waypoint]:
        docs = await self.waypoints.find({"tour_route_id": route_id}).to_list(length=None)
        return waypoint_list(docs)

    async def get_waypoint(self, waypoint_id: int) -> Optional[Waypoint]:
        doc = await self.waypoints.find_one({"id": waypoint_id})
        return Waypoint.model_validate(doc) if doc else None

    async def get_waypoint_by_sequence(self, route_id: int, sequence_order: int) -> Optional[Waypoint]:
        doc = await self.waypoints.find_one({"tour_route_id": route_id, "sequence_order": sequence_order})
        return Waypoint.model_validate(doc) if doc else None
