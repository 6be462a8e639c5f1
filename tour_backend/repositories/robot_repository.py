from datetime import datetime
from typing import List, Optional

from pymongo.errors import DuplicateKeyError

from tour_backend.db.context import DBContext
from tour_backend.errors import Conflict
from tour_backend.models import Robot, RobotStatus


class RobotRepository:
    """Data access layer for the robot catalog."""

    def __init__(self, db_context: Optional[DBContext] = None):
        context = db_context or DBContext()
        self.collection = context.database.robots

    async def ensure_indexes(self):
        await self.collection.create_index("name", unique=True)

    async def get_by_name(self, name: str) -> Optional[Robot]:
        doc = await self.collection.find_one({"name": name})
        return Robot.model_validate(doc) if doc else None

    async def list_all(self) -> List[Robot]:
        docs = await self.collection.find({}).sort("name", 1).to_list(length=None)
        return [Robot.model_validate(doc) for doc in docs]

    async def create(self, robot: Robot) -> Robot:
        doc = robot.model_dump()
        doc["status"] = robot.status.value
        try:
            await self.collection.insert_one(doc)
        except DuplicateKeyError:
            raise Conflict(f"Robot '{robot.name}' is already registered")
        return robot

    async def set_status(self, name: str, status: RobotStatus) -> bool:
        result = await self.collection.update_one({"name": name}, {"$set": {"status": status.value}})
        return result.matched_count == 1

    async def touch_connection(self, name: str, at: datetime):
        # The unit behind the transport link is registered on first contact.
        await self.collection.update_one(
            {"name": name},
            {
                "$set": {"last_connection": at},
                "$setOnInsert": {"status": RobotStatus.ACTIVE.value, "completed_tours": 0},
            },
            upsert=True,
        )

    async def increment_completed(self, name: str):
        await self.collection.update_one({"name": name}, {"$inc": {"completed_tours": 1}})
