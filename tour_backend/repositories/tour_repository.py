from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from tour_backend.db.context import DBContext
from tour_backend.errors import Conflict
from tour_backend.models import TourInstance, TourStatus

NEWEST_FIRST = [("started_at", -1), ("history_id", -1)]


class TourRepository:
    """
    Data access layer for tour instances (the ``tour_history`` collection).

    All state-changing updates are conditional on ``completed: False`` so a
    terminal record is never rewritten by a late or duplicate call; callers
    read the returned boolean to learn whether they won.
    """

    def __init__(self, db_context: Optional[DBContext] = None):
        context = db_context or DBContext()
        self.collection = context.database.tour_history
        self.counters = context.database.counters

    async def ensure_indexes(self):
        await self.collection.create_index("instance_id", unique=True)
        await self.collection.create_index("history_id", unique=True)
        await self.collection.create_index([("pin", 1), ("completed", 1), ("started_at", -1)])
        await self.collection.create_index([("user_id", 1), ("completed", 1)])
        await self.collection.create_index(
            "robot_id",
            unique=True,
            name="one_running_tour_per_robot",
            partialFilterExpression={"completed": False, "status": TourStatus.IN_PROGRESS.value},
        )

    async def _next_history_id(self) -> int:
        counter = await self.counters.find_one_and_update(
            {"_id": "tour_history"},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return counter["seq"]

    @staticmethod
    def _to_document(instance: TourInstance) -> Dict[str, Any]:
        doc = instance.to_document()
        doc["status"] = instance.status.value
        return doc

    async def _find_one(self, query: Dict[str, Any]) -> Optional[TourInstance]:
        doc = await self.collection.find_one(query, sort=NEWEST_FIRST)
        return TourInstance.model_validate(doc) if doc else None

    async def _find_many(self, query: Dict[str, Any], limit: int = 0) -> List[TourInstance]:
        cursor = self.collection.find(query).sort(NEWEST_FIRST)
        if limit:
            cursor = cursor.limit(limit)
        docs = await cursor.to_list(length=None)
        return [TourInstance.model_validate(doc) for doc in docs]

    async def create(self, instance: TourInstance) -> TourInstance:
        stored = instance.model_copy(update={"history_id": await self._next_history_id()})
        await self.collection.insert_one(self._to_document(stored))
        return stored

    async def get_by_history_id(self, history_id: int) -> Optional[TourInstance]:
        return await self._find_one({"history_id": history_id})

    async def get_by_instance_id(self, instance_id: str) -> Optional[TourInstance]:
        return await self._find_one({"instance_id": instance_id})

    async def find_active_by_instance_id(self, instance_id: str) -> Optional[TourInstance]:
        return await self._find_one({"instance_id": instance_id, "completed": False})

    async def find_active_by_history_id(self, history_id: int) -> Optional[TourInstance]:
        return await self._find_one({"history_id": history_id, "completed": False})

    async def find_active_by_pin(self, pin: str) -> List[TourInstance]:
        return await self._find_many({"pin": pin, "completed": False})

    async def find_active_by_robot(self, robot_id: str) -> List[TourInstance]:
        return await self._find_many({"robot_id": robot_id, "completed": False})

    async def find_active_by_user(self, user_id: int) -> List[TourInstance]:
        return await self._find_many({"user_id": user_id, "completed": False})

    async def find_pending_for_robot(self, robot_id: str) -> Optional[TourInstance]:
        return await self._find_one(
            {"robot_id": robot_id, "completed": False, "status": TourStatus.PENDING.value}
        )

    async def find_idle_since(self, cutoff: datetime) -> List[TourInstance]:
        return await self._find_many(
            {
                "completed": False,
                "$or": [
                    {"last_activity_at": {"$lt": cutoff}},
                    {"last_activity_at": None, "started_at": {"$lt": cutoff}},
                ],
            }
        )

    async def mark_in_progress(self, history_id: int) -> bool:
        try:
            result = await self.collection.update_one(
                {"history_id": history_id, "completed": False, "status": TourStatus.PENDING.value},
                {"$set": {"status": TourStatus.IN_PROGRESS.value}},
            )
        except DuplicateKeyError:
            raise Conflict("Robot is already running another tour", history_id=history_id)
        return result.modified_count == 1

    async def finish(self, history_id: int, status: TourStatus, finished_at: datetime) -> bool:
        result = await self.collection.update_one(
            {"history_id": history_id, "completed": False},
            {"$set": {"completed": True, "status": status.value, "completed_at": finished_at}},
        )
        return result.modified_count == 1

    async def record_activity(self, history_id: int, sequence: int, at: datetime) -> bool:
        result = await self.collection.update_one(
            {"history_id": history_id, "completed": False},
            {"$set": {"last_waypoint_sequence": sequence, "last_activity_at": at}},
        )
        return result.matched_count == 1

    async def set_rating(self, history_id: int, rating: int, feedback: Optional[str]) -> bool:
        result = await self.collection.update_one(
            {"history_id": history_id, "completed": True},
            {"$set": {"rating": rating, "feedback": feedback}},
        )
        return result.matched_count == 1
