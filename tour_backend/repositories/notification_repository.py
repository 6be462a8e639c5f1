from typing import Any, Dict, List, Optional

from tour_backend.db.context import DBContext
from tour_backend.models import Notification


class NotificationRepository:
    """Data access layer for delivered notifications."""

    def __init__(self, db_context: Optional[DBContext] = None):
        context = db_context or DBContext()
        self.collection = context.database.notifications

    async def ensure_indexes(self):
        await self.collection.create_index([("timestamp", -1)])

    async def insert(self, notification: Notification):
        doc = {
            "kind": notification.kind.value,
            "priority": notification.priority.value,
            "payload": notification.payload,
            "timestamp": notification.created_at,
        }
        await self.collection.insert_one(doc)

    async def list_recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        cursor = self.collection.find({}, {"_id": 0}).sort("timestamp", -1).limit(limit)
        return await cursor.to_list(length=limit)
