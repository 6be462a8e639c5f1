from typing import Any, Dict, Optional

from tour_backend.db.context import DBContext


class UserRepository:
    """Data access layer for the users collection (read-only here)."""

    def __init__(self, db_context: Optional[DBContext] = None):
        context = db_context or DBContext()
        self.collection = context.database.users

    async def get_by_id(self, user_id: int) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"id": user_id}, {"_id": 0, "password": 0})

    async def get_username(self, user_id: int) -> Optional[str]:
        user = await self.get_by_id(user_id)
        return user.get("username") if user else None
