import os
from typing import Optional

from pymongo.asynchronous.mongo_client import AsyncMongoClient


class DBContext:
    """Singleton wrapper around the async MongoDB client."""

    _instance: "DBContext | None" = None

    def __new__(cls, mongo_url: Optional[str] = None, database: Optional[str] = None) -> "DBContext":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            mongo_url = mongo_url or os.getenv("MONGODB_URL")
            if not mongo_url:
                raise RuntimeError("MONGODB_URL environment variable is not set")
            # tz_aware keeps stored timestamps comparable with datetime.now(timezone.utc)
            cls._instance._client = AsyncMongoClient(mongo_url, tz_aware=True)
            cls._instance._db = cls._instance._client[database or os.getenv("MONGODB_DATABASE", "tour_db")]
        return cls._instance

    @property
    def database(self):
        return self._db

    async def close(self) -> None:
        await self._client.close()
        DBContext._instance = None
