from motor.motor_asyncio import AsyncIOMotorDatabase

from app.db.mongo import mongodb, connect_to_mongo, close_mongo_connection


async def get_database() -> AsyncIOMotorDatabase:
    """Return the active database connection."""
    if mongodb.db is None:
        raise RuntimeError("MongoDB is not connected, connect_to_mongo() must run at startup")
    return mongodb.db


__all__ = ["get_database", "connect_to_mongo", "close_mongo_connection"]
