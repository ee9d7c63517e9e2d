from __future__ import annotations

from typing import Any, Dict

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase

from .logging import get_logger
from .settings import MongoSettings

logger = get_logger(__name__)


# PUBLIC_INTERFACE
def create_mongo_client(mongo: MongoSettings) -> AsyncIOMotorClient:
    """Build an async MongoDB client. The owning context closes it on shutdown."""
    logger.info("Connecting to MongoDB...", extra={"context": {"db": mongo.MONGODB_DB}})
    return AsyncIOMotorClient(mongo.MONGODB_URL, tz_aware=True)


# PUBLIC_INTERFACE
def get_database(client: AsyncIOMotorClient, mongo: MongoSettings) -> AsyncIOMotorDatabase:
    """Get the configured MongoDB database handle."""
    return client[mongo.MONGODB_DB]


# PUBLIC_INTERFACE
async def upsert_by_id(collection: AsyncIOMotorCollection, _id: str, payload: Dict[str, Any]) -> None:
    """Upsert a document by id."""
    await collection.update_one({"_id": _id}, {"$set": payload}, upsert=True)
