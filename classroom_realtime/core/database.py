# classroom_realtime/core/database.py

from __future__ import annotations

from typing import Any

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from classroom_realtime.core.config import settings

import logging

logger = logging.getLogger(__name__)


def create_mongo_client(url: str | None = None) -> AsyncIOMotorClient:
    """Build the motor client. No I/O happens until the first command."""
    client = AsyncIOMotorClient(
        url or settings.MONGO_URL,
        serverSelectionTimeoutMS=5000,
        tz_aware=True,
    )
    logger.info("✓ Mongo client created for database '%s'", settings.DB_NAME)
    return client


def get_database(client: AsyncIOMotorClient, name: str | None = None) -> AsyncIOMotorDatabase:
    return client[name or settings.DB_NAME]


def to_object_id(value: Any) -> Any:
    """Documents written by the main application use ObjectId keys; ids arrive as strings."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value
