"""
MongoDB connection management using Motor (async driver).

Single DatabaseClient instance shared across all requests via a module-level
singleton. FastAPI's dependency injection (get_db) gives routes access
without importing the singleton directly; batch jobs build a PatternStore
around the same handle.

The connection is opened in FastAPI's lifespan (startup) and closed
on shutdown.

Collections
───────────
  reports          approved / pending reports (read-only for the engine,
                   except hotspot_id and geocoded coordinates)
  patterns         persisted Pattern entities (unique pattern_key)
  pattern_reports  Pattern ↔ Report links (unique pattern_id + report_id)
  checkpoints      resumable run state, one document per job name
"""

import logging
import re

import certifi
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING

from paradocs.core.config import settings

logger = logging.getLogger(__name__)

REPORTS = "reports"
PATTERNS = "patterns"
PATTERN_REPORTS = "pattern_reports"
CHECKPOINTS = "checkpoints"


class DatabaseClient:
    """
    Holds the Motor client and selected database.

    A class rather than bare globals so tests can replace .client and .db.
    """

    client: AsyncIOMotorClient | None = None
    db: AsyncIOMotorDatabase | None = None


# Module-level singleton: all app code references this object
db_client = DatabaseClient()


async def connect_to_mongo() -> None:
    """
    Create the MongoDB connection, validate it with a ping and make sure
    the unique indexes the engine relies on exist.

    Fails gracefully if MongoDB is unavailable — the API still responds and
    the health check reports the real status.
    """
    logger.info("Connecting to MongoDB at %s", _redact_uri(settings.mongo_uri))
    try:
        db_client.client = AsyncIOMotorClient(
            settings.mongo_uri,
            serverSelectionTimeoutMS=5000,
            tlsCAFile=certifi.where(),
        )
        db_client.db = db_client.client[settings.mongo_db_name]
        await db_client.client.admin.command("ping")
        await ensure_indexes(db_client.db)
        logger.info("MongoDB connection established (db: %s)", settings.mongo_db_name)
    except Exception as exc:
        logger.warning(
            "MongoDB unavailable at startup: %s. "
            "API running in degraded mode — DB endpoints will fail.",
            exc,
        )
        db_client.client = None
        db_client.db = None


async def close_mongo_connection() -> None:
    """Close the MongoDB connection gracefully on app shutdown."""
    if db_client.client is not None:
        db_client.client.close()
        logger.info("MongoDB connection closed")


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """
    Create the indexes that make every engine write an idempotent upsert.

    The two unique indexes are the natural keys: a Pattern's pattern_key
    and the (pattern_id, report_id) link pair. Safe to call repeatedly.
    """
    await db[PATTERNS].create_index([("pattern_key", ASCENDING)], unique=True)
    await db[PATTERNS].create_index([("center_lat", ASCENDING), ("center_lng", ASCENDING)])
    await db[PATTERNS].create_index([("status", ASCENDING)])
    await db[PATTERN_REPORTS].create_index(
        [("pattern_id", ASCENDING), ("report_id", ASCENDING)],
        unique=True,
    )
    await db[REPORTS].create_index([("status", ASCENDING), ("hotspot_id", ASCENDING)])
    await db[REPORTS].create_index([("category", ASCENDING), ("event_date", ASCENDING)])


def get_db() -> AsyncIOMotorDatabase | None:
    """
    FastAPI dependency — inject the database into route handlers.

    Returns None when MongoDB is unavailable so routes can answer 503
    rather than crashing.
    """
    return db_client.db


def _redact_uri(uri: str) -> str:
    """Strip credentials from URI before logging."""
    return re.sub(r"://[^:]+:[^@]+@", "://<redacted>@", uri)
