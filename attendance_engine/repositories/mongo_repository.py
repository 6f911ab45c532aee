"""
MongoDB connection handling shared by the section, student and session repositories.
"""
import logging
import threading
from typing import Any, Optional

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

from attendance_engine.config.settings import Config
from attendance_engine.exceptions.base import DatabaseError

logger = logging.getLogger(__name__)

SECTIONS = "sections"
STUDENTS = "students"
SESSIONS = "attendance"

_client: Optional[MongoClient] = None
_client_lock = threading.Lock()


def get_database():
    """Return the configured database, creating the pooled client on first use."""
    global _client
    if not Config.MONGODB_URI:
        raise DatabaseError("MONGODB_URI not configured")

    with _client_lock:
        if _client is None:
            try:
                _client = MongoClient(
                    Config.MONGODB_URI,
                    serverSelectionTimeoutMS=5000,
                    maxPoolSize=50,
                    minPoolSize=5,
                    maxIdleTimeMS=30000,
                    retryWrites=True,
                    retryReads=True,
                    tz_aware=True,
                )
                _client.admin.command("ping")
                logger.info("MongoDB connected successfully")
            except PyMongoError as e:
                _client = None
                logger.error(f"MongoDB unavailable: {e}")
                raise DatabaseError(f"MongoDB unavailable: {e}") from e
    return _client[Config.MONGODB_DATABASE]


def close_connection() -> None:
    """Close the pooled client on application shutdown."""
    global _client
    with _client_lock:
        if _client is not None:
            _client.close()
            _client = None
            logger.info("MongoDB connection closed")


def ensure_indexes(db) -> None:
    """
    Create the indexes the engine relies on.

    The unique (section_id, date, start_time) index is what makes concurrent
    materialization safe; it must exist before any session is written.
    """
    db[SESSIONS].create_index(
        [("section_id", ASCENDING), ("date", ASCENDING), ("start_time", ASCENDING)],
        unique=True,
        name="uniq_section_date_start",
    )
    db[SESSIONS].create_index([("room", ASCENDING), ("date", ASCENDING)], name="room_date")
    db[SESSIONS].create_index([("students.student_id", ASCENDING), ("date", ASCENDING)], name="student_date")
    db[SESSIONS].create_index([("marked_by", ASCENDING), ("date", ASCENDING)], name="marker_date")
    db[SECTIONS].create_index([("teacher_id", ASCENDING)], name="teacher")
    db[SECTIONS].create_index([("students", ASCENDING)], name="students")
    logger.info("MongoDB indexes ensured")


def ref_filter(field: str, value: Any) -> dict:
    """Match a reference field holding either an ObjectId or its string form."""
    if isinstance(value, str) and ObjectId.is_valid(value):
        return {field: {"$in": [ObjectId(value), value]}}
    return {field: value}


def id_filter(value: Any) -> dict:
    """Match a document id stored either as an ObjectId or as a plain string."""
    return ref_filter("_id", value)


def ping(db) -> bool:
    try:
        db.client.admin.command("ping")
        return True
    except PyMongoError as e:
        logger.warning(f"MongoDB ping failed: {e}")
        return False
