"""
Database helpers for the attendance service (MongoDB via pymongo)

Collections are named after the lowercased schema class:
- User          -> "user"
- Student       -> "student"
- AttendanceLog -> "attendancelog"
- Report        -> "report"

Route handlers receive the database through the get_db dependency so tests
can swap in an in-memory database.
"""
import logging
from datetime import date, datetime, time, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from settings import get_settings

logger = logging.getLogger(__name__)

USERS = "user"
STUDENTS = "student"
ATTENDANCE = "attendancelog"
REPORTS = "report"


@lru_cache
def get_client() -> MongoClient:
    settings = get_settings()
    # MongoClient connects lazily; the pool is shared across requests
    return MongoClient(settings.DATABASE_URL, serverSelectionTimeoutMS=settings.DATABASE_TIMEOUT_MS)


def get_database() -> Database:
    return get_client()[get_settings().DATABASE_NAME]


def get_db():
    """FastAPI dependency returning the application database."""
    return get_database()


def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_datetime(d: date) -> datetime:
    """BSON has no date-only type; calendar dates are stored at midnight."""
    if isinstance(d, datetime):
        return d
    return datetime.combine(d, time.min)


def parse_object_id(value: Any) -> Optional[ObjectId]:
    """Return an ObjectId for value, or None when it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def create_document(db: Database, collection_name: str, data: Dict[str, Any]) -> ObjectId:
    """Insert a document stamped with createdAt and return its id."""
    doc = dict(data)
    doc.setdefault("createdAt", now_utc())
    result = db[collection_name].insert_one(doc)
    return result.inserted_id


def get_documents(db: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  sort: Optional[List] = None, limit: int = 0) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize(value: Any) -> Any:
    """Make a Mongo document JSON friendly: _id -> id, ObjectId -> str."""
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            out["id" if k == "_id" else k] = serialize(v)
        return out
    if isinstance(value, ObjectId):
        return str(value)
    return value


def ensure_indexes(db: Database) -> None:
    try:
        db[STUDENTS].create_index([("studentId", ASCENDING)], unique=True)
        db[USERS].create_index([("email", ASCENDING)], unique=True)
        db[ATTENDANCE].create_index([("takenBy", ASCENDING), ("date", ASCENDING)])
    except PyMongoError as e:
        logger.warning("Could not create indexes: %s", e)
