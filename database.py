"""
MongoDB access for the theater canteen API.

A single pymongo client is built from DATABASE_URL / DATABASE_NAME. Routes
receive the database through the ``get_db`` dependency so tests can swap in
an in-memory database.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import settings
from errors import ApiError

logger = logging.getLogger(__name__)

# Collection names
PRODUCTS = "productlist"
CATEGORIES = "categories"
PRODUCT_TYPES = "producttypes"
ROLES = "roles"
QR_NAMES = "qrcodenames"
ORDERS = "theaterorders"
ORDER_COUNTERS = "ordercounters"
MONTHLY_STOCK = "monthlystocks"
THEATERS = "theaters"
USERS = "users"
PAGE_ACCESS = "pageaccesses"
SETTINGS = "settings"
REPORT_ACCESS_LOGS = "report_access_logs"

CONTAINER_COLLECTIONS = (PRODUCTS, CATEGORIES, PRODUCT_TYPES, ROLES, QR_NAMES, ORDERS)

_client: Optional[MongoClient] = None
db: Optional[Database] = None

if settings.database_url:
    _client = MongoClient(settings.database_url, tz_aware=True)
    db = _client[settings.database_name]


def get_db() -> Database:
    if db is None:
        raise ApiError(503, "Database not available", code="DATABASE_UNAVAILABLE")
    return db


def ensure_indexes(database: Database) -> None:
    for name in CONTAINER_COLLECTIONS:
        database[name].create_index([("theater", ASCENDING)], unique=True)
    database[ORDERS].create_index([("orderList.orderNumber", ASCENDING)])
    database[ORDERS].create_index([("orderList._id", ASCENDING)])
    database[ORDER_COUNTERS].create_index([("theater", ASCENDING), ("day", ASCENDING)], unique=True)
    database[MONTHLY_STOCK].create_index(
        [("theaterId", ASCENDING), ("productId", ASCENDING), ("year", ASCENDING), ("monthNumber", ASCENDING)],
        unique=True,
    )
    database[USERS].create_index([("username", ASCENDING)], unique=True)
    logger.info("indexes ensured on %s", database.name)


# -----------------------------
# Utilities
# -----------------------------

def oid(obj: Optional[Any]) -> Optional[ObjectId]:
    if obj is None:
        return None
    if isinstance(obj, ObjectId):
        return obj
    try:
        return ObjectId(str(obj))
    except Exception:
        return None


def require_oid(value: Any, field_name: str) -> ObjectId:
    _id = oid(value)
    if _id is None:
        raise ApiError(
            400,
            "Validation failed",
            details=[{"field": field_name, "message": f"Valid {field_name} is required"}],
        )
    return _id


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # mongomock and pymongo without tz_aware hand back naive UTC datetimes
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_str_id(doc: Any) -> Any:
    if isinstance(doc, list):
        return [to_str_id(d) for d in doc]
    if not isinstance(doc, dict):
        return str(doc) if isinstance(doc, ObjectId) else doc
    d: Dict[str, Any] = {}
    for k, v in doc.items():
        if k == "_id":
            d["id"] = str(v)
        elif isinstance(v, (dict, list)):
            d[k] = to_str_id(v)
        elif isinstance(v, ObjectId):
            d[k] = str(v)
        else:
            d[k] = v
    return d
