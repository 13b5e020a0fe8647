"""
MongoDB access helpers shared by the stores.

`db` is the default database handle built from DATABASE_URL / DATABASE_NAME.
MongoClient connects lazily, so importing this module never touches the network.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import DATABASE_URL, DATABASE_NAME

logger = logging.getLogger(__name__)

client: MongoClient = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000)
db: Database = client[DATABASE_NAME]


def utcnow() -> datetime:
    """Naive UTC timestamp, the form BSON dates round-trip as."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_object_id(value: Any) -> Optional[ObjectId]:
    """Return an ObjectId for a client supplied id, or None if it is malformed."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Convert a stored document into its JSON-ready shape (`_id` -> `id`)."""
    if doc is None:
        return None
    d = {**doc}
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, ObjectId):
            d[k] = str(v)
        elif isinstance(v, datetime):
            d[k] = v.replace(tzinfo=timezone.utc).isoformat() if v.tzinfo is None else v.isoformat()
        elif isinstance(v, dict):
            d[k] = serialize(v)
        elif isinstance(v, list):
            d[k] = [serialize(i) if isinstance(i, dict) else i for i in v]
    return d


def create_document(database: Database, collection_name: str, data: Dict[str, Any]) -> str:
    """Insert a document stamped with createdAt/updatedAt and return its id."""
    now = utcnow()
    doc = {**data}
    doc.setdefault("createdAt", now)
    doc.setdefault("updatedAt", now)
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, sort: Optional[List] = None) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database: Database) -> None:
    """Create the indexes the stores rely on. Failures are logged, not raised."""
    try:
        database["user"].create_index("email", unique=True)
        database["user"].create_index("googleId", unique=True, sparse=True)
        database["user"].create_index("resetToken", sparse=True)
        database["cartitem"].create_index(
            [("ownerKind", ASCENDING), ("ownerId", ASCENDING), ("productId", ASCENDING)],
            unique=True,
        )
        database["session"].create_index("key", unique=True)
        database["session"].create_index("expiresAt", expireAfterSeconds=0)
        database["order"].create_index("userId")
        database["order"].create_index("createdAt")
        database["order"].create_index("status")
    except PyMongoError as exc:
        logger.warning("Unable to ensure indexes: %s", exc)
