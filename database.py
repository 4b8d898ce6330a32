"""
Database access

A single MongoClient shared by the whole app plus the small helpers every
service uses. Collections are named after the model, lowercased:
- User -> "user"
- Pharmacy -> "pharmacy"
- Medication -> "medication"
- BloodDonation -> "blooddonation"
- Notification -> "notification"
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database

import config
from errors import ValidationError

logger = logging.getLogger(__name__)

# MongoClient connects lazily, so importing this module never blocks
client = MongoClient(config.DATABASE_URL, serverSelectionTimeoutMS=5000)
db = client[config.DATABASE_NAME]

Sort = Sequence[Tuple[str, int]]


def get_db() -> Database:
    return db


# ---------------- Time -----------------

def utcnow() -> datetime:
    """Naive UTC, the same form pymongo hands stored datetimes back in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# ---------------- Ids & serialization -----------------

def oid(id_str: Union[str, ObjectId]) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid object id")


def serialize(value: Any) -> Any:
    """Make a stored document JSON friendly: `_id` becomes `id`, ObjectIds become strings."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            out["id" if key == "_id" else key] = serialize(item)
        return out
    if isinstance(value, list):
        return [serialize(item) for item in value]
    return value


# ---------------- Documents -----------------

def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(by_alias=True)
    else:
        data_dict = dict(data)
    data_dict.setdefault("createdAt", utcnow())
    db[collection_name].insert_one(data_dict)
    return data_dict


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    limit: Optional[int] = None,
    sort: Optional[Sort] = None,
) -> List[dict]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(list(sort))
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def paginate(collection: Collection, query: dict, sort: Sort, page: int = 1, limit: int = 10) -> Tuple[List[dict], Dict[str, Any]]:
    total = collection.count_documents(query)
    pages = max(1, math.ceil(total / limit))
    docs = list(collection.find(query).sort(list(sort)).skip((page - 1) * limit).limit(limit))
    pagination = {
        "total": total,
        "pages": pages,
        "page": page,
        "limit": limit,
        "hasNext": page < pages,
        "hasPrev": page > 1,
    }
    return docs, pagination


def ensure_indexes(db: Database) -> None:
    db["blooddonation"].create_index([("bloodType", ASCENDING), ("urgency", ASCENDING)])
    db["blooddonation"].create_index([("expiresAt", ASCENDING)])
    db["blooddonation"].create_index([("status", ASCENDING), ("urgencyRank", DESCENDING), ("createdAt", DESCENDING)])
    db["notification"].create_index([("user", ASCENDING), ("read", ASCENDING)])
    # expiresAt is optional; documents without it are never purged
    db["notification"].create_index([("expiresAt", ASCENDING)], expireAfterSeconds=0)
    db["medication"].create_index([("pharmacies.pharmacy", ASCENDING)])
    db["user"].create_index([("bloodDonor.bloodType", ASCENDING), ("bloodDonor.eligibleSince", ASCENDING)])
    logger.info("Database indexes ensured on %s", db.name)
