"""
Database Helper Functions

MongoDB helper functions used by the API endpoints and the cart service.
Documents pass through the legacy-field normalization on every read.
"""

from pymongo import MongoClient, ReturnDocument
from bson import ObjectId
from bson.errors import InvalidId
from datetime import datetime, timezone
from typing import Union, Optional, Dict, Any, List
from pydantic import BaseModel
import structlog

import config
from schemas import LEGACY_FIELDS, legacy_keys, normalize_document

logger = structlog.get_logger(__name__)

_client = None
db = None


class DatabaseUnavailable(Exception):
    """Raised when no database connection has been configured."""


def connect(database_url: Optional[str] = None, database_name: Optional[str] = None):
    global _client, db
    database_url = database_url or config.DATABASE_URL
    database_name = database_name or config.DATABASE_NAME
    if database_url and database_name:
        _client = MongoClient(database_url)
        db = _client[database_name]
    return db


connect()


def _ensure_db():
    if db is None:
        raise DatabaseUnavailable("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def to_object_id(_id: str) -> Optional[ObjectId]:
    """Parse a string id; malformed ids yield None so callers can answer 404."""
    try:
        return ObjectId(_id)
    except (InvalidId, TypeError):
        return None


def get_collection(collection_name: str):
    _ensure_db()
    return db[collection_name]


def ensure_indexes():
    _ensure_db()
    db["user"].create_index("email", unique=True)
    db["cart"].create_index("user_id", unique=True)


# CRUD helpers

def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    _ensure_db()
    payload = _to_dict(data)
    now = datetime.now(timezone.utc)
    payload.setdefault('created_at', now)
    payload['updated_at'] = now
    result = db[collection_name].insert_one(payload)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, sort: Optional[list] = None) -> List[dict]:
    _ensure_db()
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(int(limit))
    return [serialize_doc(normalize_document(collection_name, doc)) for doc in cursor]


def get_document_by_id(collection_name: str, _id: str) -> Optional[dict]:
    _ensure_db()
    oid = to_object_id(_id)
    if oid is None:
        return None
    doc = db[collection_name].find_one({"_id": oid})
    return serialize_doc(normalize_document(collection_name, doc)) if doc else None


def find_document(collection_name: str, filter_dict: dict) -> Optional[dict]:
    _ensure_db()
    doc = db[collection_name].find_one(filter_dict)
    return serialize_doc(normalize_document(collection_name, doc)) if doc else None


def update_document(collection_name: str, _id: str, update_data: Union[BaseModel, Dict[str, Any]]) -> Optional[dict]:
    """Apply ``$set`` with ``update_data`` and return the updated document, or None if missing."""
    _ensure_db()
    oid = to_object_id(_id)
    if oid is None:
        return None
    update = {"$set": _to_dict(update_data)}
    update["$set"]["updated_at"] = datetime.now(timezone.utc)
    doc = db[collection_name].find_one_and_update({"_id": oid}, update, return_document=ReturnDocument.AFTER)
    return serialize_doc(normalize_document(collection_name, doc)) if doc else None


def delete_document(collection_name: str, _id: str) -> bool:
    _ensure_db()
    oid = to_object_id(_id)
    if oid is None:
        return False
    result = db[collection_name].delete_one({"_id": oid})
    return result.deleted_count > 0


def migrate_legacy_fields() -> Dict[str, int]:
    """Rewrite stored documents that still carry legacy field names.

    Returns the number of migrated documents per collection.
    """
    _ensure_db()
    migrated = {}
    for collection_name, aliases in LEGACY_FIELDS.items():
        count = 0
        query = {"$or": [{legacy: {"$exists": True}} for legacy in aliases]}
        for doc in db[collection_name].find(query):
            normalized = normalize_document(collection_name, doc)
            normalized.pop("_id")
            db[collection_name].update_one(
                {"_id": doc["_id"]},
                {"$set": normalized, "$unset": {k: "" for k in legacy_keys(collection_name, doc)}},
            )
            count += 1
        if count:
            logger.info("legacy_fields_migrated", collection=collection_name, count=count)
        migrated[collection_name] = count
    return migrated


# Utility

def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    d = dict(doc)
    if "_id" in d:
        d["_id"] = str(d["_id"])  # convert ObjectId to string
    return d
