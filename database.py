"""
Database access for the storefront.

A single MongoDB database configured from DATABASE_URL / DATABASE_NAME.
`db` is None when the environment is not configured; routes check for that
and answer with an error instead of crashing at import.
"""
import os
from datetime import datetime, timezone
from typing import Any, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
WATCH_POLL_MS = int(os.getenv("WATCH_POLL_MS", 1000))

_client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def _require_db():
    if db is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return db


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping createdAt/updatedAt unless already set."""
    database = _require_db()
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(by_alias=True, exclude={"id"})
    else:
        data_dict = {k: v for k, v in data.items() if k != "id"}

    now = datetime.now(timezone.utc)
    if data_dict.get("createdAt") is None:
        data_dict["createdAt"] = now
    data_dict["updatedAt"] = now

    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                  sort: Optional[list] = None) -> list:
    database = _require_db()
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_document(collection_name: str, doc_id: str) -> Optional[dict]:
    database = _require_db()
    oid = to_object_id(doc_id)
    if oid is None:
        return None
    return database[collection_name].find_one({"_id": oid})


def update_document(collection_name: str, doc_id: str, fields: dict) -> bool:
    """Partial update ($set). Returns False when no document matched."""
    database = _require_db()
    oid = to_object_id(doc_id)
    if oid is None:
        return False
    result = database[collection_name].update_one({"_id": oid}, {"$set": fields})
    return result.matched_count > 0


def delete_document(collection_name: str, doc_id: str) -> bool:
    database = _require_db()
    oid = to_object_id(doc_id)
    if oid is None:
        return False
    result = database[collection_name].delete_one({"_id": oid})
    return result.deleted_count > 0


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except Exception:
        return None


def to_public_doc(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def open_change_stream(database, collection_name: str):
    """
    Open a change stream on a collection.

    `try_next()` on the result waits at most WATCH_POLL_MS for an event, so
    a reader can check for shutdown between polls. Needs a replica set;
    standalone servers raise PyMongoError here.
    """
    return database[collection_name].watch(full_document="updateLookup", max_await_time_ms=WATCH_POLL_MS)
