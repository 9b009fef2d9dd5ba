"""
MongoDB access for the Maison Slimani API.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured; helpers
raise in that case so routes surface a 500 instead of silently doing nothing.
"""
import os
import uuid
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def _require_db():
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return db


def new_id() -> str:
    return str(uuid.uuid4())


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document with a UUID `_id` and timestamps, return the id."""
    database = _require_db()
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(mode="json")
    else:
        data_dict = data.copy()

    now = datetime.now(timezone.utc)
    data_dict.setdefault("_id", new_id())
    data_dict["created_at"] = now
    data_dict["updated_at"] = now

    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None):
    database = _require_db()
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def update_document(collection_name: str, doc_id: str, changes: dict) -> Optional[dict]:
    """Apply `$set` changes and return the updated document (None if missing)."""
    database = _require_db()
    changes = {**changes, "updated_at": datetime.now(timezone.utc)}
    res = database[collection_name].update_one({"_id": doc_id}, {"$set": changes})
    if res.matched_count == 0:
        return None
    return database[collection_name].find_one({"_id": doc_id})


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d
