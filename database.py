"""
Database helpers

MongoDB access shared by the API modules. Collection names are the
lowercase class names of the models in schemas.py.
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient

from errors import UpstreamFailure, ValidationError

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db = None
if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def _require_db():
    if db is None:
        raise UpstreamFailure("Database not configured")
    return db


def _stamp(data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    return doc


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert one document and return its id as a string."""
    result = _require_db()[collection_name].insert_one(_stamp(data))
    return str(result.inserted_id)


def insert_documents(collection_name: str, items: List[Union[BaseModel, Dict[str, Any]]]) -> List[str]:
    if not items:
        return []
    result = _require_db()[collection_name].insert_many([_stamp(i) for i in items])
    return [str(i) for i in result.inserted_ids]


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = _require_db()[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id")


def serialize(doc: Optional[Dict[str, Any]]):
    """Expose Mongo's _id as a string id."""
    if not doc:
        return doc
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    doc.pop("password_hash", None)
    return doc
