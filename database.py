"""
MongoDB access for the storefront.

Two independent stores:
- db: users and orders
- catalog_db: the product catalog

There is no transaction boundary shared between them.
"""
import os
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import MongoClient

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "thriftstore")
CATALOG_DATABASE_URL = os.getenv("CATALOG_DATABASE_URL", DATABASE_URL)
CATALOG_DATABASE_NAME = os.getenv("CATALOG_DATABASE_NAME", "thriftstore_catalog")

_client = MongoClient(DATABASE_URL)
_catalog_client = _client if CATALOG_DATABASE_URL == DATABASE_URL else MongoClient(CATALOG_DATABASE_URL)

db = _client[DATABASE_NAME]
catalog_db = _catalog_client[CATALOG_DATABASE_NAME]


def _resolve(database):
    return db if database is None else database


def create_document(collection_name: str, data, database=None) -> str:
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = _resolve(database)[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, database=None):
    cursor = _resolve(database)[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(int(limit))
    return list(cursor)


def parse_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return serialize_doc(value, rename_id=False)
    if isinstance(value, list):
        return [serialize_value(v) for v in value]
    return value


def serialize_doc(doc, rename_id: bool = True):
    if not doc:
        return doc
    doc = dict(doc)
    if rename_id and "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return {k: serialize_value(v) for k, v in doc.items()}
