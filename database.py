"""
Store access

One MongoClient is created when the app starts and closed when it stops; the
database handle lives on app.state.db and reaches routes through get_db.
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import FastAPI, Request
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "nursery")


def ensure_indexes(db: Database) -> None:
    db["user"].create_index("email", unique=True)
    db["category"].create_index("name_key", unique=True)
    db["product"].create_index("category_id")
    db["cart"].create_index("user_id", unique=True)
    db["cart_item"].create_index([("cart_id", ASCENDING), ("product_id", ASCENDING)], unique=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    client: Optional[MongoClient] = None
    if getattr(app.state, "db", None) is None:
        client = MongoClient(DATABASE_URL)
        app.state.db = client[DATABASE_NAME]
        logger.info("Connected to MongoDB database %s", DATABASE_NAME)
    ensure_indexes(app.state.db)
    try:
        yield
    finally:
        if client is not None:
            client.close()
            app.state.db = None
            logger.info("MongoDB connection closed")


def get_db(request: Request) -> Database:
    return request.app.state.db


def to_object_id(value: str) -> Optional[ObjectId]:
    """Parse an id string, returning None when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(str(value)):
        return None
    return ObjectId(str(value))


def create_document(db: Database, collection_name: str, data: BaseModel) -> str:
    doc = data.model_dump()
    now = datetime.now(timezone.utc)
    doc["created_at"] = now
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(db: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  sort: Optional[List] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Turn a stored document into its wire shape: id string, camelCase keys."""
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    out: Dict[str, Any] = {"id": str(_id)} if _id is not None else {}
    for k, v in doc.items():
        if k in ("password_hash", "name_key"):
            continue
        if isinstance(v, ObjectId):
            v = str(v)
        elif isinstance(v, datetime):
            v = v.isoformat()
        out[to_camel(k)] = v
    return out
