"""
Database Helper Functions

MongoDB helper functions ready to use in your backend code.
Import and use these functions in your API endpoints for database operations.
"""

import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

load_dotenv()

logger = logging.getLogger(__name__)

_client = None
db = None

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME", "storefront")

if database_url:
    _client = MongoClient(database_url)
    db = _client[database_name]


def get_db():
    """FastAPI dependency returning the active database handle."""
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def ensure_indexes():
    """Create the unique and TTL indexes the application relies on."""
    if db is None:
        return
    db["user"].create_index([("username", ASCENDING)], unique=True)
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["product"].create_index([("name", ASCENDING)], unique=True)
    db["session"].create_index([("token", ASCENDING)], unique=True)
    # mongod drops sessions once expires_at has passed
    db["session"].create_index([("expires_at", ASCENDING)], expireAfterSeconds=0)


def create_document(collection_name: str, data: Union[BaseModel, dict]):
    """Insert a single document with timestamps"""
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    now = datetime.now(timezone.utc)
    data_dict["created_at"] = now
    data_dict["updated_at"] = now

    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, sort: Optional[list] = None, limit: Optional[int] = None):
    """Get documents from collection"""
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    cursor = db[collection_name].find(filter_dict if filter_dict else {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)

    return list(cursor)


def parse_object_id(value, not_found: str) -> ObjectId:
    """Convert a client supplied id, treating malformed ids as a missing target."""
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise HTTPException(status_code=404, detail=not_found)


@contextmanager
def store_errors(message: str, conflict: Optional[str] = None):
    """Map store failures raised inside the block to HTTP errors.

    Unique index violations become 409 with ``conflict`` when given; any
    other driver error is logged and surfaces as a 500 carrying only
    ``message``.
    """
    try:
        yield
    except DuplicateKeyError:
        if conflict is None:
            logger.exception("Unexpected duplicate key: %s", message)
            raise HTTPException(status_code=500, detail=message)
        raise HTTPException(status_code=409, detail=conflict)
    except PyMongoError:
        logger.exception("Store failure: %s", message)
        raise HTTPException(status_code=500, detail=message)
