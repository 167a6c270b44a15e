"""
MongoDB access for the ExpiryEaze backend.

The connection is configured from DATABASE_URL / DATABASE_NAME. When either is
missing `db` stays None and the helpers below refuse to write.
"""

import os
from datetime import datetime, timezone
from typing import Union

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

load_dotenv()

logger = structlog.get_logger(__name__)

_client = None
db = None

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")

if database_url and database_name:
    _client = MongoClient(database_url)
    db = _client[database_name]


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document with timestamps and return its id as a string."""
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


def ensure_indexes(database) -> None:
    # uniqueness that the routes also check before writing
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["review"].create_index([("user_id", ASCENDING), ("vendor_id", ASCENDING)], unique=True)
    database["review"].create_index([("vendor_id", ASCENDING), ("created_at", ASCENDING)])
    database["waitlist"].create_index([("email", ASCENDING), ("role", ASCENDING)], unique=True)
    database["cart"].create_index([("user_id", ASCENDING)], unique=True)
    database["product"].create_index([("vendor_id", ASCENDING)])
    logger.info("indexes_ensured", database=database.name)
