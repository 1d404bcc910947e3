"""
MongoDB access shared by the API.

The connection is configured from DATABASE_URL and DATABASE_NAME. When either
is missing, ``db`` stays None and endpoints that need storage report it.
"""

import logging
import os
from datetime import datetime, timezone
from typing import List, Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient

from errors import DatabaseUnavailableError

logger = logging.getLogger(__name__)

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")

db = None

if database_url and database_name:
    client = MongoClient(database_url)
    db = client[database_name]
    logger.info("Using MongoDB database %s", database_name)
else:
    logger.warning("DATABASE_URL or DATABASE_NAME not set; database unavailable")


def get_db():
    if db is None:
        raise DatabaseUnavailableError()
    return db


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document with created_at/updated_at stamps and return its id."""
    database = get_db()
    data_dict = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    if data_dict.get("id") is None:
        data_dict.pop("id", None)
    now = datetime.now(timezone.utc)
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None) -> List[dict]:
    database = get_db()
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
