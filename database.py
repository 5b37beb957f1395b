"""
Database Helpers

MongoDB connection shared by the API server. ``db`` is None when
DATABASE_URL / DATABASE_NAME are not configured; endpoints report that as
"Database not configured".
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from observability import get_logger
from settings import get_settings

logger = get_logger("database")


def connect(database_url: Optional[str], database_name: Optional[str]) -> Optional[Database]:
    if not database_url or not database_name:
        logger.warning("database_not_configured")
        return None
    client: MongoClient = MongoClient(database_url)
    return client[database_name]


_settings = get_settings()
db = connect(_settings.database_url, _settings.database_name)


def _require_db() -> Database:
    if db is None:
        raise RuntimeError("Database not configured")
    return db


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document with created_at/updated_at timestamps and return its id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump(by_alias=True)
    else:
        doc = dict(data)
    now = datetime.now(timezone.utc)
    doc["created_at"] = now
    doc["updated_at"] = now
    result = _require_db()[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = _require_db()[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
