"""
MongoDB access for the storefront.

``DocumentStore`` wraps a pymongo ``Database`` and hands documents back as
plain dicts with ``id`` in place of ``_id``. Route handlers receive a store
through the ``get_store`` dependency instead of a module-level ``db``.
"""

import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from pymongo import MongoClient, ReturnDocument
from pymongo.database import Database

from config import get_settings

logger = logging.getLogger(__name__)

Sort = Sequence[Tuple[str, int]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(ObjectId())


def _out(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


class DocumentStore:
    """CRUD by id and query-by-field over MongoDB collections."""

    def __init__(self, db: Database):
        self.db = db

    @property
    def name(self) -> str:
        return self.db.name

    def list_collection_names(self) -> List[str]:
        return self.db.list_collection_names()

    def create_document(self, collection: str, data: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        now = utcnow()
        doc = dict(data)
        doc.pop("id", None)
        doc["_id"] = doc_id or new_id()
        doc.setdefault("created_at", now)
        doc.setdefault("updated_at", now)
        self.db[collection].insert_one(doc)
        return doc["_id"]

    def get_document(self, collection: str, doc_id: str) -> Optional[dict]:
        return _out(self.db[collection].find_one({"_id": doc_id}))

    def get_documents(
        self,
        collection: str,
        filter_dict: Optional[dict] = None,
        sort: Optional[Sort] = None,
        limit: int = 0,
        skip: int = 0,
    ) -> List[dict]:
        cursor = self.db[collection].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(list(sort))
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [_out(d) for d in cursor]

    def count_documents(self, collection: str, filter_dict: Optional[dict] = None) -> int:
        return self.db[collection].count_documents(filter_dict or {})

    def update_document(
        self,
        collection: str,
        doc_id: str,
        set_fields: Optional[dict] = None,
        push: Optional[dict] = None,
        inc: Optional[dict] = None,
    ) -> Optional[dict]:
        """Apply $set/$push/$inc to one document and return it after the update."""
        update: Dict[str, dict] = {"$set": {**(set_fields or {}), "updated_at": utcnow()}}
        if push:
            update["$push"] = push
        if inc:
            update["$inc"] = inc
        res = self.db[collection].find_one_and_update(
            {"_id": doc_id},
            update,
            return_document=ReturnDocument.AFTER,
        )
        return _out(res)

    def update_many(self, collection: str, filter_dict: dict, set_fields: dict) -> int:
        res = self.db[collection].update_many(filter_dict, {"$set": set_fields})
        return res.modified_count

    def delete_document(self, collection: str, doc_id: str) -> bool:
        return self.db[collection].delete_one({"_id": doc_id}).deleted_count > 0

    def delete_documents(self, collection: str, ids: Sequence[str]) -> int:
        return self.db[collection].delete_many({"_id": {"$in": list(ids)}}).deleted_count


@lru_cache()
def _client(url: str) -> MongoClient:
    logger.info("Connecting to MongoDB")
    return MongoClient(url, tz_aware=True)


def get_store() -> DocumentStore:
    """FastAPI dependency returning the request's document store."""
    settings = get_settings()
    return DocumentStore(_client(settings.DATABASE_URL)[settings.DATABASE_NAME])
