"""Shared fixtures: an in-memory document store and signed tokens."""

import copy
import re
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from database import DocumentStore, new_id, utcnow


def _matches(doc: dict, query: dict) -> bool:
    for key, cond in query.items():
        if key == "$or":
            if not any(_matches(doc, sub) for sub in cond):
                return False
            continue
        value = doc.get(key)
        if isinstance(cond, dict):
            if "$in" in cond and value not in cond["$in"]:
                return False
            if "$regex" in cond:
                flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
                if not isinstance(value, str) or not re.search(cond["$regex"], value, flags):
                    return False
        elif isinstance(value, list):
            if cond not in value:
                return False
        elif value != cond:
            return False
    return True


class InMemoryStore(DocumentStore):
    """DocumentStore over dicts, with the subset of query operators the services use."""

    def __init__(self):
        super().__init__(db=None)
        self.collections = {}

    @property
    def name(self) -> str:
        return "memory"

    def list_collection_names(self):
        return sorted(self.collections)

    def _coll(self, name: str) -> dict:
        return self.collections.setdefault(name, {})

    @staticmethod
    def _out(doc: Optional[dict]) -> Optional[dict]:
        if doc is None:
            return None
        out = copy.deepcopy(doc)
        out["id"] = out.pop("_id")
        return out

    def create_document(self, collection, data, doc_id=None):
        now = utcnow()
        doc = copy.deepcopy(dict(data))
        doc.pop("id", None)
        doc["_id"] = doc_id or new_id()
        doc.setdefault("created_at", now)
        doc.setdefault("updated_at", now)
        self._coll(collection)[doc["_id"]] = doc
        return doc["_id"]

    def get_document(self, collection, doc_id):
        return self._out(self._coll(collection).get(doc_id))

    def get_documents(self, collection, filter_dict=None, sort=None, limit=0, skip=0):
        docs = [d for d in self._coll(collection).values() if _matches(d, filter_dict or {})]
        for key, direction in reversed(list(sort or [])):
            docs.sort(key=lambda d: d.get(key), reverse=direction < 0)
        docs = docs[skip:]
        if limit:
            docs = docs[:limit]
        return [self._out(d) for d in docs]

    def count_documents(self, collection, filter_dict=None):
        return len([d for d in self._coll(collection).values() if _matches(d, filter_dict or {})])

    def update_document(self, collection, doc_id, set_fields=None, push=None, inc=None):
        doc = self._coll(collection).get(doc_id)
        if doc is None:
            return None
        doc.update(copy.deepcopy(set_fields or {}))
        doc["updated_at"] = utcnow()
        for key, value in (push or {}).items():
            doc.setdefault(key, []).append(copy.deepcopy(value))
        for key, delta in (inc or {}).items():
            doc[key] = doc.get(key, 0) + delta
        return self._out(doc)

    def update_many(self, collection, filter_dict, set_fields):
        matched = [d for d in self._coll(collection).values() if _matches(d, filter_dict)]
        for doc in matched:
            doc.update(copy.deepcopy(set_fields))
        return len(matched)

    def delete_document(self, collection, doc_id):
        return self._coll(collection).pop(doc_id, None) is not None

    def delete_documents(self, collection, ids):
        return sum(1 for doc_id in ids if self._coll(collection).pop(doc_id, None) is not None)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def client(store):
    from database import get_store
    from main import app

    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def _headers(user_id: str, email: str, role: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, email=email, role=role)}"}


@pytest.fixture
def user_headers():
    return _headers("user-1", "buyer@example.com", "user")


@pytest.fixture
def other_user_headers():
    return _headers("user-2", "someone@example.com", "user")


@pytest.fixture
def admin_headers():
    return _headers("admin-1", "admin@example.com", "admin")


@pytest.fixture
def product(store):
    """A stock-tracked catalog product."""
    product_id = store.create_document("products", {
        "title": "Ceramic Mug",
        "description": "350ml glazed mug",
        "sku": "MUG-001",
        "categories": ["kitchen"],
        "price": 1000.0,
        "stock": 10,
        "images": [],
        "thumbnail": "https://cdn.example.com/mug.png",
        "tags": [],
        "featured": True,
    })
    return store.get_document("products", product_id)
