"""
Catalog categories.

Products reference categories by ``name`` in their ``categories`` list, so
product counts are computed from the products collection on read and a rename
is carried over to every product that used the old name.
"""

import logging
import re
from typing import List, Optional

from auth import RequestContext
from database import DocumentStore
from errors import NotFound, ValidationError
from permissions import Action
from schemas import Category

logger = logging.getLogger(__name__)

COLLECTION = "categories"
PRODUCTS = "products"


class CategoryService:
    def __init__(self, store: DocumentStore):
        self.store = store

    def _with_count(self, category: dict) -> dict:
        out = dict(category)
        out["product_count"] = self.store.count_documents(PRODUCTS, {"categories": category["name"]})
        return out

    def _load(self, category_id: str) -> dict:
        category = self.store.get_document(COLLECTION, category_id)
        if category is None:
            raise NotFound("Category not found")
        return category

    def _check_unique(self, payload: Category, exclude_id: Optional[str] = None) -> None:
        for field in ("name", "slug"):
            for existing in self.store.get_documents(COLLECTION, {field: getattr(payload, field)}):
                if existing["id"] != exclude_id:
                    raise ValidationError(f"A category with this {field} already exists")

    def list_categories(self) -> List[dict]:
        return [self._with_count(c) for c in self.store.get_documents(COLLECTION, sort=[("name", 1)])]

    def search(self, ctx: RequestContext, q: str, limit: int = 10) -> List[dict]:
        ctx.require(Action.VIEW_PRODUCTS)
        if not q.strip():
            return []
        pattern = re.escape(q.strip())
        query = {"$or": [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"slug": {"$regex": pattern, "$options": "i"}},
        ]}
        docs = self.store.get_documents(COLLECTION, query, sort=[("name", 1)], limit=limit)
        return [self._with_count(c) for c in docs]

    def get_category(self, ctx: RequestContext, category_id: str) -> dict:
        ctx.require(Action.VIEW_PRODUCTS)
        return self._with_count(self._load(category_id))

    def create(self, ctx: RequestContext, payload: Category) -> dict:
        ctx.require(Action.CREATE_PRODUCTS)
        self._check_unique(payload)
        category_id = self.store.create_document(COLLECTION, payload.model_dump())
        logger.info("Category %s (%s) created", payload.name, category_id)
        return self._with_count(self._load(category_id))

    def update(self, ctx: RequestContext, category_id: str, payload: Category) -> dict:
        ctx.require(Action.UPDATE_PRODUCTS)
        current = self._load(category_id)
        self._check_unique(payload, exclude_id=category_id)
        updated = self.store.update_document(COLLECTION, category_id, payload.model_dump())
        if payload.name != current["name"]:
            renamed = 0
            for product in self.store.get_documents(PRODUCTS, {"categories": current["name"]}):
                names = [payload.name if n == current["name"] else n for n in product["categories"]]
                self.store.update_document(PRODUCTS, product["id"], {"categories": names})
                renamed += 1
            logger.info("Category %s renamed to %s on %d products", current["name"], payload.name, renamed)
        return self._with_count(updated)

    def delete(self, ctx: RequestContext, category_id: str) -> None:
        ctx.require(Action.DELETE_PRODUCTS)
        if not self.store.delete_document(COLLECTION, category_id):
            raise NotFound("Category not found")

    def bulk_delete(self, ctx: RequestContext, ids: List[str]) -> int:
        ctx.require(Action.DELETE_PRODUCTS)
        deleted = self.store.delete_documents(COLLECTION, ids)
        logger.info("Bulk deleted %d categories", deleted)
        return deleted
