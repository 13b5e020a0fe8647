"""
Product and category storage for the storefront catalog.
"""

import re
from typing import Any, Dict, List, Optional

import pydantic
from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, get_documents, parse_object_id, utcnow
from errors import ValidationError
from schemas import Category, Product


def validate_product(data: Dict[str, Any]) -> Product:
    try:
        return Product(**data)
    except pydantic.ValidationError as exc:
        error = exc.errors()[0]
        field = ".".join(str(p) for p in error.get("loc", ()))
        raise ValidationError(f"{field}: {error['msg']}" if field else error["msg"])


class ProductStore:
    def __init__(self, db: Database):
        self.db = db
        self.collection = db["product"]

    def list(self) -> List[Dict[str, Any]]:
        return get_documents(self.db, "product")

    def get(self, product_id: str) -> Optional[Dict[str, Any]]:
        oid = parse_object_id(product_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    def get_many(self, product_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        oids = [oid for oid in (parse_object_id(p) for p in product_ids) if oid is not None]
        return {str(p["_id"]): p for p in self.collection.find({"_id": {"$in": oids}})}

    def by_category(self, category_id: str) -> List[Dict[str, Any]]:
        return get_documents(self.db, "product", {"categoryId": category_id})

    def search(self, query: str) -> List[Dict[str, Any]]:
        query = (query or "").strip()
        if not query:
            return []
        pattern = {"$regex": re.escape(query), "$options": "i"}
        return get_documents(self.db, "product", {"$or": [
            {"name": pattern},
            {"brand": pattern},
            {"description": pattern},
        ]})

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        product = validate_product(data)
        product_id = create_document(self.db, "product", product.model_dump())
        return self.get(product_id)

    def update(self, product_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        oid = parse_object_id(product_id)
        if oid is None:
            return None
        existing = self.collection.find_one({"_id": oid})
        if existing is None:
            return None
        # re-validate the merged document so price/rating rules still hold
        merged = validate_product({**existing, **fields}).model_dump()
        changes = {k: merged[k] for k in fields if k in merged}
        return self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": {**changes, "updatedAt": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )

    def delete(self, product_id: str) -> bool:
        oid = parse_object_id(product_id)
        if oid is None:
            return False
        return self.collection.delete_one({"_id": oid}).deleted_count > 0


class CategoryStore:
    def __init__(self, db: Database):
        self.db = db
        self.collection = db["category"]

    def list(self) -> List[Dict[str, Any]]:
        return get_documents(self.db, "category")

    def get(self, category_id: str) -> Optional[Dict[str, Any]]:
        oid = parse_object_id(category_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        category = Category(**data)
        category_id = create_document(self.db, "category", category.model_dump())
        return self.get(category_id)
