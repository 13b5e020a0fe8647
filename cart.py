"""
Shopping carts.

A cart belongs to exactly one Owner: an anonymous session or a signed-in user.
Lines are unique per (owner, product); adding a product that is already in the
cart increments its quantity in a single atomic upsert.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from catalog import ProductStore
from database import parse_object_id, utcnow
from errors import NotFound, ValidationError
from schemas import CartItem


@dataclass(frozen=True)
class Owner:
    kind: str
    id: str

    @classmethod
    def session(cls, session_id: str) -> "Owner":
        return cls("session", session_id)

    @classmethod
    def user(cls, user_id: str) -> "Owner":
        return cls("user", user_id)

    def filter(self) -> Dict[str, str]:
        return {"ownerKind": self.kind, "ownerId": self.id}


class CartStore:
    def __init__(self, db: Database, products: ProductStore):
        self.collection = db["cartitem"]
        self.products = products

    def list(self, owner: Owner) -> List[Dict[str, Any]]:
        """Cart lines for the owner, each with its product under `product` (None if deleted)."""
        lines = list(self.collection.find(owner.filter()).sort("createdAt", 1))
        products = self.products.get_many([line["productId"] for line in lines])
        for line in lines:
            line["product"] = products.get(line["productId"])
        return lines

    def add(self, owner: Owner, product_id: str, quantity: int = 1) -> Dict[str, Any]:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        product = self.products.get(product_id)
        if product is None:
            raise NotFound("Product not found")
        # validates owner kind and quantity before anything is written
        line = CartItem(ownerKind=owner.kind, ownerId=owner.id,
                        productId=str(product["_id"]), quantity=quantity)
        key = {"ownerKind": line.ownerKind, "ownerId": line.ownerId, "productId": line.productId}
        try:
            return self._upsert(key, line.quantity)
        except DuplicateKeyError:
            # lost the insert race to a concurrent add; the row exists now
            return self._upsert(key, line.quantity)

    def _upsert(self, key: Dict[str, str], quantity: int) -> Dict[str, Any]:
        now = utcnow()
        return self.collection.find_one_and_update(
            key,
            {
                "$inc": {"quantity": quantity},
                "$set": {"updatedAt": now},
                "$setOnInsert": {"createdAt": now},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    def update_quantity(self, owner: Owner, item_id: str, quantity: int) -> Optional[Dict[str, Any]]:
        """Set a line's quantity; zero or less removes the line and returns None."""
        if quantity <= 0:
            self.remove(owner, item_id)
            return None
        oid = parse_object_id(item_id)
        updated = None
        if oid is not None:
            updated = self.collection.find_one_and_update(
                {"_id": oid, **owner.filter()},
                {"$set": {"quantity": quantity, "updatedAt": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        if updated is None:
            raise NotFound("Cart item not found")
        return updated

    def remove(self, owner: Owner, item_id: str) -> None:
        oid = parse_object_id(item_id)
        if oid is None or self.collection.delete_one({"_id": oid, **owner.filter()}).deleted_count == 0:
            raise NotFound("Cart item not found")

    def clear(self, owner: Owner) -> int:
        """Delete all of the owner's lines. Returns the count removed."""
        return self.collection.delete_many(owner.filter()).deleted_count

    def take(self, owner: Owner, lines: Iterable[Dict[str, Any]]) -> None:
        """Remove exactly the quantities in `lines` (a snapshot from `list`) from the cart.

        A line still holding the snapshot quantity is deleted. A line that grew
        since the snapshot keeps the difference. If the store fails part way,
        the quantities already taken are put back before the error propagates.
        """
        taken = []
        try:
            for line in lines:
                self._take_line(owner, line)
                taken.append(line)
        except PyMongoError:
            for line in taken:
                self._upsert({**owner.filter(), "productId": line["productId"]}, line["quantity"])
            raise

    def _take_line(self, owner: Owner, line: Dict[str, Any]) -> None:
        match = {"_id": line["_id"], **owner.filter()}
        if self.collection.delete_one({**match, "quantity": line["quantity"]}).deleted_count:
            return
        self.collection.update_one(
            {**match, "quantity": {"$gt": line["quantity"]}},
            {"$inc": {"quantity": -line["quantity"]}, "$set": {"updatedAt": utcnow()}},
        )
