"""
Order storage: orders with their embedded items, delivery tracking fields,
and the aggregate views used by the back-office.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from database import parse_object_id, utcnow
from schemas import ORDER_STATUSES, Order, format_money, to_money

NEWEST_FIRST = [("createdAt", DESCENDING)]


def summarize(orders: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Per-status counts plus revenue over the immutable `total` of non-cancelled orders."""
    counts = {status: 0 for status in ORDER_STATUSES}
    revenue = Decimal("0")
    total = 0
    for order in orders:
        total += 1
        status = order.get("status")
        if status in counts:
            counts[status] += 1
        if status != "cancelled":
            revenue += to_money(order.get("total", "0"))
    return {"total": total, **counts, "totalRevenue": format_money(revenue)}


class OrderStore:
    def __init__(self, db: Database):
        self.collection = db["order"]

    def new_id(self) -> ObjectId:
        return ObjectId()

    def create(self, order_id: ObjectId, order: Order, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Insert the order and all its items in one document write."""
        now = now or utcnow()
        doc = {"_id": order_id, **order.model_dump(), "createdAt": now, "updatedAt": now}
        self.collection.insert_one(doc)
        return doc

    def delete(self, order_id: ObjectId) -> None:
        self.collection.delete_one({"_id": order_id})

    def get(self, order_id: str) -> Optional[Dict[str, Any]]:
        oid = parse_object_id(order_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    def by_user(self, user_id: str) -> List[Dict[str, Any]]:
        return list(self.collection.find({"userId": user_id}).sort(NEWEST_FIRST))

    def all(self) -> List[Dict[str, Any]]:
        return list(self.collection.find({}).sort(NEWEST_FIRST))

    def by_status(self, status: str) -> List[Dict[str, Any]]:
        return list(self.collection.find({"status": status}).sort(NEWEST_FIRST))

    def by_date_range(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Orders created within [start, end], both ends inclusive, newest first."""
        return list(self.collection.find({"createdAt": {"$gte": start, "$lte": end}}).sort(NEWEST_FIRST))

    def update_fields(self, order_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply a partial update and stamp updatedAt. None if the order does not exist."""
        oid = parse_object_id(order_id)
        if oid is None:
            return None
        return self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": {**fields, "updatedAt": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )

    def update_status(self, order_id: str, status: str,
                      stripe_payment_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        fields: Dict[str, Any] = {"status": status}
        if stripe_payment_id:
            fields["stripePaymentId"] = stripe_payment_id
        return self.update_fields(order_id, fields)

    def stats(self) -> Dict[str, Any]:
        return summarize(self.collection.find({}, {"status": 1, "total": 1}))
