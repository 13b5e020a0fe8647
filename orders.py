"""
Order lifecycle: checkout from a cart, admin status/delivery transitions and
back-office reporting. Every successful mutation is published as a live order
event.
"""

import calendar
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pymongo.errors import PyMongoError

from auth import AuthService, Principal
from cart import CartStore, Owner
from catalog import ProductStore
from database import to_naive_utc, utcnow
from errors import EmptyCart, Forbidden, InternalError, InvalidStatus, NotFound, ValidationError
from notifications import OrderEventPublisher
from order_store import OrderStore, summarize
from schemas import DELIVERY_STATUSES, ORDER_STATUSES, Order, OrderItem, format_money, to_money

logger = logging.getLogger(__name__)

SHIPPING_FIELDS = ("email", "name", "address", "city", "postalCode", "country", "phone")
DELIVERY_FIELDS = ("deliveryStatus", "trackingNumber", "estimatedDeliveryDate", "deliveryNotes")


class OrderService:
    def __init__(self, orders: OrderStore, carts: CartStore, products: ProductStore,
                 auth: AuthService, events: OrderEventPublisher):
        self.orders = orders
        self.carts = carts
        self.products = products
        self.auth = auth
        self.events = events

    # --- checkout ---

    def place_order(self, shipping: Dict[str, Any], owner: Owner) -> Dict[str, Any]:
        """Turn the owner's cart into an order and empty the cart.

        The order and its items are one document, so they land together. Only the
        ordered quantities leave the cart, so units added meanwhile stay in it. If the
        cart cannot be updated afterwards the order is withdrawn again, leaving
        the cart intact for a retry.
        """
        lines = self.carts.list(owner)
        if not lines:
            raise EmptyCart()

        order_id = self.orders.new_id()
        total = Decimal("0")
        items: List[OrderItem] = []
        for line in lines:
            product = line.get("product")
            if product is None:
                raise ValidationError("A product in your cart is no longer available")
            price = to_money(product["price"])
            total += price * line["quantity"]
            items.append(OrderItem(
                id=str(line["_id"]),
                orderId=str(order_id),
                productId=line["productId"],
                quantity=line["quantity"],
                price=format_money(price),
            ))

        order = Order(
            userId=owner.id if owner.kind == "user" else None,
            total=format_money(total),
            items=items,
            **{k: shipping.get(k) for k in SHIPPING_FIELDS},
        )
        doc = self.orders.create(order_id, order)
        try:
            self.carts.take(owner, lines)
        except PyMongoError:
            logger.exception("Clearing cart failed after creating order %s; withdrawing it", order_id)
            try:
                self.orders.delete(order_id)
            except PyMongoError:
                logger.exception("Could not withdraw order %s", order_id)
            raise InternalError("Failed to create order")

        logger.info("Order %s placed (%s, total %s)", order_id, owner.kind, order.total)
        self.events.notify_new_order(str(order_id))
        return doc

    # --- admin transitions ---

    def update_status(self, order_id: str, status: Optional[str]) -> Dict[str, Any]:
        """Set the order status. Any recognized status may follow any other."""
        if not status:
            raise InvalidStatus("Status is required")
        if status not in ORDER_STATUSES:
            raise InvalidStatus()
        order = self.orders.update_status(order_id, status)
        if order is None:
            raise NotFound("Order not found")
        self.events.notify_order_update(order_id)
        return order

    def update_delivery(self, order_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Partial update of the delivery tracking fields; absent keys are left alone."""
        fields = {k: changes[k] for k in DELIVERY_FIELDS if k in changes}
        status = fields.get("deliveryStatus")
        if "deliveryStatus" in fields and status not in DELIVERY_STATUSES:
            raise InvalidStatus("Invalid delivery status")
        if isinstance(fields.get("estimatedDeliveryDate"), datetime):
            fields["estimatedDeliveryDate"] = to_naive_utc(fields["estimatedDeliveryDate"])
        order = self.orders.update_fields(order_id, fields)
        if order is None:
            raise NotFound("Order not found")
        self.events.notify_order_update(order_id)
        return order

    # --- reads ---

    def get_order(self, principal: Principal, order_id: str) -> Dict[str, Any]:
        user = self.auth.current_user(principal)
        order = self.orders.get(order_id)
        if order is None:
            raise NotFound("Order not found")
        if order.get("userId") != str(user["_id"]) and not self.auth.is_admin(principal):
            raise Forbidden()
        return order

    def orders_for_user(self, principal: Principal, user_id: str) -> List[Dict[str, Any]]:
        self.auth.current_user(principal)
        if user_id != principal.user_id and not self.auth.is_admin(principal):
            raise Forbidden()
        return self.orders.by_user(user_id)

    def all_orders(self) -> List[Dict[str, Any]]:
        return self.orders.all()

    def orders_by_status(self, status: str) -> List[Dict[str, Any]]:
        if status not in ORDER_STATUSES:
            raise InvalidStatus()
        return self.orders.by_status(status)

    def order_items(self, order_id: str) -> List[Dict[str, Any]]:
        order = self.orders.get(order_id)
        if order is None:
            raise NotFound("Order not found")
        items = order.get("items", [])
        products = self.products.get_many([item["productId"] for item in items])
        return [{**item, "product": products.get(item["productId"])} for item in items]

    def stats(self) -> Dict[str, Any]:
        return self.orders.stats()

    def monthly_report(self, year: Optional[int] = None, month: Optional[int] = None) -> Dict[str, Any]:
        now = utcnow()
        if year is None:
            year = now.year
        if month is None:
            month = now.month
        if not 1 <= month <= 12:
            raise ValidationError("Month must be between 1 and 12")
        if not 1 <= year <= 9999:
            raise ValidationError("Invalid year")

        last_day = calendar.monthrange(year, month)[1]
        start = datetime(year, month, 1)
        end = datetime(year, month, last_day, 23, 59, 59, 999000)
        orders = self.orders.by_date_range(start, end)
        summary = summarize(orders)
        return {
            "month": month,
            "year": year,
            "totalOrders": summary["total"],
            "totalRevenue": summary["totalRevenue"],
            "ordersByStatus": {status: summary[status] for status in ORDER_STATUSES},
            "orders": orders,
        }
