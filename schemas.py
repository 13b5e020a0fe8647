"""
Database Schemas

Each Pydantic model represents a collection in MongoDB. The collection name is
the lowercase of the class name (e.g., Product -> "product", CartItem ->
"cartitem"). Order items are embedded in their order document.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
DELIVERY_STATUSES = ("pending", "confirmed", "processing", "out_for_delivery", "delivered", "cancelled")

CENTS = Decimal("0.01")


def to_money(value: Union[str, int, float, Decimal]) -> Decimal:
    """Parse a price-like value into a two decimal place Decimal."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def format_money(amount: Decimal) -> str:
    return str(amount.quantize(CENTS, rounding=ROUND_HALF_UP))


def is_admin_flag(value) -> bool:
    """isAdmin is persisted as a string; tolerate booleans and odd casing."""
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


class User(BaseModel):
    """
    Users collection schema
    Collection: "user"
    """
    email: str = Field(..., description="Lowercased, trimmed email address")
    username: str = Field(..., description="Display name")
    password: Optional[str] = Field(None, description="bcrypt hash; absent for OAuth-only accounts")
    googleId: Optional[str] = Field(None, description="Google subject id once linked")
    isAdmin: str = Field("false", description="'true' or 'false'")
    resetToken: Optional[str] = None
    resetTokenExpiry: Optional[datetime] = None
    failedLoginAttempts: int = Field(0, ge=0)
    accountLockedUntil: Optional[datetime] = None
    lastLoginAt: Optional[datetime] = None


class Category(BaseModel):
    """
    Categories collection schema
    Collection: "category"
    """
    name: str
    description: str = ""
    image: Optional[str] = None
    productCount: int = Field(0, ge=0)


class Product(BaseModel):
    """
    Products collection schema
    Collection: "product"
    """
    name: str
    brand: str = ""
    description: str = ""
    price: str = Field(..., description="Unit price, two decimal places")
    image: Optional[str] = None
    categoryId: Optional[str] = None
    rating: int = Field(5, ge=0, le=5)
    stock: int = Field(0, ge=0)

    @field_validator("price", mode="before")
    @classmethod
    def normalize_price(cls, v):
        amount = to_money(v)
        if amount < 0:
            raise ValueError("Price must not be negative")
        return format_money(amount)


class CartItem(BaseModel):
    """
    Cart lines, one per (owner, product)
    Collection: "cartitem"
    """
    ownerKind: Literal["session", "user"]
    ownerId: str
    productId: str
    quantity: int = Field(..., ge=1)


class OrderItem(BaseModel):
    """Embedded in Order.items; price is the unit price at purchase time."""
    id: str
    orderId: str
    productId: str
    quantity: int = Field(..., ge=1)
    price: str


class Order(BaseModel):
    """
    Orders collection schema
    Collection: "order"
    """
    userId: Optional[str] = None
    email: str
    name: str
    address: str
    city: str
    postalCode: str
    country: str
    phone: Optional[str] = None
    total: str
    status: str = "pending"
    deliveryStatus: str = "pending"
    trackingNumber: Optional[str] = None
    estimatedDeliveryDate: Optional[datetime] = None
    deliveryNotes: Optional[str] = None
    stripePaymentId: Optional[str] = None
    items: List[OrderItem] = Field(default_factory=list)
