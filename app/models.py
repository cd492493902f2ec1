"""
Domain records: orders, line items, notifications and the acting principal.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class OrderStatus(str, Enum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    PREPARED = "Prepared"
    OUT_FOR_DELIVERY = "OutForDelivery"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class Role(str, Enum):
    CUSTOMER = "user"
    RESTAURANT = "restaurant"
    COURIER = "deliveryman"
    MARKETING = "marketing"


class Principal(BaseModel):
    """Acting user as resolved by the auth layer. Trusted as given."""
    model_config = ConfigDict(frozen=True)

    id: str
    role: Role
    restaurant_id: str | None = None


class LineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    unit_price: Decimal = Field(..., ge=0)


class Order(BaseModel):
    id: str = Field(default_factory=new_id)
    customer_id: str
    restaurant_id: str
    courier_id: str | None = None
    status: OrderStatus = OrderStatus.PENDING
    ordered_at: datetime = Field(default_factory=utcnow)
    delivered_at: datetime | None = None
    line_items: tuple[LineItem, ...]
    total_price: Decimal

    @classmethod
    def place(cls, customer_id: str, restaurant_id: str, line_items: list[LineItem]) -> "Order":
        """New Pending order; total is fixed from the line items here and never recomputed."""
        items = tuple(line_items)
        return cls(
            customer_id=customer_id,
            restaurant_id=restaurant_id,
            line_items=items,
            total_price=sum((item.unit_price for item in items), Decimal("0")),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


class OrderFilter(BaseModel):
    """Selection used by listings and aggregate snapshots. None fields match everything."""
    model_config = ConfigDict(frozen=True)

    customer_id: str | None = None
    restaurant_id: str | None = None
    courier_id: str | None = None
    statuses: tuple[OrderStatus, ...] | None = None

    def matches(self, order: Order) -> bool:
        if self.customer_id is not None and order.customer_id != self.customer_id:
            return False
        if self.restaurant_id is not None and order.restaurant_id != self.restaurant_id:
            return False
        if self.courier_id is not None and order.courier_id != self.courier_id:
            return False
        if self.statuses is not None and order.status not in self.statuses:
            return False
        return True


class DailySummary(BaseModel):
    day: str  # YYYY-MM-DD
    count: int
    total_price: Decimal


class Notification(BaseModel):
    id: str = Field(default_factory=new_id)
    recipient_id: str
    message: str
    created_at: datetime = Field(default_factory=utcnow)
    seen_at: datetime | None = None
