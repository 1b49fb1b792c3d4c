"""
Pydantic Schemas for Request/Response Validation

Covers:
- Cart checkout (order + line items)
- Lifecycle patches (state, courier, estimated time)
- Notification inbox
- Sessions and dashboard stats

Version: 1.0.0
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from order_tracker.models import (
    DeliveryState,
    DeliveryType,
    NotificationCategory,
    OrderState,
    Role,
)


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderItemCreate(BaseModel):
    """Single cart line. Exactly one of menu_item_id / product_id."""
    menu_item_id: Optional[int] = Field(None, ge=1)
    product_id: Optional[int] = Field(None, ge=1)
    name: str = Field(..., min_length=1, max_length=100, examples=["Pizza Margherita"])
    quantity: int = Field(..., ge=1, le=99, examples=[2])
    unit_price: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2, examples=["12.50"])
    notes: Optional[str] = Field(None, max_length=200)

    @model_validator(mode="after")
    def check_reference(self) -> "OrderItemCreate":
        if (self.menu_item_id is None) == (self.product_id is None):
            raise ValueError("Each item must reference exactly one of menu_item_id or product_id")
        return self

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class OrderCreate(BaseModel):
    """Request schema for placing an order from the cart."""

    delivery_type: DeliveryType = Field(..., examples=["Delivery"])

    # Address
    street: str = Field(..., min_length=1, max_length=255)
    residence: str = Field(..., min_length=1, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    municipality: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=500)

    # Contact
    contact_name: str = Field(..., min_length=2, max_length=100, examples=["Ana Pérez"])
    contact_phone: str = Field(..., min_length=7, max_length=20, examples=["+58-424-1234567"])

    # Payment (tag only, nothing is charged)
    payment_method: str = Field(..., min_length=1, max_length=50, examples=["cash", "card"])

    items: List[OrderItemCreate] = Field(..., min_length=1)

    @field_validator("street", "residence", "contact_name", "contact_phone", "payment_method")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Field must not be blank")
        return v.strip()


class OrderPatch(BaseModel):
    """
    Partial lifecycle update.

    ``courier_id`` is recognised whenever it is present in the body, so an
    explicit null unassigns the courier. The other fields are ignored when
    null. ``expected_version`` and ``force`` are control fields, not changes.
    """
    order_state: Optional[OrderState] = None
    delivery_state: Optional[DeliveryState] = None
    courier_id: Optional[int] = Field(None, ge=1)
    estimated_time: Optional[str] = Field(None, min_length=1, max_length=50)
    expected_version: Optional[int] = Field(None, ge=1)
    force: bool = False

    def changes(self) -> dict[str, Any]:
        """Recognised fields present in the patch."""
        changes: dict[str, Any] = {}
        if self.order_state is not None:
            changes["order_state"] = self.order_state
        if self.delivery_state is not None:
            changes["delivery_state"] = self.delivery_state
        if "courier_id" in self.model_fields_set:
            changes["courier_id"] = self.courier_id
        if self.estimated_time is not None:
            changes["estimated_time"] = self.estimated_time
        return changes


class CourierUpdate(BaseModel):
    """Availability flags used for staffing stats."""
    is_available: Optional[bool] = None
    is_on_duty: Optional[bool] = None


class CourierLocation(BaseModel):
    """Location ping sent by a courier over the socket."""
    order_id: int = Field(..., ge=1)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    heading: Optional[float] = None


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderItemResponse(BaseModel):
    """Frozen line item."""
    id: int
    menu_item_id: Optional[int]
    product_id: Optional[int]
    name: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal
    notes: Optional[str]

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """Response schema for a single order, with joined display fields."""
    id: int
    order_number: str
    customer_id: Optional[int]
    customer_name: Optional[str]
    contact_name: str
    contact_phone: str
    delivery_type: DeliveryType
    street: str
    residence: str
    city: Optional[str]
    municipality: Optional[str]
    description: Optional[str]
    payment_method: str
    total: Decimal
    order_state: OrderState
    delivery_state: DeliveryState
    courier_id: Optional[int]
    courier_name: Optional[str]
    courier_phone: Optional[str]
    estimated_time: Optional[str]
    version: int
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    delivered_at: Optional[datetime]
    items: List[OrderItemResponse] = []

    class Config:
        from_attributes = True


class OrderCreateResponse(BaseModel):
    """Response after successfully placing an order."""
    success: bool = True
    message: str
    order: OrderResponse


class OrderUpdateResponse(BaseModel):
    success: bool = True
    message: str
    order: OrderResponse


class OrderListResponse(BaseModel):
    """Response for listing multiple orders."""
    total: int
    orders: List[OrderResponse]


class CourierResponse(BaseModel):
    id: int
    user_id: Optional[int]
    first_name: str
    last_name: str
    full_name: str
    phone: Optional[str]
    is_available: bool
    is_on_duty: bool

    class Config:
        from_attributes = True


class NotificationResponse(BaseModel):
    """Inbox entry."""
    id: int
    category: NotificationCategory
    title: str
    message: str
    order_id: Optional[int]
    is_read: bool
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class NotificationListResponse(BaseModel):
    unread: int
    notifications: List[NotificationResponse]


class SessionResponse(BaseModel):
    id: int
    name: str
    role: Role


class LoginResponse(BaseModel):
    success: bool = True
    token: str
    user: SessionResponse


class DashboardStats(BaseModel):
    """Aggregates shown on the admin dashboard and pushed as stats:update."""
    orders_today: int
    pending_orders: int
    en_route_orders: int
    delivered_today: int
    sales_today: Decimal
    active_couriers: int
    available_couriers: int


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    realtime: str
    timestamp: datetime
