"""
SQLAlchemy Database Models

Orders, their frozen line items, couriers, the durable notification inbox
and the user accounts behind sessions.

Version: 1.0.0
"""

import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from order_tracker.database import Base


class OrderState(str, enum.Enum):
    """Kitchen-side order workflow."""
    ORDERED = "Ordered"
    PREPARING = "Preparing"
    READY_FOR_PICKUP = "ReadyForPickup"
    EN_ROUTE = "EnRoute"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderState.DELIVERED, OrderState.CANCELLED)


class DeliveryState(str, enum.Enum):
    """Progress of the delivery leg, reported by staff."""
    PENDING = "Pending"
    ASSIGNED = "Assigned"
    IN_TRANSIT = "InTransit"
    DELIVERED = "Delivered"
    RETURNED = "Returned"


class DeliveryType(str, enum.Enum):
    """Order type - Delivery or Pickup."""
    DELIVERY = "Delivery"
    PICKUP = "Pickup"


class Role(str, enum.Enum):
    """Session roles. Each one has its own real-time room."""
    ADMINISTRATOR = "Administrator"
    COURIER = "Courier"
    CUSTOMER = "Customer"


class NotificationCategory(str, enum.Enum):
    ORDER = "Order"
    ASSIGNMENT = "Assignment"
    SYSTEM = "System"


def _enum(enum_cls: type[enum.Enum], name: str) -> Enum:
    # Persist the human-readable values ("ReadyForPickup"), not member names
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class User(Base):
    """Login account. Customers, couriers and administrators all live here."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(100), nullable=False)
    role = Column(_enum(Role, "user_role"), nullable=False, default=Role.CUSTOMER)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<User #{self.id} - {self.email} - {self.role.value}>"


class Courier(Base):
    """
    Delivery personnel.

    Referenced (not owned) by orders. ``user_id`` links the courier to the
    login account whose personal room receives assignment events.
    """
    __tablename__ = "couriers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, unique=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False, default="")
    phone = Column(String(20), nullable=True)
    is_available = Column(Boolean, nullable=False, default=True)
    is_on_duty = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self):
        return f"<Courier #{self.id} - {self.full_name}>"


class Order(Base):
    """
    Main Order table.

    ``total`` is frozen at creation time. ``version`` increases by one on
    every successful transition and is the optimistic-concurrency token.
    """
    __tablename__ = "orders"

    # Primary Key
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_number = Column(String(40), nullable=False, unique=True, index=True)

    # =========================================================================
    # CUSTOMER INFORMATION
    # =========================================================================
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    contact_name = Column(String(100), nullable=False)
    contact_phone = Column(String(20), nullable=False)

    # =========================================================================
    # DELIVERY
    # =========================================================================
    delivery_type = Column(
        _enum(DeliveryType, "delivery_type"),
        default=DeliveryType.DELIVERY,
        nullable=False,
        index=True
    )
    street = Column(String(255), nullable=False)
    residence = Column(String(255), nullable=False)
    city = Column(String(100), nullable=True)
    municipality = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)

    # =========================================================================
    # PRICING / PAYMENT
    # =========================================================================
    payment_method = Column(String(50), nullable=False)  # tag only: cash, card, transfer
    total = Column(Numeric(10, 2), nullable=False)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================
    order_state = Column(
        _enum(OrderState, "order_state"),
        default=OrderState.ORDERED,
        nullable=False,
        index=True
    )
    delivery_state = Column(
        _enum(DeliveryState, "delivery_state"),
        default=DeliveryState.PENDING,
        nullable=False
    )
    courier_id = Column(Integer, ForeignKey("couriers.id"), nullable=True, index=True)
    estimated_time = Column(String(50), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    customer = relationship("User")
    courier = relationship("Courier")

    @property
    def customer_name(self):
        return self.customer.name if self.customer else None

    @property
    def courier_name(self):
        return self.courier.full_name if self.courier else None

    @property
    def courier_phone(self):
        return self.courier.phone if self.courier else None

    def __repr__(self):
        return f"<Order {self.order_number} - {self.delivery_type.value} - {self.order_state.value}>"


class OrderItem(Base):
    """
    A line of an order.

    References a menu item or a standalone product. Price and subtotal are
    copies taken at order time, never recomputed from the catalog.
    """
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    menu_item_id = Column(Integer, nullable=True)
    product_id = Column(Integer, nullable=True)
    name = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False)
    notes = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem {self.quantity} x {self.name}>"


class Notification(Base):
    """
    Durable in-app inbox entry.

    Written before any live push goes out; the row is what a client
    re-fetches after reconnecting.
    """
    __tablename__ = "notifications"
    __mapper_args__ = {"eager_defaults": True}  # created_at is read back right after insert

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    category = Column(
        _enum(NotificationCategory, "notification_category"),
        nullable=False,
        default=NotificationCategory.ORDER
    )
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    def __repr__(self):
        return f"<Notification #{self.id} -> user {self.user_id} - {self.title}>"
