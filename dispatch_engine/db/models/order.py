"""
Order Model - status, assignment and fee snapshot
"""
import enum
import secrets
from decimal import Decimal
from datetime import datetime
from sqlalchemy import (
    Column, String, DateTime, Enum as SQLEnum, Numeric, ForeignKey, Text, Index, text,
)
from sqlalchemy.orm import relationship

from dispatch_engine.db.database import Base
from dispatch_engine.db.models.partner import generate_id


def generate_order_number() -> str:
    """Short human-facing order number, e.g. ORD-3F9A1C2B"""
    return f"ORD-{secrets.token_hex(4).upper()}"


class OrderStatus(str, enum.Enum):
    PLACED = "placed"
    ACCEPTED = "accepted"
    PREPARING = "preparing"
    READY = "ready"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class OrderType(str, enum.Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"


class PaymentMethod(str, enum.Enum):
    COD = "cod"
    UPI = "upi"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


# A partner assigned to an order in one of these statuses is occupied
ACTIVE_ORDER_STATUSES = (
    OrderStatus.ACCEPTED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.PICKED_UP,
)

# A courier may only be written onto an order in one of these statuses
DISPATCHABLE_ORDER_STATUSES = (
    OrderStatus.ACCEPTED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
)

_ACTIVE_STATUS_PREDICATE = "status IN ({})".format(
    ", ".join(f"'{s.value}'" for s in ACTIVE_ORDER_STATUSES)
)


def _enum_values(enum_cls):
    # store 'picked_up' rather than 'PICKED_UP'
    return [e.value for e in enum_cls]


class Order(Base):
    """Customer order"""

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=generate_id)
    order_number = Column(String(20), unique=True, nullable=False, default=generate_order_number)

    customer_id = Column(String(36), nullable=False, index=True)
    shop_id = Column(String(36), ForeignKey("shops.id"), nullable=False, index=True)
    delivery_partner_id = Column(String(36), ForeignKey("delivery_partners.id"), nullable=True)

    status = Column(
        SQLEnum(OrderStatus, name="order_status", values_callable=_enum_values),
        nullable=False,
        default=OrderStatus.PLACED,
        index=True,
    )
    type = Column(
        SQLEnum(OrderType, name="order_type", values_callable=_enum_values),
        nullable=False,
        default=OrderType.DELIVERY,
    )
    payment_method = Column(
        SQLEnum(PaymentMethod, name="payment_method", values_callable=_enum_values),
        nullable=False,
        default=PaymentMethod.COD,
    )
    payment_status = Column(
        SQLEnum(PaymentStatus, name="payment_status", values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.PENDING,
    )

    # Fee snapshot taken at creation
    subtotal = Column(Numeric(10, 2), nullable=False)
    delivery_fee = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    platform_fee = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    total_amount = Column(Numeric(10, 2), nullable=False)
    commission_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    partner_payout = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    platform_earnings = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))

    delivery_address = Column(String(500), nullable=True)
    delivery_instructions = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    accepted_at = Column(DateTime, nullable=True)
    picked_up_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    settled_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    shop = relationship("Shop")
    delivery_partner = relationship("DeliveryPartner")

    __table_args__ = (
        # At most one active order per partner, enforced by the database as
        # well as by the dispatcher's critical section.
        Index(
            "uq_orders_partner_active",
            "delivery_partner_id",
            unique=True,
            postgresql_where=text(_ACTIVE_STATUS_PREDICATE),
            sqlite_where=text(_ACTIVE_STATUS_PREDICATE),
        ),
    )
