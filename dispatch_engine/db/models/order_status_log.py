"""
Order Status Log Model - append-only audit trail per order
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.types import JSON

from dispatch_engine.db.database import Base


# Log entry written by the dispatcher; not an OrderStatus value
ASSIGNED_LOG_STATUS = "assigned"


class OrderStatusLog(Base):
    """Immutable record of status changes and dispatch decisions"""

    __tablename__ = "order_status_log"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    message = Column(String(500), nullable=True)
    # e.g. {"partner_id": ..., "distance_km": 1.4}
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
