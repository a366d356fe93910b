"""
Delivery Partner Model - Couriers
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Boolean, Float, Integer, DateTime

from dispatch_engine.db.database import Base


def generate_id() -> str:
    return str(uuid.uuid4())


class DeliveryPartner(Base):
    """Courier account. Never deleted, only deactivated.

    Whether the partner is busy is not stored here; it is derived from the
    orders table at dispatch time.
    """

    __tablename__ = "delivery_partners"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(100), nullable=True)
    phone = Column(String(20), nullable=True)
    vehicle_type = Column(String(30), nullable=False, default="bike")

    is_active = Column(Boolean, nullable=False, default=True)
    is_online = Column(Boolean, nullable=False, default=False, index=True)

    # Last reported position; NULL until the courier shares location
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    location_updated_at = Column(DateTime, nullable=True)

    rating = Column(Float, nullable=True)
    total_deliveries = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def has_location(self) -> bool:
        return self.current_lat is not None and self.current_lng is not None
