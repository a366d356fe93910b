"""
Shop Model - read by the fee calculator caller and the dispatcher
"""
from decimal import Decimal
from datetime import datetime
from sqlalchemy import Column, String, Boolean, Float, Numeric, DateTime

from dispatch_engine.db.database import Base
from dispatch_engine.db.models.partner import generate_id


class Shop(Base):
    """Shop location and commission terms"""

    __tablename__ = "shops"

    id = Column(String(36), primary_key=True, default=generate_id)
    owner_id = Column(String(36), nullable=True)
    name = Column(String(150), nullable=False)
    address = Column(String(500), nullable=True)

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    commission_percent = Column(Numeric(5, 2), nullable=False, default=Decimal("15.00"))

    is_active = Column(Boolean, nullable=False, default=True)
    delivery_enabled = Column(Boolean, nullable=False, default=True)
    pickup_enabled = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None
