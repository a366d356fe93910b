"""
Wallet Model - Partner Balance Tracking
"""
from decimal import Decimal
from datetime import datetime
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from dispatch_engine.db.database import Base


class Wallet(Base):
    """Current balance and lifetime earnings per delivery partner.

    Provisioned together with the partner account. Both amounts move in
    the same UPDATE; total_earned never decreases and stays >= balance.
    """

    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, index=True)
    partner_id = Column(String(36), ForeignKey("delivery_partners.id"), unique=True, nullable=False)

    balance = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    total_earned = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    partner = relationship("DeliveryPartner")
