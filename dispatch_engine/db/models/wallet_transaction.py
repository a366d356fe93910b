"""
Wallet Transaction Model - Immutable Transaction History
"""
import enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, ForeignKey, Enum as SQLEnum, UniqueConstraint,
)

from dispatch_engine.db.database import Base


class TransactionKind(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class WalletTransaction(Base):
    """Append-only wallet mutation record.

    sum(credit amounts) - sum(debit amounts) == wallet.balance
    """

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=True)

    amount = Column(Numeric(10, 2), nullable=False)
    kind = Column(
        SQLEnum(TransactionKind, name="transaction_kind", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    description = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # One settlement credit per (wallet, order)
    __table_args__ = (
        UniqueConstraint("wallet_id", "order_id", "kind", name="uq_wallet_order_kind"),
    )
