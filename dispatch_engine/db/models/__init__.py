"""
Database Models
"""
from dispatch_engine.db.models.partner import DeliveryPartner
from dispatch_engine.db.models.shop import Shop
from dispatch_engine.db.models.order import Order
from dispatch_engine.db.models.order_status_log import OrderStatusLog
from dispatch_engine.db.models.wallet import Wallet
from dispatch_engine.db.models.wallet_transaction import WalletTransaction

__all__ = [
    "DeliveryPartner",
    "Shop",
    "Order",
    "OrderStatusLog",
    "Wallet",
    "WalletTransaction",
]
