"""
Domain Services
"""
from dispatch_engine.domain.services.partner_directory_service import PartnerDirectoryService
from dispatch_engine.domain.services.dispatch_service import DispatchService
from dispatch_engine.domain.services.ledger_service import LedgerService
from dispatch_engine.domain.services.order_service import OrderService

__all__ = [
    "PartnerDirectoryService",
    "DispatchService",
    "LedgerService",
    "OrderService",
]
