"""
API Routes
"""
from fastapi import APIRouter

from dispatch_engine.api.routes.orders import router as orders_router
from dispatch_engine.api.routes.fees import router as fees_router
from dispatch_engine.api.routes.partners import router as partners_router
from dispatch_engine.api.routes.wallets import router as wallets_router

router = APIRouter()

router.include_router(orders_router, prefix="/orders", tags=["Orders"])
router.include_router(fees_router, prefix="/fees", tags=["Fees"])
router.include_router(partners_router, prefix="/partners", tags=["Partners"])
router.include_router(wallets_router, prefix="/wallets", tags=["Wallets"])
