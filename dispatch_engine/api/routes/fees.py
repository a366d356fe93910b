"""
Fee API Routes
"""
from typing import Optional

from fastapi import APIRouter, Query

from dispatch_engine.api.schemas import CamelModel
from dispatch_engine.core.config import settings
from dispatch_engine.db.models.order import OrderType
from dispatch_engine.domain.fees import calculate_fees

router = APIRouter()


class FeeQuoteResponse(CamelModel):
    subtotal: float
    delivery_fee: float
    platform_fee: float
    total_amount: float
    commission_amount: float
    partner_payout: float
    platform_earnings: float


@router.get(
    "/quote",
    response_model=FeeQuoteResponse,
    summary="Quote the fee breakdown for a subtotal",
    description="Pure calculation; nothing is stored.",
)
async def quote_fees(
    subtotal: float = Query(gt=0, le=1_000_000),
    commission_percent: Optional[float] = Query(default=None, ge=0, le=100),
    order_type: OrderType = OrderType.DELIVERY,
):
    if commission_percent is None:
        commission_percent = settings.DEFAULT_COMMISSION_PERCENT
    breakdown = calculate_fees(subtotal, commission_percent, order_type)
    return FeeQuoteResponse(**{k: float(v) for k, v in breakdown.to_dict().items()})
