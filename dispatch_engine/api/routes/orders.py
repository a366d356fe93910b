"""
Order API Routes - creation, status, dispatch and settlement
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch_engine.api.schemas import CamelModel
from dispatch_engine.core.exceptions import ValidationException
from dispatch_engine.core.logging import get_logger
from dispatch_engine.db.database import get_db
from dispatch_engine.db.models.order import OrderStatus, OrderType, PaymentMethod
from dispatch_engine.domain.geo import Coordinate
from dispatch_engine.domain.services.dispatch_service import DispatchService
from dispatch_engine.domain.services.ledger_service import LedgerService
from dispatch_engine.domain.services.order_service import OrderService

logger = get_logger(__name__)

router = APIRouter()


def _require_text(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("must not be blank")
    return v


class OrderCreate(CamelModel):
    shop_id: str
    customer_id: str
    subtotal: float = Field(gt=0, le=1_000_000)
    order_type: OrderType = OrderType.DELIVERY
    payment_method: PaymentMethod = PaymentMethod.COD
    delivery_address: Optional[str] = Field(default=None, max_length=500)
    delivery_instructions: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("shop_id", "customer_id")
    @classmethod
    def validate_ids(cls, v: str) -> str:
        return _require_text(v)


class OrderResponse(CamelModel):
    id: str
    order_number: str
    shop_id: str
    customer_id: str
    delivery_partner_id: Optional[str]
    status: OrderStatus
    type: OrderType
    payment_method: PaymentMethod
    subtotal: float
    delivery_fee: float
    platform_fee: float
    total_amount: float
    commission_amount: float
    partner_payout: float
    platform_earnings: float
    delivery_address: Optional[str]
    created_at: Optional[datetime]
    accepted_at: Optional[datetime]
    picked_up_at: Optional[datetime]
    delivered_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    settled_at: Optional[datetime]


class StatusUpdate(CamelModel):
    status: OrderStatus
    message: Optional[str] = Field(default=None, max_length=500)


class StatusLogEntry(CamelModel):
    id: int
    status: str
    message: Optional[str]
    details: Optional[dict]
    created_at: Optional[datetime]


class AssignRequest(CamelModel):
    order_id: str
    shop_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    shop_lng: Optional[float] = Field(default=None, ge=-180, le=180)


class AssignResponse(CamelModel):
    partner_id: Optional[str]
    assigned: bool
    distance_km: Optional[float]
    already_assigned: bool


class CompleteRequest(CamelModel):
    order_id: str
    partner_id: str


class CompleteResponse(CamelModel):
    success: bool
    amount: float
    already_settled: bool


@router.post(
    "",
    response_model=OrderResponse,
    status_code=201,
    summary="Create an order",
    description="Creates an order in status 'placed' with the fee breakdown snapshotted.",
)
async def create_order(
    order_data: OrderCreate,
    db: AsyncSession = Depends(get_db)
):
    logger.info(
        "Creating new order",
        extra_data={"shop_id": order_data.shop_id, "order_type": order_data.order_type.value}
    )
    service = OrderService(db)
    order = await service.create_order(**order_data.model_dump())
    return order


@router.post(
    "/assign",
    response_model=AssignResponse,
    summary="Assign the nearest available delivery partner",
    description=(
        "Assigns the nearest available partner to an accepted delivery order. "
        "Shop coordinates default to the order's shop. "
        "assigned=false means nobody is available right now; retry later."
    ),
    responses={
        400: {"description": "Missing order id or no shop location"},
        404: {"description": "Order not found"},
        409: {"description": "Order is not dispatchable"},
        503: {"description": "Data store unavailable; safe to retry"},
    },
)
async def assign_order(
    request: AssignRequest,
    db: AsyncSession = Depends(get_db)
):
    if (request.shop_lat is None) != (request.shop_lng is None):
        raise ValidationException("shopLat and shopLng must be given together", field="shopLat")

    shop_location = None
    if request.shop_lat is not None:
        shop_location = Coordinate(request.shop_lat, request.shop_lng)

    service = DispatchService(db)
    result = await service.assign(order_id=request.order_id, shop_location=shop_location)
    return AssignResponse(
        partner_id=result.partner_id,
        assigned=result.assigned,
        distance_km=round(result.distance_km, 3) if result.distance_km is not None else None,
        already_assigned=result.already_assigned,
    )


@router.post(
    "/complete",
    response_model=CompleteResponse,
    summary="Settle a delivered order",
    description=(
        "Credits the partner's wallet with the order's payout. "
        "Calling it again for the same order returns alreadySettled=true."
    ),
    responses={
        404: {"description": "Order not found"},
        409: {"description": "Order not delivered or not assigned to this partner"},
        500: {"description": "Partner wallet missing"},
        503: {"description": "Data store unavailable; safe to retry"},
    },
)
async def complete_order(
    request: CompleteRequest,
    db: AsyncSession = Depends(get_db)
):
    service = LedgerService(db)
    result = await service.settle_order(order_id=request.order_id, partner_id=request.partner_id)
    return CompleteResponse(
        success=result.success,
        amount=float(result.amount),
        already_settled=result.already_settled,
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order by ID",
    responses={404: {"description": "Order not found"}},
)
async def get_order(
    order_id: str,
    db: AsyncSession = Depends(get_db)
):
    service = OrderService(db)
    return await service.get_order(order_id)


@router.post(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Change order status",
    responses={
        404: {"description": "Order not found"},
        409: {"description": "Transition not allowed"},
    },
)
async def update_status(
    order_id: str,
    update: StatusUpdate,
    db: AsyncSession = Depends(get_db)
):
    service = OrderService(db)
    return await service.transition_status(order_id, update.status, message=update.message)


@router.get(
    "/{order_id}/status-log",
    response_model=List[StatusLogEntry],
    summary="Order audit trail",
)
async def get_status_log(
    order_id: str,
    db: AsyncSession = Depends(get_db)
):
    service = OrderService(db)
    return await service.get_status_log(order_id)
