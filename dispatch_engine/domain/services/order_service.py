"""
Order Service - Order creation and status transitions
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch_engine.core.exceptions import (
    InvalidStateTransitionError,
    NotFoundException,
    OrderNotFoundError,
    ValidationException,
)
from dispatch_engine.core.locks import LockManager, get_lock_manager, order_lock_key
from dispatch_engine.core.logging import get_logger
from dispatch_engine.db.models.order import Order, OrderStatus, OrderType, PaymentMethod
from dispatch_engine.db.models.order_status_log import OrderStatusLog
from dispatch_engine.db.models.shop import Shop
from dispatch_engine.domain.fees import Number, calculate_fees, to_decimal
from dispatch_engine.domain.order_state_machine import (
    STATUS_LABELS,
    STATUS_TIMESTAMP_FIELDS,
    can_transition,
)

logger = get_logger(__name__)

# a delivery order leaves the shop only in a partner's hands
PARTNER_REQUIRED_STATUSES = frozenset({OrderStatus.PICKED_UP, OrderStatus.DELIVERED})


class OrderService:
    """Service for managing orders"""

    def __init__(self, db: AsyncSession, lock_manager: LockManager | None = None):
        self.db = db
        self.locks = lock_manager or get_lock_manager()

    async def create_order(
        self,
        shop_id: str,
        customer_id: str,
        subtotal: Number,
        order_type: OrderType = OrderType.DELIVERY,
        payment_method: PaymentMethod = PaymentMethod.COD,
        delivery_address: Optional[str] = None,
        delivery_instructions: Optional[str] = None,
    ) -> Order:
        """
        Create an order in status 'placed' with its fee snapshot.

        The breakdown is computed once, here, with the shop's commission
        percent; later policy changes do not touch existing orders.
        """
        subtotal = to_decimal(subtotal)
        if subtotal <= 0:
            raise ValidationException("subtotal must be positive", field="subtotal")
        order_type = OrderType(order_type)

        shop = await self.db.get(Shop, shop_id)
        if shop is None or not shop.is_active:
            raise NotFoundException("Shop", shop_id)
        if order_type == OrderType.DELIVERY and not shop.delivery_enabled:
            raise ValidationException("Shop does not offer delivery", field="order_type")
        if order_type == OrderType.PICKUP and not shop.pickup_enabled:
            raise ValidationException("Shop does not offer pickup", field="order_type")
        if order_type == OrderType.DELIVERY and not delivery_address:
            raise ValidationException("Delivery address is required", field="delivery_address")

        fees = calculate_fees(subtotal, shop.commission_percent, order_type)

        order = Order(
            shop_id=shop.id,
            customer_id=customer_id,
            status=OrderStatus.PLACED,
            type=order_type,
            payment_method=PaymentMethod(payment_method),
            delivery_address=delivery_address,
            delivery_instructions=delivery_instructions,
            **fees.to_dict(),
        )
        self.db.add(order)
        await self.db.flush()  # Get order ID

        self.db.add(OrderStatusLog(
            order_id=order.id,
            status=OrderStatus.PLACED.value,
            message=STATUS_LABELS[OrderStatus.PLACED],
        ))
        await self.db.commit()
        await self.db.refresh(order)

        logger.info(
            "Order created",
            extra_data={
                "order_id": order.id,
                "order_number": order.order_number,
                "shop_id": shop.id,
                "order_type": order_type.value,
                "total_amount": str(order.total_amount),
            }
        )
        return order

    async def transition_status(
        self,
        order_id: str,
        target: OrderStatus,
        message: Optional[str] = None,
    ) -> Order:
        """
        Move an order to ``target`` if the state machine allows it.

        Runs under the same per-order critical section as dispatch, so a
        status change never interleaves with an assignment of that order.
        """
        target = OrderStatus(target)

        async with self.locks.hold(order_lock_key(order_id)):
            result = await self.db.execute(
                select(Order).where(Order.id == order_id).with_for_update()
            )
            order = result.scalar_one_or_none()
            if order is None:
                raise OrderNotFoundError(order_id)

            current = order.status
            if not can_transition(current, target):
                raise InvalidStateTransitionError(order_id, current.value, target.value)
            if (
                target in PARTNER_REQUIRED_STATUSES
                and order.type == OrderType.DELIVERY
                and order.delivery_partner_id is None
            ):
                raise InvalidStateTransitionError(
                    order_id, current.value, target.value,
                    reason="no delivery partner assigned",
                )

            order.status = target
            timestamp_field = STATUS_TIMESTAMP_FIELDS.get(target)
            if timestamp_field:
                setattr(order, timestamp_field, datetime.utcnow())

            self.db.add(OrderStatusLog(
                order_id=order.id,
                status=target.value,
                message=message or STATUS_LABELS[target],
                details={"from": current.value},
            ))
            await self.db.commit()
            await self.db.refresh(order)

        logger.info(
            "Order status changed",
            extra_data={
                "order_id": order_id,
                "from_status": current.value,
                "to_status": target.value,
                "partner_id": order.delivery_partner_id,
            }
        )
        return order

    async def get_order(self, order_id: str) -> Order:
        result = await self.db.execute(select(Order).where(Order.id == order_id))
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def get_status_log(self, order_id: str) -> List[OrderStatusLog]:
        """Audit trail, oldest first"""
        await self.get_order(order_id)
        result = await self.db.execute(
            select(OrderStatusLog)
            .where(OrderStatusLog.order_id == order_id)
            .order_by(OrderStatusLog.created_at, OrderStatusLog.id)
        )
        return list(result.scalars().all())
