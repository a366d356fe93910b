"""
Dispatch Service - Nearest Available Partner Assignment

Assigns the nearest available delivery partner to an accepted order.

Occupancy is derived from order state, so "find a free partner, then write
the assignment" is a check-then-act race between concurrent dispatches. It
is closed by:
1. a per-order critical section, so one order is dispatched once
2. a per-partner critical section around re-verify + write + commit, so a
   partner that was free when listed is checked again before it is taken
3. a conditional UPDATE (only if the order is still unassigned and
   dispatchable) and a partial unique index on active orders per partner

Locks are always taken order -> partner.
"""
import asyncio
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch_engine.core.config import settings
from dispatch_engine.core.exceptions import (
    OrderNotDispatchableError,
    OrderNotFoundError,
    OrderStatusError,
    StoreTimeoutError,
    StoreUnavailableError,
    ValidationException,
)
from dispatch_engine.core.locks import LockManager, get_lock_manager, order_lock_key, partner_lock_key
from dispatch_engine.core.logging import get_logger, log_async_operation
from dispatch_engine.db.models.order import Order, OrderType, DISPATCHABLE_ORDER_STATUSES
from dispatch_engine.db.models.order_status_log import OrderStatusLog, ASSIGNED_LOG_STATUS
from dispatch_engine.db.models.shop import Shop
from dispatch_engine.domain.geo import Coordinate, distance_km
from dispatch_engine.domain.services.partner_directory_service import (
    AvailablePartner,
    PartnerDirectoryService,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class RankedCandidate:
    partner_id: str
    distance_km: float


@dataclass(frozen=True)
class AssignmentResult:
    partner_id: Optional[str]
    distance_km: Optional[float] = None
    already_assigned: bool = False

    @property
    def assigned(self) -> bool:
        return self.partner_id is not None

    @classmethod
    def no_partner(cls) -> "AssignmentResult":
        return cls(partner_id=None)


def rank_candidates(origin: Coordinate, candidates: List[AvailablePartner]) -> List[RankedCandidate]:
    """Nearest first; equal distances go to the lowest partner id"""
    ranked = [
        RankedCandidate(partner_id=c.partner_id, distance_km=distance_km(origin, c.location))
        for c in candidates
    ]
    ranked.sort(key=lambda r: (r.distance_km, r.partner_id))
    return ranked


class DispatchService:
    """
    Service for atomic partner assignment.

    assign() returns AssignmentResult.no_partner() when nobody is free; that
    is a normal outcome and the order is left untouched for a later retry.
    Store failures and timeouts raise TransientStoreError subclasses.
    """

    def __init__(self, db: AsyncSession, lock_manager: LockManager | None = None):
        self.db = db
        self.directory = PartnerDirectoryService(db)
        self.locks = lock_manager or get_lock_manager()

    @log_async_operation("dispatch.assign", context_keys=("order_id",))
    async def assign(
        self,
        order_id: str,
        shop_location: Optional[Coordinate] = None,
    ) -> AssignmentResult:
        """
        Assign the nearest available partner to an order.

        Args:
            order_id: order to dispatch; must be a delivery order in
                accepted/preparing/ready
            shop_location: pickup point; defaults to the order's shop

        Returns:
            AssignmentResult - partner_id is None when nobody is available
        """
        if not order_id or not order_id.strip():
            raise ValidationException("order_id is required", field="order_id")

        timeout = settings.STORE_TIMEOUT_SECONDS
        try:
            return await asyncio.wait_for(
                self._assign(order_id, shop_location),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            await self._rollback_quietly()
            raise StoreTimeoutError("assign", timeout) from None
        except SQLAlchemyError as e:
            await self._rollback_quietly()
            raise StoreUnavailableError("assign", str(e)) from e

    async def _assign(self, order_id: str, shop_location: Optional[Coordinate]) -> AssignmentResult:
        async with self.locks.hold(order_lock_key(order_id)):
            order = await self._get_order(order_id)

            # assignment is permanent; repeat calls report the existing one
            if order.delivery_partner_id:
                logger.info(
                    "Order already has a delivery partner",
                    extra_data={"order_id": order_id, "partner_id": order.delivery_partner_id}
                )
                return AssignmentResult(partner_id=order.delivery_partner_id, already_assigned=True)

            self._ensure_dispatchable(order)
            origin = shop_location or await self._shop_location(order)

            candidates = await self.directory.list_available()
            if not candidates:
                logger.info("No delivery partner available", extra_data={"order_id": order_id})
                return AssignmentResult.no_partner()

            for candidate in rank_candidates(origin, candidates):
                result = await self._try_assign(order_id, candidate)
                if result is not None:
                    return result

            logger.warning(
                "Every candidate was taken by a concurrent dispatch",
                extra_data={"order_id": order_id, "candidates": len(candidates)}
            )
            return AssignmentResult.no_partner()

    async def _try_assign(self, order_id: str, candidate: RankedCandidate) -> Optional[AssignmentResult]:
        """Take ``candidate`` for the order if it is still free.

        Returns None to move on to the next candidate.
        """
        async with self.locks.hold(partner_lock_key(candidate.partner_id)):
            if not await self.directory.is_available(candidate.partner_id, for_update=True):
                logger.info(
                    "Candidate no longer available",
                    extra_data={"order_id": order_id, "partner_id": candidate.partner_id}
                )
                return None

            try:
                result = await self.db.execute(
                    update(Order)
                    .where(
                        Order.id == order_id,
                        Order.delivery_partner_id.is_(None),
                        Order.status.in_(DISPATCHABLE_ORDER_STATUSES),
                    )
                    .values(delivery_partner_id=candidate.partner_id)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    await self.db.rollback()
                    return await self._resolve_lost_update(order_id)

                self.db.add(OrderStatusLog(
                    order_id=order_id,
                    status=ASSIGNED_LOG_STATUS,
                    message=f"Delivery partner assigned ({candidate.distance_km:.1f} km away)",
                    details={
                        "partner_id": candidate.partner_id,
                        "distance_km": round(candidate.distance_km, 3),
                    },
                ))
                await self.db.commit()
            except IntegrityError:
                # partial unique index: partner got an active order elsewhere
                await self.db.rollback()
                logger.warning(
                    "Partner already holds an active order",
                    extra_data={"order_id": order_id, "partner_id": candidate.partner_id}
                )
                return None

        # bulk UPDATE bypassed the identity map
        await self.db.get(Order, order_id, populate_existing=True)
        logger.info(
            "Delivery partner assigned",
            extra_data={
                "order_id": order_id,
                "partner_id": candidate.partner_id,
                "distance_km": round(candidate.distance_km, 3),
            }
        )
        return AssignmentResult(partner_id=candidate.partner_id, distance_km=candidate.distance_km)

    async def _resolve_lost_update(self, order_id: str) -> AssignmentResult:
        """The conditional UPDATE matched nothing: the order changed under us"""
        order = await self._get_order(order_id)
        await self.db.refresh(order)
        if order.delivery_partner_id:
            return AssignmentResult(partner_id=order.delivery_partner_id, already_assigned=True)
        raise OrderStatusError(
            order_id,
            order.status.value,
            [s.value for s in DISPATCHABLE_ORDER_STATUSES],
        )

    async def _get_order(self, order_id: str) -> Order:
        result = await self.db.execute(select(Order).where(Order.id == order_id))
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    @staticmethod
    def _ensure_dispatchable(order: Order) -> None:
        if order.type != OrderType.DELIVERY:
            raise OrderNotDispatchableError(order.id, order.type.value)
        if order.status not in DISPATCHABLE_ORDER_STATUSES:
            raise OrderStatusError(
                order.id,
                order.status.value,
                [s.value for s in DISPATCHABLE_ORDER_STATUSES],
            )

    async def _shop_location(self, order: Order) -> Coordinate:
        shop = await self.db.get(Shop, order.shop_id)
        if shop is None or not shop.has_location:
            raise ValidationException(
                "Shop location is required to dispatch this order",
                field="shop_location",
                details={"order_id": order.id, "shop_id": order.shop_id},
            )
        return Coordinate(shop.latitude, shop.longitude)

    async def _rollback_quietly(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError as e:
            logger.warning("Rollback after dispatch failure failed", extra_data={"error": str(e)})
