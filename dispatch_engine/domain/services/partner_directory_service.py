"""
Partner Directory - which couriers can take an order right now

A partner is available when it is active, online, has a last-known
location, and is not occupied. Occupancy is never stored: it is an
EXISTS over orders in an active status assigned to the partner, evaluated
on every call.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List

from sqlalchemy import select, exists, and_
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch_engine.core.exceptions import PartnerNotFoundError
from dispatch_engine.core.logging import get_logger
from dispatch_engine.db.models.order import Order, ACTIVE_ORDER_STATUSES
from dispatch_engine.db.models.partner import DeliveryPartner
from dispatch_engine.domain.geo import Coordinate

logger = get_logger(__name__)


@dataclass(frozen=True)
class AvailablePartner:
    partner: DeliveryPartner
    location: Coordinate

    @property
    def partner_id(self) -> str:
        return self.partner.id


def _occupied_clause():
    """Correlated EXISTS: partner has an order in an active status"""
    return exists().where(
        and_(
            Order.delivery_partner_id == DeliveryPartner.id,
            Order.status.in_(ACTIVE_ORDER_STATUSES),
        )
    )


def _eligible_clause():
    return and_(
        DeliveryPartner.is_active.is_(True),
        DeliveryPartner.is_online.is_(True),
        DeliveryPartner.current_lat.is_not(None),
        DeliveryPartner.current_lng.is_not(None),
        ~_occupied_clause(),
    )


class PartnerDirectoryService:
    """Read model over delivery partners, plus the courier-reported updates"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_available(self) -> List[AvailablePartner]:
        """All currently available partners with their last-known location.

        Ordered by partner id so repeated calls over the same data agree;
        ranking is the dispatcher's job.
        """
        result = await self.db.execute(
            select(DeliveryPartner)
            .where(_eligible_clause())
            .order_by(DeliveryPartner.id)
        )
        partners = result.scalars().all()
        return [
            AvailablePartner(partner=p, location=Coordinate(p.current_lat, p.current_lng))
            for p in partners
        ]

    async def is_available(self, partner_id: str, for_update: bool = False) -> bool:
        """Fresh availability check for one partner.

        With ``for_update`` the partner row is locked (PostgreSQL) until the
        surrounding transaction ends.
        """
        query = select(DeliveryPartner.id).where(
            DeliveryPartner.id == partner_id,
            _eligible_clause(),
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none() is not None

    async def is_occupied(self, partner_id: str) -> bool:
        result = await self.db.execute(
            select(Order.id)
            .where(
                Order.delivery_partner_id == partner_id,
                Order.status.in_(ACTIVE_ORDER_STATUSES),
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def get_partner(self, partner_id: str) -> DeliveryPartner:
        result = await self.db.execute(
            select(DeliveryPartner).where(DeliveryPartner.id == partner_id)
        )
        partner = result.scalar_one_or_none()
        if partner is None:
            raise PartnerNotFoundError(partner_id)
        return partner

    async def update_location(self, partner_id: str, location: Coordinate) -> DeliveryPartner:
        """Record the courier's reported position"""
        partner = await self.get_partner(partner_id)
        partner.current_lat = location.lat
        partner.current_lng = location.lng
        partner.location_updated_at = datetime.utcnow()
        await self.db.commit()
        await self.db.refresh(partner)

        logger.debug(
            "Partner location updated",
            extra_data={"partner_id": partner_id, "lat": location.lat, "lng": location.lng}
        )
        return partner

    async def set_online(self, partner_id: str, is_online: bool) -> DeliveryPartner:
        partner = await self.get_partner(partner_id)
        partner.is_online = is_online
        await self.db.commit()
        await self.db.refresh(partner)

        logger.info(
            "Partner went online" if is_online else "Partner went offline",
            extra_data={"partner_id": partner_id}
        )
        return partner
