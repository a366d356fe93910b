"""
Delivery Partner API Routes
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch_engine.api.schemas import CamelModel
from dispatch_engine.core.exceptions import ValidationException
from dispatch_engine.db.database import get_db
from dispatch_engine.domain.geo import Coordinate
from dispatch_engine.domain.services.dispatch_service import rank_candidates
from dispatch_engine.domain.services.partner_directory_service import PartnerDirectoryService

router = APIRouter()


class AvailablePartnerResponse(CamelModel):
    partner_id: str
    name: Optional[str]
    vehicle_type: Optional[str]
    lat: float
    lng: float
    distance_km: Optional[float] = None


class PartnerResponse(CamelModel):
    id: str
    name: Optional[str]
    vehicle_type: Optional[str]
    is_online: bool
    is_active: bool
    current_lat: Optional[float]
    current_lng: Optional[float]
    location_updated_at: Optional[datetime]
    total_deliveries: int


class LocationUpdate(CamelModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class OnlineUpdate(CamelModel):
    is_online: bool


@router.get(
    "/available",
    response_model=List[AvailablePartnerResponse],
    summary="List partners free to take an order",
    description=(
        "Active, online partners with a known location and no active order. "
        "With lat/lng the list is sorted nearest first and carries distanceKm."
    ),
)
async def list_available_partners(
    lat: Optional[float] = Query(default=None, ge=-90, le=90),
    lng: Optional[float] = Query(default=None, ge=-180, le=180),
    db: AsyncSession = Depends(get_db)
):
    if (lat is None) != (lng is None):
        raise ValidationException("lat and lng must be given together", field="lat")

    service = PartnerDirectoryService(db)
    available = await service.list_available()
    by_id = {a.partner_id: a for a in available}

    if lat is None:
        return [
            AvailablePartnerResponse(
                partner_id=a.partner_id,
                name=a.partner.name,
                vehicle_type=a.partner.vehicle_type,
                lat=a.location.lat,
                lng=a.location.lng,
            )
            for a in available
        ]

    return [
        AvailablePartnerResponse(
            partner_id=r.partner_id,
            name=by_id[r.partner_id].partner.name,
            vehicle_type=by_id[r.partner_id].partner.vehicle_type,
            lat=by_id[r.partner_id].location.lat,
            lng=by_id[r.partner_id].location.lng,
            distance_km=round(r.distance_km, 3),
        )
        for r in rank_candidates(Coordinate(lat, lng), available)
    ]


@router.get(
    "/{partner_id}",
    response_model=PartnerResponse,
    summary="Get delivery partner",
    responses={404: {"description": "Partner not found"}},
)
async def get_partner(
    partner_id: str,
    db: AsyncSession = Depends(get_db)
):
    service = PartnerDirectoryService(db)
    return await service.get_partner(partner_id)


@router.post(
    "/{partner_id}/location",
    response_model=PartnerResponse,
    summary="Report partner location",
    responses={404: {"description": "Partner not found"}},
)
async def update_location(
    partner_id: str,
    location: LocationUpdate,
    db: AsyncSession = Depends(get_db)
):
    service = PartnerDirectoryService(db)
    return await service.update_location(partner_id, Coordinate(location.lat, location.lng))


@router.post(
    "/{partner_id}/online",
    response_model=PartnerResponse,
    summary="Go online / offline",
    responses={404: {"description": "Partner not found"}},
)
async def set_online(
    partner_id: str,
    update: OnlineUpdate,
    db: AsyncSession = Depends(get_db)
):
    service = PartnerDirectoryService(db)
    return await service.set_online(partner_id, update.is_online)
