"""
Wallet API Routes
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch_engine.api.schemas import CamelModel
from dispatch_engine.db.database import get_db
from dispatch_engine.db.models.wallet_transaction import TransactionKind
from dispatch_engine.domain.services.ledger_service import LedgerService

router = APIRouter()


class WalletResponse(CamelModel):
    partner_id: str
    balance: float
    total_earned: float
    updated_at: Optional[datetime]


class TransactionResponse(CamelModel):
    id: int
    order_id: Optional[str]
    amount: float
    kind: TransactionKind
    description: Optional[str]
    created_at: Optional[datetime]


@router.get(
    "/{partner_id}",
    response_model=WalletResponse,
    summary="Get a partner's wallet",
    description="Balance and lifetime earnings. A partner without a wallet is a provisioning error (500).",
)
async def get_wallet(
    partner_id: str,
    db: AsyncSession = Depends(get_db)
):
    service = LedgerService(db)
    return await service.get_wallet(partner_id)


@router.get(
    "/{partner_id}/history",
    response_model=List[TransactionResponse],
    summary="Get wallet transaction history",
    description="Most recent first.",
)
async def get_transaction_history(
    partner_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db)
):
    service = LedgerService(db)
    return await service.get_history(partner_id, limit)
