"""
Ledger Service - Partner Wallet Settlement

Credits a partner's wallet once per delivered order. settle() runs as one
critical section per wallet:
1. Lock the wallet key (and the wallet row, SELECT ... FOR UPDATE)
2. Reject a duplicate settlement for the same order
3. Increment balance and total_earned in the same UPDATE
4. Append a credit transaction (unique per wallet/order/kind)
5. Atomically increment the partner's lifetime delivery counter
6. Commit or rollback atomically
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update, func, case
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch_engine.core.config import settings
from dispatch_engine.core.exceptions import (
    AppException,
    DataIntegrityError,
    OrderNotAssignedError,
    OrderNotFoundError,
    OrderStatusError,
    SettlementOrderMissingError,
    StoreTimeoutError,
    StoreUnavailableError,
    ValidationException,
    WalletMissingError,
)
from dispatch_engine.core.locks import LockManager, get_lock_manager, wallet_lock_key
from dispatch_engine.core.logging import get_logger, log_async_operation
from dispatch_engine.db.models.order import Order, OrderStatus
from dispatch_engine.db.models.partner import DeliveryPartner
from dispatch_engine.db.models.wallet import Wallet
from dispatch_engine.db.models.wallet_transaction import WalletTransaction, TransactionKind
from dispatch_engine.domain.fees import to_decimal

logger = get_logger(__name__)


@dataclass(frozen=True)
class SettlementResult:
    success: bool
    amount: Decimal
    already_settled: bool = False
    balance: Optional[Decimal] = None


class LedgerService:
    """Service for partner wallets and their transaction log"""

    def __init__(self, db: AsyncSession, lock_manager: LockManager | None = None):
        self.db = db
        self.locks = lock_manager or get_lock_manager()

    # ==================== Settlement ====================

    @log_async_operation("ledger.settle_order", context_keys=("order_id", "partner_id"))
    async def settle_order(self, order_id: str, partner_id: str) -> SettlementResult:
        """Settle a delivered order for the partner who delivered it.

        The amount is the order's payout snapshot, or the configured
        PARTNER_PAYOUT for orders created without one. The order lookup and
        the credit share one timeout and one store-error mapping.
        """
        self._require_ids(order_id, partner_id)
        return await self._bounded(
            "settle_order",
            self._settle_order(order_id, partner_id),
            order_id=order_id,
            partner_id=partner_id,
        )

    async def _settle_order(self, order_id: str, partner_id: str) -> SettlementResult:
        order = await self._get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.status != OrderStatus.DELIVERED:
            raise OrderStatusError(order_id, order.status.value, [OrderStatus.DELIVERED.value])

        amount = order.partner_payout
        if not amount or amount <= 0:
            amount = to_decimal(settings.PARTNER_PAYOUT)

        return await self._settle(partner_id, order_id, amount)

    @log_async_operation("ledger.settle", context_keys=("partner_id", "order_id"))
    async def settle(self, partner_id: str, order_id: str, amount) -> SettlementResult:
        """
        Credit ``amount`` to the partner's wallet for ``order_id``, once.

        Returns:
            SettlementResult - already_settled=True (and nothing written) when
            this order was credited to this wallet before

        Raises:
            WalletMissingError / SettlementOrderMissingError: data integrity,
                never retried
            TransientStoreError subclasses: store failure or timeout
        """
        self._require_ids(order_id, partner_id)
        amount = to_decimal(amount)
        if amount <= 0:
            raise ValidationException("amount must be positive", field="amount")

        return await self._bounded(
            "settle",
            self._settle(partner_id, order_id, amount),
            order_id=order_id,
            partner_id=partner_id,
        )

    async def _bounded(self, operation: str, work, order_id: str, partner_id: str) -> SettlementResult:
        """Run ``work`` within STORE_TIMEOUT_SECONDS, mapping store failures
        to retryable errors and rolling back on any failure."""
        timeout = settings.STORE_TIMEOUT_SECONDS
        try:
            return await asyncio.wait_for(work, timeout=timeout)
        except asyncio.TimeoutError:
            await self._rollback_quietly()
            raise StoreTimeoutError(operation, timeout) from None
        except DataIntegrityError as e:
            await self._rollback_quietly()
            logger.error(
                "Settlement data integrity violation",
                extra_data={"order_id": order_id, "partner_id": partner_id, "error": e.message}
            )
            raise
        except AppException:
            await self._rollback_quietly()
            raise
        except SQLAlchemyError as e:
            await self._rollback_quietly()
            raise StoreUnavailableError(operation, str(e)) from e

    async def _settle(self, partner_id: str, order_id: str, amount: Decimal) -> SettlementResult:
        async with self.locks.hold(wallet_lock_key(partner_id)):
            order = await self._get_order(order_id)
            if order is None:
                raise SettlementOrderMissingError(order_id, partner_id)
            if order.delivery_partner_id != partner_id:
                raise OrderNotAssignedError(order_id, partner_id, order.delivery_partner_id)

            wallet = await self._get_wallet(partner_id, for_update=True)
            if wallet is None:
                raise WalletMissingError(partner_id)

            if await self._has_settlement(wallet.id, order_id):
                logger.info(
                    "Order already settled, skipping credit",
                    extra_data={"order_id": order_id, "partner_id": partner_id}
                )
                return SettlementResult(
                    success=False,
                    amount=Decimal("0"),
                    already_settled=True,
                    balance=wallet.balance,
                )

            try:
                # both totals in one UPDATE, computed by the database
                await self.db.execute(
                    update(Wallet)
                    .where(Wallet.id == wallet.id)
                    .values(
                        balance=Wallet.balance + amount,
                        total_earned=Wallet.total_earned + amount,
                        updated_at=datetime.utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                self.db.add(WalletTransaction(
                    wallet_id=wallet.id,
                    order_id=order_id,
                    amount=amount,
                    kind=TransactionKind.CREDIT,
                    description=f"Delivery earnings for order {order.order_number}",
                ))
                await self.db.execute(
                    update(DeliveryPartner)
                    .where(DeliveryPartner.id == partner_id)
                    .values(total_deliveries=DeliveryPartner.total_deliveries + 1)
                    .execution_options(synchronize_session=False)
                )
                order.settled_at = datetime.utcnow()
                await self.db.commit()
            except IntegrityError:
                # uq_wallet_order_kind: a concurrent settlement won
                await self.db.rollback()
                logger.warning(
                    "Duplicate settlement rejected by unique constraint",
                    extra_data={"order_id": order_id, "partner_id": partner_id}
                )
                return SettlementResult(success=False, amount=Decimal("0"), already_settled=True)

            wallet = await self.db.get(Wallet, wallet.id, populate_existing=True)

        logger.info(
            "Partner wallet credited",
            extra_data={
                "order_id": order_id,
                "partner_id": partner_id,
                "amount": str(amount),
                "balance": str(wallet.balance),
            }
        )
        return SettlementResult(success=True, amount=amount, balance=wallet.balance)

    # ==================== Queries ====================

    async def get_wallet(self, partner_id: str) -> Wallet:
        """Wallet for a partner; absence is a provisioning error"""
        wallet = await self._get_wallet(partner_id)
        if wallet is None:
            raise WalletMissingError(partner_id)
        return wallet

    async def get_history(self, partner_id: str, limit: int = 20) -> List[WalletTransaction]:
        """Most recent transactions first"""
        wallet = await self.get_wallet(partner_id)
        result = await self.db.execute(
            select(WalletTransaction)
            .where(WalletTransaction.wallet_id == wallet.id)
            .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def reconcile(self, partner_id: str) -> Decimal:
        """Sum of credits minus debits; equals the balance on a healthy wallet"""
        wallet = await self.get_wallet(partner_id)
        signed = case(
            (WalletTransaction.kind == TransactionKind.DEBIT, -WalletTransaction.amount),
            else_=WalletTransaction.amount,
        )
        result = await self.db.execute(
            select(func.coalesce(func.sum(signed), 0))
            .where(WalletTransaction.wallet_id == wallet.id)
        )
        return to_decimal(result.scalar_one())

    # ==================== Helpers ====================

    @staticmethod
    def _require_ids(order_id: str, partner_id: str) -> None:
        if not order_id or not order_id.strip():
            raise ValidationException("order_id is required", field="order_id")
        if not partner_id or not partner_id.strip():
            raise ValidationException("partner_id is required", field="partner_id")

    async def _get_order(self, order_id: str) -> Optional[Order]:
        result = await self.db.execute(select(Order).where(Order.id == order_id))
        return result.scalar_one_or_none()

    async def _get_wallet(self, partner_id: str, for_update: bool = False) -> Optional[Wallet]:
        query = select(Wallet).where(Wallet.partner_id == partner_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def _has_settlement(self, wallet_id: int, order_id: str) -> bool:
        result = await self.db.execute(
            select(WalletTransaction.id).where(
                WalletTransaction.wallet_id == wallet_id,
                WalletTransaction.order_id == order_id,
                WalletTransaction.kind == TransactionKind.CREDIT,
            )
        )
        return result.first() is not None

    async def _rollback_quietly(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError as e:
            logger.warning("Rollback after settlement failure failed", extra_data={"error": str(e)})
