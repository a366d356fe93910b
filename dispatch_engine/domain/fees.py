"""
Fee Calculator

Pure, deterministic breakdown of what the customer pays, what the partner
earns and what the platform keeps for one order. Amounts are Decimal; the
policy constants come from settings so they can change without a deploy.
"""
from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from dispatch_engine.core.config import settings
from dispatch_engine.db.models.order import OrderType

Number = Union[Decimal, int, float, str]

_WHOLE_UNIT = Decimal("1")
_HUNDRED = Decimal("100")


def to_decimal(value: Number) -> Decimal:
    """Decimal from user input without binary-float artifacts (0.1 -> '0.1')"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_half_up(value: Decimal) -> Decimal:
    """Round to whole currency units, halves away from zero (12.5 -> 13)"""
    return value.quantize(_WHOLE_UNIT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FeePolicy:
    delivery_fee: Decimal
    platform_fee: Decimal
    partner_payout: Decimal
    free_delivery_threshold: Decimal

    @classmethod
    def from_settings(cls) -> "FeePolicy":
        return cls(
            delivery_fee=to_decimal(settings.DELIVERY_FEE),
            platform_fee=to_decimal(settings.PLATFORM_FEE),
            partner_payout=to_decimal(settings.PARTNER_PAYOUT),
            free_delivery_threshold=to_decimal(settings.FREE_DELIVERY_THRESHOLD),
        )


@dataclass(frozen=True)
class FeeBreakdown:
    subtotal: Decimal
    delivery_fee: Decimal
    platform_fee: Decimal
    total_amount: Decimal
    commission_amount: Decimal
    partner_payout: Decimal
    platform_earnings: Decimal

    def to_dict(self) -> dict[str, Decimal]:
        return asdict(self)


def calculate_fees(
    subtotal: Number,
    commission_percent: Number = 15,
    order_type: OrderType = OrderType.DELIVERY,
    policy: FeePolicy | None = None,
) -> FeeBreakdown:
    """Compute the fee breakdown for an order.

    - delivery fee is waived for pickup and for subtotals at or above the
      free-delivery threshold
    - commission is subtotal * percent / 100, rounded half-up to whole units
    - the partner payout is flat for delivery orders and zero for pickup
    - platform earnings = commission + (delivery fee - payout) + platform fee,
      which is negative on the delivery margin when delivery is free

    Negative or zero subtotals are the caller's concern.
    """
    policy = policy or FeePolicy.from_settings()
    order_type = OrderType(order_type)
    subtotal = to_decimal(subtotal)
    commission_percent = to_decimal(commission_percent)

    if order_type == OrderType.PICKUP or subtotal >= policy.free_delivery_threshold:
        delivery_fee = Decimal("0")
    else:
        delivery_fee = policy.delivery_fee

    platform_fee = policy.platform_fee
    total_amount = subtotal + delivery_fee + platform_fee
    commission_amount = round_half_up(subtotal * commission_percent / _HUNDRED)
    partner_payout = policy.partner_payout if order_type == OrderType.DELIVERY else Decimal("0")
    platform_earnings = commission_amount + (delivery_fee - partner_payout) + platform_fee

    return FeeBreakdown(
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        platform_fee=platform_fee,
        total_amount=total_amount,
        commission_amount=commission_amount,
        partner_payout=partner_payout,
        platform_earnings=platform_earnings,
    )
