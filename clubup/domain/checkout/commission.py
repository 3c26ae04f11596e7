"""
Commission calculation shared by every checkout and payout path.

The marketplace keeps a share of each sale's item price. The share depends
only on the seller's subscription tier; unknown or missing tiers pay the
free-tier rate.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

Amount = Union[Decimal, int, float, str]

CENT = Decimal("0.01")

DEFAULT_COMMISSION_RATE = Decimal("0.05")

COMMISSION_RATES = {
    "pga-pro": Decimal("0.01"),
    "business": Decimal("0.03"),
    "pro": Decimal("0.03"),
    "free": DEFAULT_COMMISSION_RATE,
}

SUBSCRIPTION_TIERS = tuple(COMMISSION_RATES)

# Provider processing fees deducted from the seller's payout
STRIPE_FEE_RATE = Decimal("0.029")
STRIPE_FEE_FIXED = Decimal("0.20")
PAYPAL_FEE_FIXED = Decimal("0.20")



def to_decimal(value: Amount) -> Decimal:
    """Convert a money value to Decimal without float artefacts"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def get_commission_rate(subscription_tier: Optional[str]) -> Decimal:
    """Rate for a tier; anything unrecognised gets the free-tier rate"""
    return COMMISSION_RATES.get(subscription_tier or "free", DEFAULT_COMMISSION_RATE)


@dataclass(frozen=True)
class CommissionBreakdown:
    rate: Decimal
    commission_amount: Decimal
    seller_receives: Decimal


@dataclass(frozen=True)
class SellerPayoutBreakdown:
    gross_amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    processing_fee: Decimal
    net_amount: Decimal
    method: str


def calculate_commission(
    gross_amount: Amount, subscription_tier: Optional[str] = None
) -> CommissionBreakdown:
    """
    Split a sale amount between the marketplace and the seller.

    Never raises: zero and negative amounts are computed arithmetically,
    callers reject invalid amounts before getting here.
    """
    gross = to_decimal(gross_amount)
    rate = get_commission_rate(subscription_tier)
    commission_amount = round2(gross * rate)
    return CommissionBreakdown(
        rate=rate,
        commission_amount=commission_amount,
        seller_receives=gross - commission_amount,
    )


def processing_fee_for(gross_amount: Amount, method: str = "stripe") -> Decimal:
    """Provider fee on a payment: Stripe 2.9% + 20p, PayPal flat 20p"""
    if method == "paypal":
        return PAYPAL_FEE_FIXED
    return round2(to_decimal(gross_amount) * STRIPE_FEE_RATE) + STRIPE_FEE_FIXED


def calculate_seller_payout(
    gross_amount: Amount, subscription_tier: Optional[str] = None, method: str = "stripe"
) -> SellerPayoutBreakdown:
    """Estimate what a seller is paid for a sale once commission and provider fees are taken"""
    gross = to_decimal(gross_amount)
    commission = calculate_commission(gross, subscription_tier)
    fee = processing_fee_for(gross, method)
    net = gross - commission.commission_amount - fee
    return SellerPayoutBreakdown(
        gross_amount=gross,
        commission_rate=commission.rate,
        commission_amount=commission.commission_amount,
        processing_fee=fee,
        net_amount=max(Decimal("0"), net),
        method=method,
    )
