"""Fee policy defaults and money helpers shared across the ledger.


- WALLET_FEE_AMOUNT / FREE_TRIAL_DAYS / MINIMUM_REFERRAL_STAKE are the defaults;
  settings may override each of them (read at call time so tests can override).
- to_money quantizes any amount to the 2-decimal precision stored in the wallet tables.
"""

from django.conf import settings
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

WALLET_FEE_AMOUNT = Decimal("2.00")
FREE_TRIAL_DAYS = 30
MINIMUM_REFERRAL_STAKE = Decimal("20.00")
WALLET_FEE_CURRENCY = "USD"

CENT = Decimal("0.01")


def to_money(amount) -> Decimal:
    """
    Convert str / int / Decimal to a 2-decimal Decimal. Floats go through str() first.
    """
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        raise ValueError(f"Invalid amount: {amount!r}")
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def wallet_fee_amount() -> Decimal:
    return to_money(getattr(settings, "WALLET_FEE_AMOUNT", WALLET_FEE_AMOUNT))


def wallet_fee_currency() -> str:
    return getattr(settings, "WALLET_FEE_CURRENCY", WALLET_FEE_CURRENCY)


def free_trial_days() -> int:
    return int(getattr(settings, "FREE_TRIAL_DAYS", FREE_TRIAL_DAYS))


def minimum_referral_stake() -> Decimal:
    return to_money(getattr(settings, "MINIMUM_REFERRAL_STAKE", MINIMUM_REFERRAL_STAKE))


def require_fee_receiver() -> bool:
    return bool(getattr(settings, "WALLET_FEE_REQUIRE_RECEIVER", True))
