"""
Monetary Amount Helpers

Single zero-coalescing policy for every monetary field in the payout engine.
Absent values are treated as zero; all rounding is to 2 places, half-up.
NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Any, Optional

from .errors import InvalidAmountError

# Set global decimal context for financial precision
getcontext().prec = 28

ZERO = Decimal('0')
CENTS = Decimal('0.01')


def coalesce(value: Optional[Decimal]) -> Decimal:
    """Return value, or zero when it is absent"""
    if value is None:
        return ZERO
    return value


def round2(value: Optional[Decimal]) -> Decimal:
    """Round to 2 decimal places using round-half-up (None counts as zero)"""
    return coalesce(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def non_negative(value: Decimal) -> Decimal:
    """Clamp at zero"""
    return value if value > ZERO else ZERO


def apportion(value: Optional[Decimal], ratio: Decimal) -> Decimal:
    """Seller share of a raw amount: round2(value * ratio)"""
    return round2(coalesce(value) * ratio)


def parse_amount(value: Any, field_name: str, loan_id: Optional[str] = None) -> Optional[Decimal]:
    """
    Convert an incoming feed value to Decimal.

    Empty values stay None (absent); anything that is not a finite number
    raises InvalidAmountError naming the field and loan.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidAmountError(loan_id, field_name, value)
    if isinstance(value, str):
        value = value.strip().replace(',', '')
        if not value:
            return None
    try:
        # str() first so floats from JSON keep their printed value
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidAmountError(loan_id, field_name, value)
    if not amount.is_finite():
        raise InvalidAmountError(loan_id, field_name, value)
    return amount


def parse_days(value: Any, field_name: str, loan_id: Optional[str] = None) -> Optional[int]:
    """Convert a DPD value to int; decimals must be whole"""
    amount = parse_amount(value, field_name, loan_id)
    if amount is None:
        return None
    if amount != amount.to_integral_value():
        raise InvalidAmountError(loan_id, field_name, value)
    return int(amount)


def to_string(value: Optional[Decimal]) -> Optional[str]:
    """Serialize for storage, keeping None"""
    return None if value is None else str(value)


def from_string(value: Optional[str]) -> Optional[Decimal]:
    """Deserialize from storage, keeping None"""
    return None if value is None else Decimal(value)
