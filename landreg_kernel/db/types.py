"""
Module: landreg_kernel.db.types
Responsibility: Annotated column aliases and the rounding helper used for
    every monetary value (lease amounts, installments, balances).
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and modules.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats for money or area.  Values are Decimal with explicit
      precision; round_money() is the ONLY sanctioned rounding function
      and rounds half away from zero to two places by default.

Failure modes:
    - decimal.InvalidOperation on a non-numeric value passed to to_decimal().
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Any

from sqlalchemy import Numeric, String

# Monetary amount, stored with high precision
Money = Annotated[Decimal, Numeric(38, 9)]

# Land area in square metres
Area = Annotated[Decimal, Numeric(18, 4)]

ShortCode = Annotated[str, String(50)]
LongText = Annotated[str, String(4000)]

BILLING_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def to_decimal(value: Any) -> Decimal:
    """Coerce int/str/Decimal to Decimal.  Floats go through str() first."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise InvalidOperation(f"Not a decimal value: {value!r}") from exc


def round_money(
    amount: Decimal,
    decimal_places: int = BILLING_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary amount to the given precision.

    Postconditions: Returns a Decimal quantized to ``decimal_places``.
    """
    quantizer = Decimal(10) ** -decimal_places
    return amount.quantize(quantizer, rounding=rounding)
