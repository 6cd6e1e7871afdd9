"""Small conversion helpers shared by the engine."""
from datetime import date, datetime
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Optional, Union

from taxlot_engine.core.errors import ValidationError

Number = Union[Decimal, int, float, str]

# Scales of the Numeric lot columns
QUANTITY_PLACES = 8
PRICE_PLACES = 6


def to_decimal(value: Number, places: Optional[int] = None) -> Decimal:
    """
    Convert to Decimal without binary float artefacts.

    Args:
        value: Number or numeric string
        places: Round half-even to this many decimal places (the column scale)

    Raises:
        ValidationError: The value is not a finite number
    """
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"Not a number: {value!r}") from None
    if not result.is_finite():
        raise ValidationError(f"Not a finite number: {value!r}")
    if places is not None:
        try:
            result = result.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_EVEN)
        except InvalidOperation:
            raise ValidationError(f"Number out of range: {value!r}") from None
    return result


def to_datetime(value: Optional[Union[date, datetime]], default: Optional[datetime] = None) -> datetime:
    """Normalize a date or datetime to a naive datetime (dates map to midnight)."""
    if value is None:
        return default if default is not None else datetime.now()
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, datetime.min.time())
