"""Minor/major currency unit conversion and fee display.

Fees are stored as integer minor units (cents). Major units (RON) only appear
at the HTTP boundary and in display strings.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from app.core.errors import FeeOutOfRangeError, ValidationError
from app.modules.enrollments.utils.config import Settings

_ROUNDING_TOLERANCE = Decimal("0.0001")
_CENTS = Decimal("0.01")


def _ToDecimal(value) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError("Fee must be a valid number")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        try:
            amount = Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValidationError("Fee must be a valid number") from exc
    else:
        raise ValidationError("Fee must be a valid number")

    if not amount.is_finite():
        raise ValidationError("Fee must be a valid number")
    return amount


def _FormatMajor(amount_minor: int) -> str:
    major = ToMajorUnits(amount_minor)
    if major == major.to_integral_value():
        return f"{int(major):,}"
    return f"{major:,.2f}"


def ToMinorUnits(major_amount) -> int:
    amount = _ToDecimal(major_amount)
    if amount < 0:
        raise FeeOutOfRangeError("Fee cannot be negative", {"Min": 0})

    scaled = amount * Settings.MinorUnitScale
    rounded = scaled.to_integral_value(rounding=ROUND_HALF_UP)
    if abs(scaled - rounded) > _ROUNDING_TOLERANCE:
        raise ValidationError("Fee cannot have more than 2 decimal places")
    return int(rounded)


def ToMajorUnits(minor_amount: int) -> Decimal:
    if isinstance(minor_amount, bool) or not isinstance(minor_amount, int):
        raise ValidationError("Fee in minor units must be an integer")
    return (Decimal(minor_amount) / Decimal(Settings.MinorUnitScale)).quantize(_CENTS)


def ValidateFeeBounds(amount_minor: int, max_allowed_minor: int | None = None) -> int:
    if isinstance(amount_minor, bool) or not isinstance(amount_minor, int):
        raise ValidationError("Fee in minor units must be an integer")

    ceiling = Settings.MaxFeeMinor if max_allowed_minor is None else max_allowed_minor
    if amount_minor < 0:
        raise FeeOutOfRangeError("Fee cannot be negative", {"Min": 0})
    if amount_minor > ceiling:
        raise FeeOutOfRangeError(
            f"Fee cannot exceed {_FormatMajor(ceiling)} {Settings.Currency}",
            {"Max": ceiling},
        )
    return amount_minor


def FormatForDisplay(amount_minor: int) -> str:
    if amount_minor == 0:
        return Settings.NoFeeText
    return f"{_FormatMajor(amount_minor)} {Settings.Currency}"
