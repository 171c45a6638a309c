"""DTO utilities for the service layer.

Provides the input coercion every service applies to quantities, costs,
counts and enum values before they reach the ledger or a returned dict.
Anything that cannot be coerced raises ValidationError, so bad input never
surfaces as a bare ValueError.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Optional, Type, TypeVar, Union

from perfumery.utils.constants import COST_PRECISION, QUANTITY_PRECISION
from .exceptions import ValidationError

Number = Union[Decimal, float, int, str]
E = TypeVar("E", bound=Enum)


def to_decimal(value: Number, field_name: str = "value") -> Decimal:
    """
    Convert a numeric input to Decimal without binary float artifacts.

    Args:
        value: Decimal, int, float or numeric string
        field_name: Name used in the error message

    Returns:
        Decimal equal to the printed value of the input

    Raises:
        ValidationError: If the value is not numeric or not finite

    Examples:
        >>> to_decimal(0.1)
        Decimal('0.1')
        >>> to_decimal("40")
        Decimal('40')
    """
    if isinstance(value, Decimal):
        result = value
    elif value is None or isinstance(value, bool):
        raise ValidationError([f"{field_name} must be numeric, got {value!r}"])
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError([f"{field_name} must be numeric, got {value!r}"])
    if not result.is_finite():
        raise ValidationError([f"{field_name} must be finite, got {value!r}"])
    return result


def optional_decimal(value: Optional[Number], field_name: str = "value") -> Optional[Decimal]:
    """Like to_decimal but passes None through."""
    if value is None:
        return None
    return to_decimal(value, field_name)


def to_int(value: Union[int, str], field_name: str = "value") -> int:
    """
    Convert a count (units, days) to int.

    Integral Decimals and floats are accepted; fractions are not.

    Raises:
        ValidationError: If the value is not a whole number
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    number = to_decimal(value, field_name)
    if number != number.to_integral_value():
        raise ValidationError([f"{field_name} must be a whole number, got {value!r}"])
    return int(number)


def parse_enum(enum_cls: Type[E], value, field_name: str) -> E:
    """
    Look up an enum member by value.

    Raises:
        ValidationError: Listing the allowed values
    """
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError([f"Invalid {field_name} '{value}'. Must be one of: {allowed}"])


def quantize_quantity(value: Number) -> Decimal:
    """
    Round a stock quantity to ledger precision (4 places, half-up).

    Examples:
        >>> quantize_quantity(Decimal("1710.828"))
        Decimal('1710.8280')
    """
    return to_decimal(value).quantize(QUANTITY_PRECISION, rounding=ROUND_HALF_UP)


def quantize_cost(value: Number) -> Decimal:
    """Round a monetary amount to cost precision (4 places, half-up)."""
    return to_decimal(value).quantize(COST_PRECISION, rounding=ROUND_HALF_UP)
