"""
Quantity helpers.

Quantities are ``Decimal`` everywhere.  Values arriving from forms or
spreadsheets may be ``int``, ``str`` or ``float``; floats are converted
through ``str`` so ``0.1`` becomes ``Decimal("0.1")`` rather than its binary
expansion.  Comparisons are exact -- there is no epsilon.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

from site_kernel.exceptions import InvalidQuantityError

ZERO = Decimal("0")


def to_quantity(value: Any, field: str = "quantity") -> Decimal:
    """Coerce ``value`` to ``Decimal``.

    Raises:
        InvalidQuantityError: if the value is not a finite number.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise InvalidQuantityError(field, value)
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise InvalidQuantityError(field, value) from None
    elif isinstance(value, float):
        result = Decimal(repr(value))
    else:
        raise InvalidQuantityError(field, value)

    if not result.is_finite():
        raise InvalidQuantityError(field, result)
    return result


def require_positive(value: Any, field: str = "quantity", entity_id: Any = None) -> Decimal:
    """Coerce and reject zero or negative quantities."""
    quantity = to_quantity(value, field)
    if quantity <= ZERO:
        raise InvalidQuantityError(field, quantity, entity_id)
    return quantity


def clamp_non_negative(value: Decimal) -> Decimal:
    """Negative balances are reported as zero."""
    return value if value > ZERO else ZERO


def quantity_sum(values) -> Decimal:
    """Sum an iterable of Decimals starting from ``Decimal("0")``."""
    return sum(values, ZERO)
