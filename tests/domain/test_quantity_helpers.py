"""
Tests for Decimal quantity coercion.
"""

from decimal import Decimal

import pytest

from site_kernel.domain.quantity import (
    ZERO,
    clamp_non_negative,
    quantity_sum,
    require_positive,
    to_quantity,
)
from site_kernel.exceptions import InvalidQuantityError


class TestToQuantity:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            (Decimal("1.5"), Decimal("1.5")),
            (3, Decimal("3")),
            (" 2.25 ", Decimal("2.25")),
            (0.1, Decimal("0.1")),
        ],
    )
    def test_accepted(self, raw, expected):
        assert to_quantity(raw) == expected

    @pytest.mark.parametrize("raw", ["abc", None, True, float("nan"), "Infinity", [1]])
    def test_rejected(self, raw):
        with pytest.raises(InvalidQuantityError):
            to_quantity(raw)

    def test_float_has_no_binary_noise(self):
        assert to_quantity(0.1) + to_quantity(0.2) == Decimal("0.3")


class TestRequirePositive:
    def test_positive(self):
        assert require_positive("4") == Decimal("4")

    @pytest.mark.parametrize("raw", ["0", "-1"])
    def test_non_positive_rejected(self, raw):
        with pytest.raises(InvalidQuantityError) as exc_info:
            require_positive(raw, "quantity", "line-1")

        assert exc_info.value.entity_id == "line-1"
        assert exc_info.value.code == "INVALID_QUANTITY"


class TestAggregates:
    def test_clamp(self):
        assert clamp_non_negative(Decimal("-2")) == ZERO
        assert clamp_non_negative(Decimal("2")) == Decimal("2")

    def test_sum_of_nothing_is_decimal_zero(self):
        total = quantity_sum([])

        assert total == ZERO
        assert isinstance(total, Decimal)
