"""Tests for tax, totals and the free-delivery rule."""

from decimal import Decimal

import pytest

from app.modules.checkout.pricing import (
    FALLBACK_DELIVERY_COST,
    TAX_RATE,
    calculate_tax,
    fallback_delivery_cost,
    format_currency,
    is_free_delivery,
    price,
    reconcile_delivery_cost,
)
from app.modules.checkout.schemas import DeliveryCostResult


class TestPrice:
    def test_free_delivery_order(self):
        pricing = price(Decimal("1200"), Decimal("0"))
        assert pricing.tax == Decimal("117")
        assert pricing.total == Decimal("1317")

    def test_paid_delivery_order(self):
        pricing = price(Decimal("500"), Decimal("50"))
        assert pricing.shipping == Decimal("50")
        assert pricing.tax == Decimal("54")
        assert pricing.total == Decimal("604")

    @pytest.mark.parametrize(
        "subtotal, shipping",
        [
            ("0", "0"),
            ("19.99", "0"),
            ("250", "35"),
            ("999.99", "50"),
            ("1000", "0"),
            ("4321.50", "0"),
        ],
    )
    def test_total_is_sum_of_parts(self, subtotal, shipping):
        pricing = price(Decimal(subtotal), Decimal(shipping))
        expected_tax = ((Decimal(subtotal) + Decimal(shipping)) * TAX_RATE).quantize(
            Decimal("1")
        )
        assert pricing.tax == expected_tax
        assert pricing.total == pricing.subtotal + pricing.shipping + pricing.tax

    def test_tax_rounds_half_up(self):
        # 200 * 0.0975 = 19.5
        assert calculate_tax(Decimal("200")) == Decimal("20")
        assert calculate_tax(Decimal("550")) == Decimal("54")
        assert calculate_tax(Decimal("5")) == Decimal("0")

    def test_accepts_wire_numbers(self):
        pricing = price(500.0, 50)
        assert pricing.total == Decimal("604")

    def test_rejects_negative_amounts(self):
        with pytest.raises(ValueError):
            price(Decimal("-1"), Decimal("0"))
        with pytest.raises(ValueError):
            price(Decimal("10"), Decimal("-5"))

    def test_to_dict_uses_derived_total(self):
        assert price(Decimal("500"), Decimal("50")).to_dict() == {
            "subtotal": 500.0,
            "shipping": 50.0,
            "tax": 54.0,
            "total": 604.0,
        }


class TestFreeDelivery:
    @pytest.mark.parametrize(
        "subtotal, expected",
        [("999.99", False), ("1000", True), ("1200", True), ("0", False)],
    )
    def test_threshold(self, subtotal, expected):
        assert is_free_delivery(Decimal(subtotal)) is expected

    def test_reconcile_zeroes_cost_over_threshold(self):
        result = DeliveryCostResult(
            delivery_cost=Decimal("45"),
            is_free_delivery=False,
            distance_miles=8.0,
        )
        reconciled = reconcile_delivery_cost(result, Decimal("1200"))
        assert reconciled.is_free_delivery is True
        assert reconciled.delivery_cost == Decimal("0")
        assert reconciled.distance_miles == 8.0

    def test_reconcile_ignores_free_flag_under_threshold(self):
        result = DeliveryCostResult(
            delivery_cost=Decimal("30"),
            is_free_delivery=True,
            distance_miles=3.0,
        )
        reconciled = reconcile_delivery_cost(result, Decimal("500"))
        assert reconciled.is_free_delivery is False
        assert reconciled.delivery_cost == Decimal("30")

    def test_fallback_under_threshold(self):
        fallback = fallback_delivery_cost(Decimal("500"), 4.5)
        assert fallback.delivery_cost == FALLBACK_DELIVERY_COST
        assert fallback.is_free_delivery is False
        assert fallback.distance_miles == 4.5

    def test_fallback_over_threshold_is_free(self):
        fallback = fallback_delivery_cost(Decimal("1500"))
        assert fallback.delivery_cost == Decimal("0")
        assert fallback.is_free_delivery is True


class TestFormatCurrency:
    def test_two_decimals_with_separator(self):
        assert format_currency(Decimal("1234.5")) == "1,234.50"
        assert format_currency(54) == "54.00"
        assert format_currency(0.125) == "0.13"
