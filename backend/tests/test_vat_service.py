"""
VAT calculator tests.

Verifies:
- Exclusive and inclusive breakdowns round half-up and always add up
- Rate, amount and mode validation
- Multi-line cart totals with per-item rates
- Discount handling and mixed-basket VAT re-derivation
"""

from decimal import Decimal

import pytest

from fulfillment.errors import ValidationError
from fulfillment.services.vat_service import MODE_EXCLUSIVE, MODE_INCLUSIVE, VatCalculator


# =============================================================================
# BREAKDOWNS
# =============================================================================


class TestBreakdown:

    def test_exclusive_price(self, vat_calculator):
        b = vat_calculator.breakdown("100", MODE_EXCLUSIVE, "7")
        assert b.price_excl_vat == Decimal("100.00")
        assert b.vat_amount == Decimal("7.00")
        assert b.price_incl_vat == Decimal("107.00")

    def test_inclusive_price(self, vat_calculator):
        b = vat_calculator.breakdown("107", MODE_INCLUSIVE, "7")
        assert b.price_excl_vat == Decimal("100.00")
        assert b.vat_amount == Decimal("7.00")
        assert b.price_incl_vat == Decimal("107.00")

    @pytest.mark.parametrize(
        "amount,mode",
        [
            ("100", MODE_INCLUSIVE),
            ("19.99", MODE_EXCLUSIVE),
            ("33.33", MODE_INCLUSIVE),
            ("0.07", MODE_EXCLUSIVE),
        ],
    )
    def test_parts_always_add_up(self, vat_calculator, amount, mode):
        b = vat_calculator.breakdown(amount, mode, "7")
        assert b.price_excl_vat + b.vat_amount == b.price_incl_vat

    def test_inclusive_rounds_excl_then_derives_vat(self, vat_calculator):
        b = vat_calculator.breakdown("100", MODE_INCLUSIVE, "7")
        assert b.price_excl_vat == Decimal("93.46")
        assert b.vat_amount == Decimal("6.54")

    def test_rounds_half_up(self, vat_calculator):
        b = vat_calculator.breakdown("0.50", MODE_EXCLUSIVE, "1")
        assert b.vat_amount == Decimal("0.01")

    def test_zero_rate(self, vat_calculator):
        b = vat_calculator.breakdown("250", MODE_EXCLUSIVE, "0")
        assert b.vat_amount == Decimal("0.00")
        assert b.price_incl_vat == Decimal("250.00")

    def test_default_rate_comes_from_construction(self):
        calculator = VatCalculator(default_rate=Decimal("10"))
        assert calculator.breakdown("50").vat_amount == Decimal("5.00")

    def test_single_amount_helpers(self, vat_calculator):
        assert vat_calculator.calculate_vat_amount("100") == Decimal("7.00")
        assert vat_calculator.calculate_price_incl_vat("100") == Decimal("107.00")
        assert vat_calculator.calculate_price_excl_vat("107") == Decimal("100.00")
        assert vat_calculator.extract_vat_amount("107") == Decimal("7.00")


# =============================================================================
# VALIDATION
# =============================================================================


class TestValidation:

    @pytest.mark.parametrize("rate", ["-1", "100.01", "abc", True])
    def test_rejects_bad_rate(self, vat_calculator, rate):
        with pytest.raises(ValidationError):
            vat_calculator.breakdown("100", MODE_EXCLUSIVE, rate)

    def test_rejects_negative_amount(self, vat_calculator):
        with pytest.raises(ValidationError):
            vat_calculator.breakdown("-5", MODE_EXCLUSIVE)

    def test_rejects_unknown_mode(self, vat_calculator):
        with pytest.raises(ValidationError) as exc_info:
            vat_calculator.breakdown("100", "gross")
        assert exc_info.value.details["field"] == "mode"

    def test_rejects_bad_default_rate(self):
        with pytest.raises(ValidationError):
            VatCalculator(default_rate=Decimal("150"))

    def test_line_totals_need_positive_quantity(self, vat_calculator):
        unit = vat_calculator.breakdown("10")
        with pytest.raises(ValidationError):
            vat_calculator.line_totals(unit, 0)


# =============================================================================
# CARTS
# =============================================================================


class TestCartVat:

    def test_per_item_rate_wins(self, vat_calculator):
        totals = vat_calculator.calculate_cart_vat(
            [
                {"price": "100", "quantity": 2},
                {"price": "19.99", "quantity": 3, "vat_rate": "0"},
            ]
        )
        assert totals.subtotal_excl_vat == Decimal("259.97")
        assert totals.total_vat == Decimal("14.00")
        assert totals.total_incl_vat == Decimal("273.97")
        assert len(totals.lines) == 2

    def test_item_without_quantity_rejected(self, vat_calculator):
        with pytest.raises(ValidationError):
            vat_calculator.calculate_cart_vat([{"price": "10"}])

    def test_items_must_be_a_list(self, vat_calculator):
        with pytest.raises(ValidationError):
            vat_calculator.calculate_cart_vat({"price": "10", "quantity": 1})


# =============================================================================
# DISCOUNTS
# =============================================================================


class TestDiscounts:

    def test_vat_recomputed_on_discounted_price(self, vat_calculator):
        result = vat_calculator.apply_discount_and_recalculate_vat("100", "20", "7")
        assert result.discounted_price_excl_vat == Decimal("80.00")
        assert result.vat_amount == Decimal("5.60")
        assert result.final_price_incl_vat == Decimal("85.60")

    def test_discount_cannot_exceed_price(self, vat_calculator):
        with pytest.raises(ValidationError):
            vat_calculator.apply_discount_and_recalculate_vat("50", "60")

    def test_rederive_single_rate(self, vat_calculator):
        assert vat_calculator.rederive_vat_after_discount("200", "14", "100") == Decimal("7.00")

    def test_rederive_mixed_rates_uses_weighted_rate(self, vat_calculator):
        # 200 @ 7% + 100 @ 0% -> effective rate 4.67%
        assert vat_calculator.rederive_vat_after_discount("300", "14", "30") == Decimal("12.60")

    def test_rederive_empty_basket(self, vat_calculator):
        assert vat_calculator.rederive_vat_after_discount("0", "0", "0") == Decimal("0.00")
