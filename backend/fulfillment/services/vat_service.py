# Overview: Service-layer VAT arithmetic; pure functions over Decimal money, no database work.

"""
VAT Calculator

Supports VAT-exclusive and VAT-inclusive pricing.

ROUNDING (authoritative):
- All outputs are 2-decimal Decimals, rounded half-up.
- Exactly two of the three values (excl, vat, incl) are rounded
  independently; the third is derived from them, so
  excl + vat == incl always holds after rounding.
    exclusive: excl = round2(amount); vat = round2(excl * rate / 100); incl = excl + vat
    inclusive: incl = round2(amount); excl = round2(incl / (1 + rate / 100)); vat = incl - excl

The default rate is construction-time configuration (see create_app), never
shared mutable state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app

from ..errors import ValidationError
from ..money import ZERO, round2, to_decimal


MODE_EXCLUSIVE = "exclusive"
MODE_INCLUSIVE = "inclusive"
VALID_MODES = (MODE_EXCLUSIVE, MODE_INCLUSIVE)

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class VatBreakdown:
    price_excl_vat: Decimal
    vat_rate: Decimal
    vat_amount: Decimal
    price_incl_vat: Decimal

    def to_dict(self) -> dict:
        return {
            "price_excl_vat": f"{self.price_excl_vat:.2f}",
            "vat_rate": f"{self.vat_rate:.2f}",
            "vat_amount": f"{self.vat_amount:.2f}",
            "price_incl_vat": f"{self.price_incl_vat:.2f}",
        }


@dataclass(frozen=True)
class LineVat:
    quantity: int
    unit: VatBreakdown
    line_total_excl_vat: Decimal
    line_total_vat: Decimal
    line_total_incl_vat: Decimal


@dataclass(frozen=True)
class CartVat:
    lines: list[LineVat] = field(default_factory=list)
    subtotal_excl_vat: Decimal = ZERO
    total_vat: Decimal = ZERO
    total_incl_vat: Decimal = ZERO


@dataclass(frozen=True)
class DiscountedVat:
    original_price_excl_vat: Decimal
    discount_amount: Decimal
    discounted_price_excl_vat: Decimal
    vat_amount: Decimal
    final_price_incl_vat: Decimal


class VatCalculator:
    def __init__(self, default_rate=Decimal("7.00")):
        self.default_rate = self._validate_rate(default_rate)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_rate(rate) -> Decimal:
        value = to_decimal(rate, "vat_rate")
        if value < 0 or value > HUNDRED:
            raise ValidationError(
                "VAT rate must be a number between 0 and 100",
                details={"field": "vat_rate", "value": str(value)},
            )
        return value

    @staticmethod
    def _validate_amount(amount, field_name: str) -> Decimal:
        value = to_decimal(amount, field_name)
        if value < 0:
            raise ValidationError(
                f"{field_name} must be a non-negative number",
                details={"field": field_name, "value": str(value)},
            )
        return value

    def resolve_rate(self, rate=None) -> Decimal:
        """Explicit rate if given, else the configured default."""
        if rate is None:
            return self.default_rate
        return self._validate_rate(rate)

    # ------------------------------------------------------------------
    # Single amounts
    # ------------------------------------------------------------------

    def calculate_vat_amount(self, price_excl_vat, rate=None) -> Decimal:
        price = round2(self._validate_amount(price_excl_vat, "price_excl_vat"))
        return round2(price * self.resolve_rate(rate) / HUNDRED)

    def calculate_price_incl_vat(self, price_excl_vat, rate=None) -> Decimal:
        return self.breakdown(price_excl_vat, MODE_EXCLUSIVE, rate).price_incl_vat

    def calculate_price_excl_vat(self, price_incl_vat, rate=None) -> Decimal:
        price = round2(self._validate_amount(price_incl_vat, "price_incl_vat"))
        return round2(price / (1 + self.resolve_rate(rate) / HUNDRED))

    def extract_vat_amount(self, price_incl_vat, rate=None) -> Decimal:
        return self.breakdown(price_incl_vat, MODE_INCLUSIVE, rate).vat_amount

    def breakdown(self, amount, mode: str = MODE_EXCLUSIVE, rate=None) -> VatBreakdown:
        """Three-part VAT breakdown of a base amount in the given pricing mode."""
        if mode not in VALID_MODES:
            raise ValidationError(
                'Mode must be either "exclusive" or "inclusive"',
                details={"field": "mode", "value": mode},
            )
        resolved = self.resolve_rate(rate)

        if mode == MODE_EXCLUSIVE:
            excl = round2(self._validate_amount(amount, "price_excl_vat"))
            vat = round2(excl * resolved / HUNDRED)
            incl = excl + vat
        else:
            incl = round2(self._validate_amount(amount, "price_incl_vat"))
            excl = round2(incl / (1 + resolved / HUNDRED))
            vat = incl - excl

        return VatBreakdown(
            price_excl_vat=excl,
            vat_rate=resolved,
            vat_amount=vat,
            price_incl_vat=incl,
        )

    # ------------------------------------------------------------------
    # Lines and carts
    # ------------------------------------------------------------------

    def line_totals(self, unit: VatBreakdown, quantity: int) -> LineVat:
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError("quantity must be a positive integer", details={"field": "quantity"})
        return LineVat(
            quantity=quantity,
            unit=unit,
            line_total_excl_vat=unit.price_excl_vat * quantity,
            line_total_vat=unit.vat_amount * quantity,
            line_total_incl_vat=unit.price_incl_vat * quantity,
        )

    def calculate_cart_vat(self, items: list[dict], mode: str = MODE_EXCLUSIVE, rate=None) -> CartVat:
        """
        VAT totals for several items.

        Each item: {"price": ..., "quantity": ..., "vat_rate": optional}.
        A per-item vat_rate wins over the call-level rate.
        """
        if not isinstance(items, (list, tuple)):
            raise ValidationError("Items must be a list", details={"field": "items"})

        lines = []
        for item in items:
            if item.get("price") is None or not item.get("quantity"):
                raise ValidationError("Each item must have price and quantity", details={"field": "items"})
            unit = self.breakdown(item["price"], mode, item.get("vat_rate", rate))
            lines.append(self.line_totals(unit, item["quantity"]))

        return CartVat(
            lines=lines,
            subtotal_excl_vat=sum((line.line_total_excl_vat for line in lines), ZERO),
            total_vat=sum((line.line_total_vat for line in lines), ZERO),
            total_incl_vat=sum((line.line_total_incl_vat for line in lines), ZERO),
        )

    # ------------------------------------------------------------------
    # Discounts
    # ------------------------------------------------------------------

    def apply_discount_and_recalculate_vat(self, original_price, discount_amount, rate=None) -> DiscountedVat:
        """Single-rate price: subtract the discount, then recompute VAT on what is left."""
        original = self._validate_amount(original_price, "original_price")
        discount = self._validate_amount(discount_amount, "discount_amount")
        if discount > original:
            raise ValidationError(
                "Discount amount cannot exceed original price",
                details={"field": "discount_amount"},
            )

        breakdown = self.breakdown(original - discount, MODE_EXCLUSIVE, rate)
        return DiscountedVat(
            original_price_excl_vat=round2(original),
            discount_amount=round2(discount),
            discounted_price_excl_vat=breakdown.price_excl_vat,
            vat_amount=breakdown.vat_amount,
            final_price_incl_vat=breakdown.price_incl_vat,
        )

    def rederive_vat_after_discount(self, subtotal_excl_vat, total_vat, discount_amount) -> Decimal:
        """
        VAT of a mixed-rate basket after a basket-level discount.

        Uses the weighted average rate of the basket:
            effective_rate = total_vat / subtotal * 100
            new_vat = (subtotal - discount) * effective_rate / 100
        This is an approximation for mixed rates and is kept as-is so that
        cart and order totals agree with previously issued receipts.
        """
        subtotal = self._validate_amount(subtotal_excl_vat, "subtotal_excl_vat")
        vat = self._validate_amount(total_vat, "total_vat")
        discount = self._validate_amount(discount_amount, "discount_amount")

        if subtotal == 0:
            return ZERO
        effective_rate = vat / subtotal * HUNDRED
        return round2((subtotal - discount) * effective_rate / HUNDRED)


def get_vat_calculator() -> VatCalculator:
    """The calculator built by create_app from DEFAULT_VAT_RATE."""
    return current_app.extensions["vat_calculator"]
