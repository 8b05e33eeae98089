"""
Cart tests.

Verifies:
- Lines snapshot the product's VAT breakdown
- Cart totals follow lines and vouchers
- A voucher that stops applying is dropped on recalculation
"""

from decimal import Decimal

import pytest

from fulfillment.errors import InsufficientStock, NotFoundError, ValidationError, VoucherNotApplicable
from fulfillment.models import CartItem
from fulfillment.services import cart_service


class TestCartLines:

    def test_add_item_snapshots_vat(self, make_cart, product):
        cart = make_cart([(product, 2)])

        item = cart.items[0]
        assert item.unit_price_excl_vat == Decimal("100.00")
        assert item.unit_vat_amount == Decimal("7.00")
        assert item.unit_price_incl_vat == Decimal("107.00")
        assert item.line_total_incl_vat == Decimal("214.00")
        assert cart.subtotal_excl_vat == Decimal("200.00")
        assert cart.total_vat == Decimal("14.00")
        assert cart.total_amount == Decimal("214.00")

    def test_adding_same_product_merges_lines(self, make_cart, product):
        cart = make_cart([(product, 1), (product, 2)])
        assert len(cart.items) == 1
        assert cart.items[0].quantity == 3

    def test_product_without_rate_uses_default(self, make_cart, make_product):
        untaxed = make_product(price="50.00", vat_rate=None)
        cart = make_cart([(untaxed, 1)])
        assert cart.total_vat == Decimal("3.50")

    def test_add_more_than_stock(self, make_cart, product):
        with pytest.raises(InsufficientStock):
            make_cart([(product, 11)])

    def test_inactive_product_cannot_be_added(self, make_cart, make_product):
        hidden = make_product(status="inactive")
        with pytest.raises(NotFoundError):
            make_cart([(hidden, 1)])

    def test_zero_quantity_removes_line(self, db_session, make_cart, product, vat_calculator):
        cart = make_cart([(product, 2)])
        cart = cart_service.update_item_quantity(cart.id, product.id, 0, vat_calculator=vat_calculator)

        assert db_session.query(CartItem).filter_by(cart_id=cart.id).count() == 0
        assert cart.total_amount == Decimal("0.00")

    def test_cart_needs_an_owner(self, db_session):
        with pytest.raises(ValidationError):
            cart_service.get_or_create_cart()

    def test_same_session_gets_same_cart(self, db_session):
        first = cart_service.get_or_create_cart(session_id="abc")
        second = cart_service.get_or_create_cart(session_id="abc")
        assert first.id == second.id


class TestCartVoucher:

    def test_voucher_discount_in_totals(self, make_cart, make_voucher, product):
        make_voucher(code="SAVE10", value="10")
        cart = make_cart([(product, 2)], voucher_code="SAVE10")

        assert cart.voucher_code == "SAVE10"
        assert cart.discount_amount == Decimal("20.00")
        assert cart.total_vat == Decimal("12.60")
        assert cart.total_amount == Decimal("192.60")

    def test_unknown_code(self, make_cart, product):
        with pytest.raises(VoucherNotApplicable) as exc_info:
            make_cart([(product, 1)], voucher_code="NOPE")
        assert exc_info.value.reason == "not_found"

    def test_voucher_dropped_when_minimum_no_longer_met(self, make_cart, make_voucher, product, vat_calculator):
        make_voucher(code="BIG", value="10", minimum="150")
        cart = make_cart([(product, 2)], voucher_code="BIG")

        cart = cart_service.update_item_quantity(cart.id, product.id, 1, vat_calculator=vat_calculator)
        assert cart.voucher_code is None
        assert cart.discount_amount == Decimal("0.00")
        assert cart.total_amount == Decimal("107.00")

    def test_clear_cart(self, make_cart, make_voucher, product):
        make_voucher(code="SAVE10", value="10")
        cart = make_cart([(product, 2)], voucher_code="SAVE10")

        cart = cart_service.clear_cart(cart.id)
        assert cart.items == []
        assert cart.voucher_code is None
        assert cart.total_amount == Decimal("0.00")

    def test_remove_voucher_restores_full_price(self, make_cart, make_voucher, product, vat_calculator):
        make_voucher(code="SAVE10", value="10")
        cart = make_cart([(product, 1)], voucher_code="SAVE10")

        cart = cart_service.remove_voucher(cart.id, vat_calculator=vat_calculator)
        assert cart.voucher_code is None
        assert cart.total_amount == Decimal("107.00")

    def test_remove_item(self, make_cart, make_product, vat_calculator):
        kept = make_product(price="10.00")
        dropped = make_product(price="20.00")
        cart = make_cart([(kept, 1), (dropped, 1)])

        cart = cart_service.remove_item(cart.id, dropped.id, vat_calculator=vat_calculator)
        assert [item.product_id for item in cart.items] == [kept.id]
        assert cart.subtotal_excl_vat == Decimal("10.00")
