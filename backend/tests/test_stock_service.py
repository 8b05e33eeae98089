"""
Stock ledger tests.

Verifies:
- Every mutation writes exactly one consistent history row
- Stock never goes negative and a rejected change writes nothing
- Product status follows stock (inactive stays inactive)
- History listing is newest first
"""

import pytest

from fulfillment.errors import InsufficientStock, NotFoundError, ValidationError
from fulfillment.models import Product, StockHistory
from fulfillment.services import stock_service


def _history_count(db_session, product_id):
    return db_session.query(StockHistory).filter_by(product_id=product_id).count()


# =============================================================================
# ADJUSTMENTS
# =============================================================================


class TestAdjustStock:

    def test_sale_writes_ledger_row(self, db_session, product):
        entry = stock_service.adjust_stock(product.id, -3, stock_service.CHANGE_SALE, reference_id=42,
                                           reference_type=stock_service.REFERENCE_ORDER)

        assert entry.quantity_before == 10
        assert entry.quantity_change == -3
        assert entry.quantity_after == 7
        assert entry.reference_id == 42
        assert db_session.get(Product, product.id).stock_quantity == 7

    def test_sales_and_returns_reconcile(self, db_session, product):
        for delta, change_type in [(-4, "sale"), (-2, "sale"), (3, "return"), (-1, "sale")]:
            stock_service.adjust_stock(product.id, delta, change_type)

        assert db_session.get(Product, product.id).stock_quantity == 10 - 4 - 2 + 3 - 1
        rows = db_session.query(StockHistory).filter_by(product_id=product.id).all()
        assert len(rows) == 4
        assert all(row.quantity_after == row.quantity_before + row.quantity_change for row in rows)

    def test_insufficient_stock_writes_nothing(self, db_session, product):
        with pytest.raises(InsufficientStock) as exc_info:
            stock_service.adjust_stock(product.id, -11, stock_service.CHANGE_SALE)

        details = exc_info.value.details
        assert details["product_name"] == "Widget"
        assert details["requested_quantity"] == 11
        assert details["available_quantity"] == 10
        assert db_session.get(Product, product.id).stock_quantity == 10
        assert _history_count(db_session, product.id) == 0

    def test_selling_out_flips_status(self, db_session, product):
        stock_service.adjust_stock(product.id, -10, stock_service.CHANGE_SALE)
        assert db_session.get(Product, product.id).status == "out_of_stock"

        stock_service.adjust_stock(product.id, 5, stock_service.CHANGE_RESTOCK)
        assert db_session.get(Product, product.id).status == "active"

    def test_inactive_product_stays_inactive(self, db_session, make_product):
        hidden = make_product(stock=3, status="inactive")
        stock_service.adjust_stock(hidden.id, 4, stock_service.CHANGE_RESTOCK)

        reloaded = db_session.get(Product, hidden.id)
        assert reloaded.stock_quantity == 7
        assert reloaded.status == "inactive"

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            stock_service.adjust_stock(9999, 1)

    @pytest.mark.parametrize("delta", [0, 1.5, "2", True])
    def test_rejects_bad_delta(self, db_session, product, delta):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(product.id, delta)

    def test_rejects_unknown_change_type(self, db_session, product):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(product.id, 1, "shrinkage")


# =============================================================================
# HISTORY
# =============================================================================


class TestStockHistory:

    def test_newest_first_with_total(self, db_session, product):
        stock_service.adjust_stock(product.id, -1, "sale", notes="first")
        stock_service.adjust_stock(product.id, -1, "sale", notes="second")
        stock_service.adjust_stock(product.id, 2, "return", notes="third")

        rows, total = stock_service.list_stock_history(product.id, limit=2)
        assert total == 3
        assert [row.notes for row in rows] == ["third", "second"]

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            stock_service.list_stock_history(9999)
