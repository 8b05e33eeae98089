"""
Pytest fixtures for fulfillment backend tests.

Provides test database setup, catalog/voucher/cart factories, receipt
renderers, and the test client.
"""

import itertools
from datetime import timedelta
from decimal import Decimal

import pytest

from fulfillment import create_app
from fulfillment.extensions import db
from fulfillment.models import Product, Voucher
from fulfillment.services import cart_service
from fulfillment.services.receipt_service import ReceiptRenderer, TextReceiptRenderer
from fulfillment.services.vat_service import VatCalculator
from fulfillment.time_utils import utcnow


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RECEIPT_OUTPUT_DIR': str(tmp_path_factory.mktemp('receipts')),
        'SLIP_VERIFY_API_KEY': None,
        'DEFAULT_VAT_RATE': '7.00',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def vat_calculator():
    return VatCalculator(default_rate=Decimal("7.00"))


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: product with price 100.00 excl. VAT, 7% VAT, 10 in stock."""
    counter = itertools.count(1)

    def _make(name=None, price="100.00", vat_rate="7.00", stock=10, status="active"):
        n = next(counter)
        product = Product(
            sku=f"SKU-{n:03d}",
            name=name or f"Product {n}",
            price_excl_vat=Decimal(price),
            vat_rate=Decimal(vat_rate) if vat_rate is not None else None,
            stock_quantity=stock,
            status=status,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    return make_product(name="Widget")


@pytest.fixture(scope='function')
def make_voucher(db_session):
    """Factory: active voucher valid from yesterday until tomorrow."""
    def _make(
        code="SAVE10",
        discount_type="percentage",
        value="10",
        max_discount=None,
        minimum="0",
        usage_limit=None,
        per_customer=None,
        status="active",
        start=None,
        end=None,
    ):
        now = utcnow()
        voucher = Voucher(
            code=code,
            discount_type=discount_type,
            discount_value=Decimal(value),
            max_discount_amount=Decimal(max_discount) if max_discount is not None else None,
            minimum_order_amount=Decimal(minimum),
            start_date=start or now - timedelta(days=1),
            end_date=end or now + timedelta(days=1),
            usage_limit=usage_limit,
            usage_limit_per_customer=per_customer,
            usage_count=0,
            status=status,
        )
        db_session.add(voucher)
        db_session.commit()
        return voucher

    return _make


@pytest.fixture(scope='function')
def make_cart(db_session, vat_calculator):
    """Factory: guest cart filled with (product, quantity) pairs."""
    counter = itertools.count(1)

    def _make(lines, voucher_code=None):
        cart = cart_service.get_or_create_cart(session_id=f"session-{next(counter)}")
        for line_product, quantity in lines:
            cart = cart_service.add_item(cart.id, line_product.id, quantity, vat_calculator=vat_calculator)
        if voucher_code:
            cart = cart_service.apply_voucher(cart.id, voucher_code, vat_calculator=vat_calculator)
        return cart

    return _make


class FailingRenderer(ReceiptRenderer):
    """Renderer that always blows up, like a full disk."""

    def __init__(self):
        self.calls = 0

    def render(self, order, payment):
        self.calls += 1
        raise OSError("No space left on device")


@pytest.fixture(scope='function')
def failing_renderer():
    return FailingRenderer()


@pytest.fixture(scope='function')
def text_renderer(tmp_path):
    return TextReceiptRenderer(str(tmp_path / "receipts"))
