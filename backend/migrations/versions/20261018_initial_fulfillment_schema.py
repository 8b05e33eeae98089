"""Initial fulfillment schema

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18

This migration adds:
1. products and stock_history (stock ledger)
2. carts and cart_items
3. vouchers and voucher_usage
4. orders and order_items
5. payments and receipt_jobs (post-commit receipt rendering queue)
6. document_sequences (per-day order/receipt counters)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    # ==========================================================================
    # 1. PRODUCTS / STOCK LEDGER
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price_excl_vat', sa.Numeric(12, 2), nullable=False),
        sa.Column('vat_rate', sa.Numeric(5, 2), nullable=True),
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        *_timestamps(),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_products_stock_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_products_status', 'products', ['status'])

    op.create_table('stock_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity_change', sa.Integer(), nullable=False),
        sa.Column('quantity_before', sa.Integer(), nullable=False),
        sa.Column('quantity_after', sa.Integer(), nullable=False),
        sa.Column('change_type', sa.String(length=32), nullable=False),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_history_product_id', 'stock_history', ['product_id'])
    op.create_index('ix_stock_history_change_type', 'stock_history', ['change_type'])
    op.create_index('ix_stock_history_product_created', 'stock_history', ['product_id', 'created_at'])
    op.create_index('ix_stock_history_reference', 'stock_history', ['reference_type', 'reference_id'])

    # ==========================================================================
    # 2. CARTS
    # ==========================================================================
    op.create_table('carts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('session_id', sa.String(length=128), nullable=True),
        sa.Column('voucher_code', sa.String(length=64), nullable=True),
        sa.Column('subtotal_excl_vat', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total_vat', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_carts_user_id', 'carts', ['user_id'])
    op.create_index('ix_carts_session_id', 'carts', ['session_id'])

    op.create_table('cart_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cart_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_excl_vat', sa.Numeric(12, 2), nullable=False),
        sa.Column('vat_rate', sa.Numeric(5, 2), nullable=False),
        sa.Column('unit_vat_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('unit_price_incl_vat', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total_excl_vat', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total_vat', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total_incl_vat', sa.Numeric(12, 2), nullable=False),
        sa.ForeignKeyConstraint(['cart_id'], ['carts.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('cart_id', 'product_id', name='uq_cart_items_cart_product'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_cart_items_cart_id', 'cart_items', ['cart_id'])

    # ==========================================================================
    # 3. VOUCHERS
    # ==========================================================================
    op.create_table('vouchers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('discount_type', sa.String(length=16), nullable=False),
        sa.Column('discount_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('max_discount_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('minimum_order_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('usage_limit_per_customer', sa.Integer(), nullable=True),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sqlite_autoincrement=True,
    )

    # ==========================================================================
    # 4. ORDERS
    # ==========================================================================
    op.create_table('orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('guest_name', sa.String(length=255), nullable=True),
        sa.Column('guest_email', sa.String(length=255), nullable=True),
        sa.Column('guest_phone', sa.String(length=32), nullable=True),
        sa.Column('shipping_address', sa.Text(), nullable=True),
        sa.Column('shipping_subdistrict', sa.String(length=128), nullable=True),
        sa.Column('shipping_district', sa.String(length=128), nullable=True),
        sa.Column('shipping_province', sa.String(length=128), nullable=True),
        sa.Column('shipping_postal_code', sa.String(length=16), nullable=True),
        sa.Column('subtotal_excl_vat', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_vat', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('shipping_cost', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('voucher_code', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('tracking_number', sa.String(length=128), nullable=True),
        sa.Column('packing_media_path', sa.String(length=512), nullable=True),
        sa.Column('source_platform', sa.String(length=32), nullable=False, server_default='website'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])

    op.create_table('order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('product_sku', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_excl_vat', sa.Numeric(12, 2), nullable=False),
        sa.Column('vat_rate', sa.Numeric(5, 2), nullable=False),
        sa.Column('unit_vat_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('unit_price_incl_vat', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total_incl_vat', sa.Numeric(12, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    op.create_table('voucher_usage',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('voucher_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['voucher_id'], ['vouchers.id']),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_voucher_usage_voucher_id', 'voucher_usage', ['voucher_id'])
    op.create_index('ix_voucher_usage_user_id', 'voucher_usage', ['user_id'])
    op.create_index('ix_voucher_usage_order_id', 'voucher_usage', ['order_id'])

    # ==========================================================================
    # 5. PAYMENTS / RECEIPT JOBS
    # ==========================================================================
    op.create_table('payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=False, server_default='bank_transfer'),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('slip_image_path', sa.String(length=512), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('slip_verified', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('verification_response', sa.Text(), nullable=True),
        sa.Column('verified_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('transfer_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('receipt_number', sa.String(length=64), nullable=True),
        sa.Column('receipt_generated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('receipt_file_path', sa.String(length=512), nullable=True),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('receipt_number'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_payments_order_id', 'payments', ['order_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index('ix_payments_created_at', 'payments', ['created_at'])
    op.create_index('ix_payments_order_created', 'payments', ['order_id', 'created_at'])

    op.create_table('receipt_jobs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('file_path', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id']),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_id', name='uq_receipt_jobs_payment'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_receipt_jobs_order_id', 'receipt_jobs', ['order_id'])
    op.create_index('ix_receipt_jobs_status', 'receipt_jobs', ['status'])

    # ==========================================================================
    # 6. DOCUMENT SEQUENCES
    # ==========================================================================
    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('sequence_date', sa.String(length=8), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type', 'sequence_date', name='uq_doc_sequences_type_date'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_document_sequences_document_type', 'document_sequences', ['document_type'])


def downgrade():
    op.drop_table('document_sequences')
    op.drop_table('receipt_jobs')
    op.drop_table('payments')
    op.drop_table('voucher_usage')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('vouchers')
    op.drop_table('cart_items')
    op.drop_table('carts')
    op.drop_table('stock_history')
    op.drop_table('products')
