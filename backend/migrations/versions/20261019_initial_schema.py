"""Initial schema: catalog, cash sessions, order channels, rewards, finance

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration creates:
1. Catalog (categories, sizes, products, size prices, cost history)
2. Customers with loyalty and cashback ledgers
3. Coupons and coupon usages
4. Cash sessions and per-method close breakdown
5. Sales, comandas and delivery orders (items, payments, adjustments)
6. Loyalty / cashback / payment-method configuration and delivery fee table
7. Financial categories, transactions, payables and receivables
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


NOW = sa.text('(CURRENT_TIMESTAMP)')


def _timestamps(updated=True):
    cols = [sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False)]
    if updated:
        cols.append(sa.Column('updated_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False))
    return cols


def _settled_order_columns():
    return [
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('coupon_discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('loyalty_points_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('loyalty_discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cashback_used_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('loyalty_points_earned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cashback_earned_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('loyalty_points_reversed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cashback_reversed_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
    ]


def _item_columns(parent_column, parent_table):
    return [
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column(parent_column, sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('size_id', sa.Integer(), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('size_name', sa.String(length=32), nullable=True),
        sa.Column('flavor_count', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint([parent_column], [f'{parent_table}.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['size_id'], ['category_sizes.id'], ),
        sa.PrimaryKeyConstraint('id'),
    ]


def _payment_table(name, parent_column, parent_table):
    op.create_table(name,
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column(parent_column, sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint([parent_column], [f'{parent_table}.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index(f'ix_{name}_{parent_column}', name, [parent_column], unique=False)


def _reward_ledger_columns():
    return [
        sa.Column('transaction_type', sa.String(length=16), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('source_transaction_id', sa.Integer(), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('comanda_id', sa.Integer(), nullable=True),
        sa.Column('delivery_order_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
    ]


def _index_reward_ledger(name):
    for column in ('customer_id', 'transaction_type', 'source_transaction_id', 'sale_id', 'comanda_id', 'delivery_order_id', 'created_at'):
        op.create_index(f'ix_{name}_{column}', name, [column], unique=False)


def upgrade():
    # ==========================================================================
    # 1. CATALOG
    # ==========================================================================
    op.create_table('categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category_type', sa.String(length=16), nullable=False, server_default='STANDARD'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    op.create_table('category_sizes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=32), nullable=False),
        sa.Column('max_flavors', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('display_order', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('category_id', 'name', name='uq_category_sizes_category_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_category_sizes_category_id', 'category_sizes', ['category_id'], unique=False)

    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=True),
        sa.Column('sale_type', sa.String(length=16), nullable=False, server_default='UNIT'),
        sa.Column('sale_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cost_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('track_stock', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('current_stock', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('min_stock', sa.Numeric(12, 3), nullable=True),
        sa.Column('eligible_for_loyalty', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('earns_cashback', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_category_id', 'products', ['category_id'], unique=False)
    op.create_index('ix_products_is_active', 'products', ['is_active'], unique=False)

    op.create_table('product_costs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('cost_cents', sa.Integer(), nullable=False),
        sa.Column('valid_from', sa.DateTime(timezone=True), nullable=False),
        sa.Column('valid_to', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_product_costs_product_id', 'product_costs', ['product_id'], unique=False)
    op.create_index('ix_product_costs_product_valid_from', 'product_costs', ['product_id', 'valid_from'], unique=False)

    op.create_table('product_size_prices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('size_id', sa.Integer(), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['size_id'], ['category_sizes.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'size_id', name='uq_product_size_prices_product_size'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_product_size_prices_product_id', 'product_size_prices', ['product_id'], unique=False)
    op.create_index('ix_product_size_prices_size_id', 'product_size_prices', ['size_id'], unique=False)

    # ==========================================================================
    # 2. CUSTOMERS & REWARD LEDGERS
    # ==========================================================================
    op.create_table('customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('cpf', sa.String(length=14), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('loyalty_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cashback_balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sa.UniqueConstraint('cpf'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_customers_is_active', 'customers', ['is_active'], unique=False)

    op.create_table('loyalty_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        *_reward_ledger_columns(),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    _index_reward_ledger('loyalty_transactions')

    op.create_table('cashback_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('balance_after_cents', sa.Integer(), nullable=False),
        *_reward_ledger_columns(),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    _index_reward_ledger('cashback_transactions')

    # ==========================================================================
    # 3. COUPONS
    # ==========================================================================
    op.create_table('coupons',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('discount_type', sa.String(length=16), nullable=False),
        sa.Column('discount_value', sa.Integer(), nullable=False),
        sa.Column('min_purchase_cents', sa.Integer(), nullable=True),
        sa.Column('max_discount_cents', sa.Integer(), nullable=True),
        sa.Column('valid_from', sa.DateTime(timezone=True), nullable=False),
        sa.Column('valid_to', sa.DateTime(timezone=True), nullable=False),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_coupons_status', 'coupons', ['status'], unique=False)

    op.create_table('coupon_usages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('coupon_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('order_ref', sa.String(length=64), nullable=False),
        sa.Column('discount_applied_cents', sa.Integer(), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['coupon_id'], ['coupons.id'], ),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_coupon_usages_coupon_id', 'coupon_usages', ['coupon_id'], unique=False)
    op.create_index('ix_coupon_usages_customer_id', 'coupon_usages', ['customer_id'], unique=False)

    # ==========================================================================
    # 4. CASH SESSIONS
    # ==========================================================================
    op.create_table('cash_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('terminal_id', sa.String(length=64), nullable=False),
        sa.Column('opened_by_user_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('initial_cash_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_sales_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cash_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_debit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_credit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_pix_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_other_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('counted_cash_cents', sa.Integer(), nullable=True),
        sa.Column('cashier_difference_cents', sa.Integer(), nullable=True),
        sa.Column('cashier_closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cashier_closed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('cashier_notes', sa.Text(), nullable=True),
        sa.Column('manager_validated', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('manager_closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('manager_closed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('manager_notes', sa.Text(), nullable=True),
        sa.Column('opened_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_sessions_terminal_id', 'cash_sessions', ['terminal_id'], unique=False)
    op.create_index('ix_cash_sessions_status', 'cash_sessions', ['status'], unique=False)
    op.create_index('ix_cash_sessions_opened_at', 'cash_sessions', ['opened_at'], unique=False)
    op.create_index('ix_cash_sessions_terminal_status', 'cash_sessions', ['terminal_id', 'status'], unique=False)
    op.create_index(
        'uq_cash_sessions_terminal_open', 'cash_sessions', ['terminal_id'], unique=True,
        postgresql_where=sa.text("status = 'OPEN'"), sqlite_where=sa.text("status = 'OPEN'"),
    )

    op.create_table('cash_session_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cash_session_id', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('expected_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('counted_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('difference_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['cash_session_id'], ['cash_sessions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('cash_session_id', 'method', name='uq_cash_session_payments_session_method'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_session_payments_cash_session_id', 'cash_session_payments', ['cash_session_id'], unique=False)

    # ==========================================================================
    # 5. ORDER CHANNELS
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cash_session_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('coupon_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        *_settled_order_columns(),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='COMPLETED'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['cash_session_id'], ['cash_sessions.id'], ),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.ForeignKeyConstraint(['coupon_id'], ['coupons.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_cash_session_id', 'sales', ['cash_session_id'], unique=False)
    op.create_index('ix_sales_customer_id', 'sales', ['customer_id'], unique=False)
    op.create_index('ix_sales_status', 'sales', ['status'], unique=False)
    op.create_index('ix_sales_created_at', 'sales', ['created_at'], unique=False)
    op.create_index('ix_sales_session_status', 'sales', ['cash_session_id', 'status'], unique=False)

    op.create_table('sale_items', *_item_columns('sale_id', 'sales'), sqlite_autoincrement=True)
    op.create_index('ix_sale_items_sale_id', 'sale_items', ['sale_id'], unique=False)
    op.create_index('ix_sale_items_product_id', 'sale_items', ['product_id'], unique=False)
    _payment_table('sale_payments', 'sale_id', 'sales')

    op.create_table('sale_adjustments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('adjustment_type', sa.String(length=16), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('previous_status', sa.String(length=16), nullable=False),
        sa.Column('new_status', sa.String(length=16), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sale_adjustments_sale_id', 'sale_adjustments', ['sale_id'], unique=False)

    op.create_table('comandas',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('number', sa.Integer(), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('cash_session_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('coupon_id', sa.Integer(), nullable=True),
        sa.Column('opened_by_user_id', sa.Integer(), nullable=False),
        sa.Column('closed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('table_number', sa.String(length=16), nullable=True),
        sa.Column('customer_name', sa.String(length=128), nullable=True),
        sa.Column('additional_fee_cents', sa.Integer(), nullable=False, server_default='0'),
        *_settled_order_columns(),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('opened_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['cash_session_id'], ['cash_sessions.id'], ),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.ForeignKeyConstraint(['coupon_id'], ['coupons.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_date', 'number', name='uq_comandas_business_date_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_comandas_business_date', 'comandas', ['business_date'], unique=False)
    op.create_index('ix_comandas_cash_session_id', 'comandas', ['cash_session_id'], unique=False)
    op.create_index('ix_comandas_customer_id', 'comandas', ['customer_id'], unique=False)
    op.create_index('ix_comandas_status', 'comandas', ['status'], unique=False)
    op.create_index('ix_comandas_closed_at', 'comandas', ['closed_at'], unique=False)

    op.create_table('comanda_items',
        *_item_columns('comanda_id', 'comandas'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.Column('item_notes', sa.String(length=255), nullable=True),
        sa.Column('added_by_user_id', sa.Integer(), nullable=False),
        sa.Column('added_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sqlite_autoincrement=True
    )
    op.create_index('ix_comanda_items_comanda_id', 'comanda_items', ['comanda_id'], unique=False)
    op.create_index('ix_comanda_items_product_id', 'comanda_items', ['product_id'], unique=False)
    _payment_table('comanda_payments', 'comanda_id', 'comandas')

    op.create_table('delivery_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cash_session_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('coupon_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('neighborhood', sa.String(length=128), nullable=True),
        sa.Column('city', sa.String(length=128), nullable=True),
        sa.Column('reference_point', sa.String(length=255), nullable=True),
        sa.Column('delivery_fee_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('estimated_time', sa.String(length=32), nullable=True),
        *_settled_order_columns(),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='RECEIVED'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column('preparing_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('out_for_delivery_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['cash_session_id'], ['cash_sessions.id'], ),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.ForeignKeyConstraint(['coupon_id'], ['coupons.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_delivery_orders_cash_session_id', 'delivery_orders', ['cash_session_id'], unique=False)
    op.create_index('ix_delivery_orders_customer_id', 'delivery_orders', ['customer_id'], unique=False)
    op.create_index('ix_delivery_orders_status', 'delivery_orders', ['status'], unique=False)
    op.create_index('ix_delivery_orders_created_at', 'delivery_orders', ['created_at'], unique=False)
    op.create_index('ix_delivery_orders_delivered_at', 'delivery_orders', ['delivered_at'], unique=False)

    op.create_table('delivery_items', *_item_columns('delivery_order_id', 'delivery_orders'), sqlite_autoincrement=True)
    op.create_index('ix_delivery_items_delivery_order_id', 'delivery_items', ['delivery_order_id'], unique=False)
    op.create_index('ix_delivery_items_product_id', 'delivery_items', ['product_id'], unique=False)
    _payment_table('delivery_payments', 'delivery_order_id', 'delivery_orders')

    # ==========================================================================
    # 6. CONFIGURATION
    # ==========================================================================
    op.create_table('delivery_fees',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('neighborhood', sa.String(length=128), nullable=False),
        sa.Column('city', sa.String(length=128), nullable=False),
        sa.Column('fee_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_order_value_cents', sa.Integer(), nullable=True),
        sa.Column('free_delivery_above_cents', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('neighborhood', 'city', name='uq_delivery_fees_neighborhood_city'),
        sqlite_autoincrement=True
    )

    op.create_table('loyalty_configs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('points_per_real', sa.Numeric(8, 2), nullable=False, server_default='1'),
        sa.Column('min_purchase_for_points_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('points_expiration_days', sa.Integer(), nullable=True),
        sa.Column('min_points_to_redeem', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('points_redemption_value_cents', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('apply_to_all_products', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('eligibility_policy', sa.String(length=16), nullable=False, server_default='WHOLE_TOTAL'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    op.create_table('cashback_configs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cashback_bps', sa.Integer(), nullable=False, server_default='500'),
        sa.Column('min_purchase_for_cashback_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_cashback_per_purchase_cents', sa.Integer(), nullable=True),
        sa.Column('cashback_expiration_days', sa.Integer(), nullable=True),
        sa.Column('min_cashback_to_use_cents', sa.Integer(), nullable=False, server_default='500'),
        sa.Column('apply_to_all_products', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('eligibility_policy', sa.String(length=16), nullable=False, server_default='WHOLE_TOTAL'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    op.create_table('payment_method_configs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('fee_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('settlement_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('method'),
        sqlite_autoincrement=True
    )

    # ==========================================================================
    # 7. FINANCE
    # ==========================================================================
    op.create_table('financial_categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('category_type', sa.String(length=16), nullable=False),
        sa.Column('dre_group', sa.String(length=32), nullable=False, server_default='OPERATING_EXPENSES'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', 'category_type', name='uq_financial_categories_name_type'),
        sqlite_autoincrement=True
    )

    op.create_table('financial_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(length=16), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('transaction_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reference_number', sa.String(length=96), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('comanda_id', sa.Integer(), nullable=True),
        sa.Column('delivery_order_id', sa.Integer(), nullable=True),
        sa.Column('cash_session_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['category_id'], ['financial_categories.id'], ),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.ForeignKeyConstraint(['comanda_id'], ['comandas.id'], ),
        sa.ForeignKeyConstraint(['delivery_order_id'], ['delivery_orders.id'], ),
        sa.ForeignKeyConstraint(['cash_session_id'], ['cash_sessions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    for column in ('category_id', 'status', 'reference_number', 'sale_id', 'comanda_id', 'delivery_order_id', 'cash_session_id'):
        op.create_index(f'ix_financial_transactions_{column}', 'financial_transactions', [column], unique=False)
    op.create_index('ix_financial_transactions_type_date', 'financial_transactions', ['transaction_type', 'transaction_date'], unique=False)

    op.create_table('accounts_payable',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=False),
        sa.Column('supplier_name', sa.String(length=255), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['category_id'], ['financial_categories.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_accounts_payable_category_id', 'accounts_payable', ['category_id'], unique=False)
    op.create_index('ix_accounts_payable_due_date', 'accounts_payable', ['due_date'], unique=False)
    op.create_index('ix_accounts_payable_status', 'accounts_payable', ['status'], unique=False)

    op.create_table('accounts_receivable',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['category_id'], ['financial_categories.id'], ),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_accounts_receivable_category_id', 'accounts_receivable', ['category_id'], unique=False)
    op.create_index('ix_accounts_receivable_customer_id', 'accounts_receivable', ['customer_id'], unique=False)
    op.create_index('ix_accounts_receivable_due_date', 'accounts_receivable', ['due_date'], unique=False)
    op.create_index('ix_accounts_receivable_status', 'accounts_receivable', ['status'], unique=False)


def downgrade():
    for table in (
        'accounts_receivable', 'accounts_payable', 'financial_transactions', 'financial_categories',
        'payment_method_configs', 'cashback_configs', 'loyalty_configs', 'delivery_fees',
        'delivery_payments', 'delivery_items', 'delivery_orders',
        'comanda_payments', 'comanda_items', 'comandas',
        'sale_adjustments', 'sale_payments', 'sale_items', 'sales',
        'cash_session_payments', 'cash_sessions',
        'coupon_usages', 'coupons',
        'cashback_transactions', 'loyalty_transactions', 'customers',
        'product_size_prices', 'product_costs', 'products', 'category_sizes', 'categories',
    ):
        op.drop_table(table)
