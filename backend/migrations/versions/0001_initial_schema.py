"""initial shopcore schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

This migration creates the complete shopcore schema from scratch:
- tenants / tenant_payment_configs: tenant identity and versioned provider config
- products: catalog rows read by cart and checkout
- cart_items: session carts with title/price snapshots
- coupons / coupon_redemptions: coupon definitions and the redemption ledger
- orders / order_items / payments / webhook_events: transaction core
- stock_movements / inventory_alerts: append-only stock ledger and alerts
- audit_events / document_sequences: audit trail and order numbering
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    """
    Create all tables.

    WHY: Uniqueness rules that guard concurrency live in the schema, not in
    application checks: order numbers per tenant, provider external ids,
    one redemption per coupon+order, one ledger row per order line, one
    open alert per product.
    """

    # ============================================================================
    # tenants
    # ============================================================================
    op.create_table(
        'tenants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=64), nullable=False),
        sa.Column('domain', sa.String(length=255), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('tax_rate_bps', sa.Integer(), nullable=False),
        sa.Column('shipping_flat_minor', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_tenants_slug', 'tenants', ['slug'], unique=True)
    op.create_index('ix_tenants_domain', 'tenants', ['domain'], unique=True)
    op.create_index('ix_tenants_is_active', 'tenants', ['is_active'])

    op.create_table(
        'tenant_payment_configs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('schema_version', sa.Integer(), nullable=False),
        sa.Column('config_json', sa.JSON(), nullable=False),
        sa.Column('updated_by', sa.String(length=64), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', name='uq_tenant_payment_configs_tenant'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_tenant_payment_configs_tenant_id', 'tenant_payment_configs', ['tenant_id'])

    # ============================================================================
    # products
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('price_minor', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('track_inventory', sa.Boolean(), nullable=False),
        sa.Column('low_stock_threshold', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_tenant_id', 'products', ['tenant_id'])
    op.create_index('ix_products_category_id', 'products', ['category_id'])
    op.create_index('ix_products_tenant_active', 'products', ['tenant_id', 'is_active'])

    # ============================================================================
    # cart_items
    # ============================================================================
    op.create_table(
        'cart_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('session_key', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('variant_key', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('title_snapshot', sa.String(length=255), nullable=False),
        sa.Column('price_snapshot_minor', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'session_key', 'product_id', 'variant_key',
                            name='uq_cart_items_tenant_session_product_variant'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cart_items_tenant_id', 'cart_items', ['tenant_id'])
    op.create_index('ix_cart_items_expires_at', 'cart_items', ['expires_at'])
    op.create_index('ix_cart_items_tenant_session', 'cart_items', ['tenant_id', 'session_key'])

    # ============================================================================
    # coupons
    # ============================================================================
    op.create_table(
        'coupons',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('code_normalized', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('value', sa.Integer(), nullable=False),
        sa.Column('minimum_order_amount', sa.Integer(), nullable=True),
        sa.Column('maximum_discount_amount', sa.Integer(), nullable=True),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('usage_count', sa.Integer(), nullable=False),
        sa.Column('reserved_count', sa.Integer(), nullable=False),
        sa.Column('valid_from', sa.DateTime(timezone=True), nullable=False),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=False),
        sa.Column('applicable_product_ids', sa.JSON(), nullable=True),
        sa.Column('applicable_category_ids', sa.JSON(), nullable=True),
        sa.Column('customer_restrictions', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'code_normalized', name='uq_coupons_tenant_code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_coupons_tenant_id', 'coupons', ['tenant_id'])
    op.create_index('ix_coupons_is_active', 'coupons', ['is_active'])

    # ============================================================================
    # orders / order_items
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('customer_id', sa.String(length=64), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=False),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('coupon_id', sa.Integer(), nullable=True),
        sa.Column('coupon_code', sa.String(length=32), nullable=True),
        sa.Column('subtotal', sa.Integer(), nullable=False),
        sa.Column('discount', sa.Integer(), nullable=False),
        sa.Column('tax', sa.Integer(), nullable=False),
        sa.Column('shipping', sa.Integer(), nullable=False),
        sa.Column('total', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('stock_debited', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['coupon_id'], ['coupons.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'order_number', name='uq_orders_tenant_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_orders_tenant_id', 'orders', ['tenant_id'])
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_coupon_id', 'orders', ['coupon_id'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_orders_tenant_status', 'orders', ['tenant_id', 'status'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('variant_key', sa.String(length=64), nullable=False),
        sa.Column('name_snapshot', sa.String(length=255), nullable=False),
        sa.Column('price_snapshot', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('line_total', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'line_number', name='uq_order_items_order_line'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_tenant_id', 'order_items', ['tenant_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    op.create_table(
        'coupon_redemptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('coupon_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.String(length=64), nullable=True),
        sa.Column('discount_amount', sa.Integer(), nullable=False),
        sa.Column('redeemed_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['coupon_id'], ['coupons.id']),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('coupon_id', 'order_id', name='uq_coupon_redemptions_coupon_order'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_coupon_redemptions_tenant_id', 'coupon_redemptions', ['tenant_id'])
    op.create_index('ix_coupon_redemptions_coupon_id', 'coupon_redemptions', ['coupon_id'])
    op.create_index('ix_coupon_redemptions_order_id', 'coupon_redemptions', ['order_id'])

    # ============================================================================
    # payments / webhook_events
    # ============================================================================
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('provider', sa.String(length=16), nullable=False),
        sa.Column('external_id', sa.String(length=128), nullable=True),
        sa.Column('redirect_url', sa.String(length=1024), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('amount_minor', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('raw_payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'external_id', name='uq_payments_provider_external'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payments_tenant_id', 'payments', ['tenant_id'])
    op.create_index('ix_payments_order_id', 'payments', ['order_id'])
    op.create_index('ix_payments_created_at', 'payments', ['created_at'])
    op.create_index('ix_payments_tenant_status', 'payments', ['tenant_id', 'status'])

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(length=16), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=True),
        sa.Column('external_id', sa.String(length=128), nullable=True),
        sa.Column('raw_body', sa.Text(), nullable=False),
        sa.Column('headers', sa.JSON(), nullable=True),
        sa.Column('processed', sa.Boolean(), nullable=False),
        sa.Column('outcome', sa.String(length=32), nullable=True),
        sa.Column('error', sa.String(length=255), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_webhook_events_tenant_id', 'webhook_events', ['tenant_id'])
    op.create_index('ix_webhook_events_received_at', 'webhook_events', ['received_at'])
    op.create_index('ix_webhook_events_provider_external', 'webhook_events', ['provider', 'external_id'])

    # ============================================================================
    # stock_movements / inventory_alerts
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('quantity_delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('reference', sa.String(length=64), nullable=True),
        sa.Column('reference_line', sa.Integer(), nullable=True),
        sa.Column('actor_id', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'type', 'reference', 'reference_line',
                            name='uq_stock_movements_tenant_type_reference_line'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_tenant_id', 'stock_movements', ['tenant_id'])
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_type', 'stock_movements', ['type'])
    op.create_index('ix_stock_movements_reference', 'stock_movements', ['reference'])
    op.create_index('ix_stock_movements_tenant_product_created', 'stock_movements',
                    ['tenant_id', 'product_id', 'created_at'])

    op.create_table(
        'inventory_alerts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('alert_type', sa.String(length=16), nullable=False),
        sa.Column('severity', sa.String(length=16), nullable=False),
        sa.Column('threshold', sa.Integer(), nullable=False),
        sa.Column('current_stock_at_alert', sa.Integer(), nullable=False),
        sa.Column('acknowledged', sa.Boolean(), nullable=False),
        sa.Column('acknowledged_by', sa.String(length=64), nullable=True),
        sa.Column('acknowledged_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_alerts_tenant_id', 'inventory_alerts', ['tenant_id'])
    op.create_index('ix_inventory_alerts_product_id', 'inventory_alerts', ['product_id'])
    op.create_index('ix_inventory_alerts_tenant_ack', 'inventory_alerts', ['tenant_id', 'acknowledged'])
    # One open alert per product; acknowledged alerts are history
    op.create_index(
        'uq_inventory_alerts_open_per_product',
        'inventory_alerts',
        ['tenant_id', 'product_id'],
        unique=True,
        sqlite_where=sa.text('acknowledged = 0'),
        postgresql_where=sa.text('acknowledged = false'),
    )

    # ============================================================================
    # audit_events / document_sequences
    # ============================================================================
    op.create_table(
        'audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=True),
        sa.Column('actor', sa.String(length=64), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('target_type', sa.String(length=32), nullable=True),
        sa.Column('target_id', sa.String(length=64), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_events_tenant_id', 'audit_events', ['tenant_id'])
    op.create_index('ix_audit_events_action', 'audit_events', ['action'])
    op.create_index('ix_audit_events_tenant_occurred', 'audit_events', ['tenant_id', 'occurred_at'])
    op.create_index('ix_audit_events_target', 'audit_events', ['target_type', 'target_id'])

    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'document_type', name='uq_doc_sequences_tenant_type'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_document_sequences_tenant_id', 'document_sequences', ['tenant_id'])


def downgrade():
    """Drop all tables in reverse dependency order."""
    op.drop_table('document_sequences')
    op.drop_table('audit_events')
    op.drop_index('uq_inventory_alerts_open_per_product', table_name='inventory_alerts')
    op.drop_table('inventory_alerts')
    op.drop_table('stock_movements')
    op.drop_table('webhook_events')
    op.drop_table('payments')
    op.drop_table('coupon_redemptions')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('coupons')
    op.drop_table('cart_items')
    op.drop_table('products')
    op.drop_table('tenant_payment_configs')
    op.drop_table('tenants')
