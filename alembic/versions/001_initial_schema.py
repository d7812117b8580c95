"""Initial schema - credentials, products, listings, orders and sync bookkeeping

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        'marketplace_credentials',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('seller_id', sa.String(), nullable=False),
        sa.Column('platform', sa.String(), nullable=False),
        sa.Column('external_account_id', sa.String(), nullable=False),
        sa.Column('account_name', sa.String(), nullable=True),
        sa.Column('encrypted_access_token', sa.Text(), nullable=False),
        sa.Column('encrypted_refresh_token', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_refreshed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(), nullable=True),
        sa.Column('platform_metadata', sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column('order_watermark', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sync_status', sa.String(), nullable=True),
        sa.Column('last_sync_error', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_marketplace_credentials_seller_id', 'marketplace_credentials', ['seller_id'])
    op.create_index('ix_marketplace_credentials_platform', 'marketplace_credentials', ['platform'])
    op.create_index('ix_marketplace_credentials_revoked', 'marketplace_credentials', ['revoked'])
    # At most one active credential per (seller, platform, account)
    op.create_index(
        'uq_active_credential',
        'marketplace_credentials',
        ['seller_id', 'platform', 'external_account_id'],
        unique=True,
        postgresql_where=sa.text('NOT revoked'),
    )

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('seller_id', sa.String(), nullable=False),
        sa.Column('sku', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=True),
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
    )
    op.create_index('ix_products_seller_id', 'products', ['seller_id'])
    op.create_index('ix_products_sku', 'products', ['sku'])

    op.create_table(
        'product_listings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('platform', sa.String(), nullable=False),
        sa.Column('integration_id', sa.Integer(), sa.ForeignKey('marketplace_credentials.id'), nullable=False),
        sa.Column('platform_product_id', sa.String(), nullable=True),
        sa.Column('platform_variant_id', sa.String(), nullable=True),
        sa.Column('platform_url', sa.String(), nullable=True),
        sa.Column('sync_status', sa.String(), nullable=False, server_default='not_published'),
        sa.Column('sync_error', sa.Text(), nullable=True),
        sa.Column('remote_stock', sa.Integer(), nullable=True),
        sa.Column('remote_status', sa.String(), nullable=True),
        sa.Column('platform_metadata', sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column('last_checked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('republished_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('product_id', 'platform', 'integration_id', name='uq_listing_per_account'),
    )
    op.create_index('ix_product_listings_product_id', 'product_listings', ['product_id'])
    op.create_index('ix_product_listings_integration_id', 'product_listings', ['integration_id'])
    op.create_index('ix_product_listings_platform_product_id', 'product_listings', ['platform_product_id'])
    op.create_index('ix_product_listings_sync_status', 'product_listings', ['sync_status'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('seller_id', sa.String(), nullable=False),
        sa.Column('credential_id', sa.Integer(), sa.ForeignKey('marketplace_credentials.id'), nullable=True),
        sa.Column('platform', sa.String(), nullable=False),
        sa.Column('external_order_id', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('raw_status', sa.String(), nullable=True),
        sa.Column('customer_name', sa.String(), nullable=True),
        sa.Column('customer_email', sa.String(), nullable=True),
        sa.Column('shipping_address', sa.JSON(), nullable=True),
        sa.Column('total_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('currency', sa.String(), nullable=True),
        sa.Column('items', sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column('ordered_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('platform', 'external_order_id', name='uq_order_platform_external_id'),
    )
    op.create_index('ix_orders_id', 'orders', ['id'])
    op.create_index('ix_orders_seller_id', 'orders', ['seller_id'])
    op.create_index('ix_orders_credential_id', 'orders', ['credential_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_ordered_at', 'orders', ['ordered_at'])

    op.create_table(
        'sync_runs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('sync_run_id', sa.String(), nullable=False),
        sa.Column('seller_id', sa.String(), nullable=False),
        sa.Column('credential_id', sa.Integer(), sa.ForeignKey('marketplace_credentials.id'), nullable=True),
        sa.Column('platform', sa.String(), nullable=False),
        sa.Column('trigger', sa.String(), nullable=False),
        sa.Column('outcome', sa.String(), nullable=False),
        sa.Column('orders_fetched', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('orders_new', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('orders_updated', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('orders_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('listings_checked', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('listings_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_sync_runs_sync_run_id', 'sync_runs', ['sync_run_id'])
    op.create_index('ix_sync_runs_seller_id', 'sync_runs', ['seller_id'])
    op.create_index('ix_sync_runs_credential_id', 'sync_runs', ['credential_id'])

    op.create_table(
        'sync_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('sync_run_id', sa.String(), nullable=True),
        sa.Column('seller_id', sa.String(), nullable=False),
        sa.Column('platform_name', sa.String(), nullable=False),
        sa.Column('credential_id', sa.Integer(), sa.ForeignKey('marketplace_credentials.id'), nullable=True),
        sa.Column('listing_id', sa.Integer(), sa.ForeignKey('product_listings.id'), nullable=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=True),
        sa.Column('external_id', sa.String(), nullable=True),
        sa.Column('change_type', sa.String(), nullable=False),
        sa.Column('change_data', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('detected_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
    )
    for column in ('id', 'sync_run_id', 'seller_id', 'platform_name', 'credential_id',
                   'listing_id', 'product_id', 'external_id', 'change_type', 'status'):
        op.create_index(f'ix_sync_events_{column}', 'sync_events', [column])


def downgrade() -> None:
    op.drop_table('sync_events')
    op.drop_table('sync_runs')
    op.drop_table('orders')
    op.drop_table('product_listings')
    op.drop_table('products')
    op.drop_index('uq_active_credential', table_name='marketplace_credentials')
    op.drop_table('marketplace_credentials')
