"""Initial schema - products, stores, mappings, inventory, sync log, conflicts, webhook ledger

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('sku', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('tracks_inventory', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('inventory_policy', sa.String(length=8), nullable=False, server_default='DENY'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=False), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=False), nullable=False),
    )
    op.create_index('ix_products_sku', 'products', ['sku'], unique=True)

    op.create_table(
        'stores',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('shop_domain', sa.String(), nullable=False),
        sa.Column('access_token', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('sync_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('installed_at', sa.TIMESTAMP(timezone=False), nullable=False),
        sa.Column('uninstalled_at', sa.TIMESTAMP(timezone=False), nullable=True),
    )
    op.create_index('ix_stores_shop_domain', 'stores', ['shop_domain'], unique=True)

    op.create_table(
        'store_locations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('shopify_location_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.TIMESTAMP(timezone=False), nullable=False),
        sa.UniqueConstraint('store_id', 'shopify_location_id', name='uq_store_location'),
    )
    op.create_index('ix_store_locations_store_id', 'store_locations', ['store_id'])

    op.create_table(
        'product_store_mappings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('shopify_product_id', sa.String(), nullable=True),
        sa.Column('shopify_variant_id', sa.String(), nullable=True),
        sa.Column('shopify_inventory_item_id', sa.String(), nullable=True),
        sa.Column('last_synced_at', sa.TIMESTAMP(timezone=False), nullable=True),
        sa.Column('sync_status', sa.String(), nullable=False, server_default='PENDING'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=False), nullable=False),
        sa.UniqueConstraint('product_id', 'store_id', name='uq_product_store_mapping'),
    )
    op.create_index('ix_product_store_mappings_product_id', 'product_store_mappings', ['product_id'])
    op.create_index('ix_product_store_mappings_store_id', 'product_store_mappings', ['store_id'])
    op.create_index('ix_product_store_mappings_shopify_product_id', 'product_store_mappings', ['shopify_product_id'])
    op.create_index('ix_product_store_mappings_shopify_inventory_item_id', 'product_store_mappings',
                    ['shopify_inventory_item_id'])

    op.create_table(
        'inventory',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False, unique=True),
        sa.Column('available_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('committed_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('incoming_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_adjusted_at', sa.TIMESTAMP(timezone=False), nullable=False),
        sa.Column('last_adjusted_by', sa.String(), nullable=True),
    )

    op.create_table(
        'inventory_locations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('location_id', sa.Integer(), sa.ForeignKey('store_locations.id'), nullable=False),
        sa.Column('available_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('committed_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('incoming_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_adjusted_at', sa.TIMESTAMP(timezone=False), nullable=False),
        sa.Column('last_adjusted_by', sa.String(), nullable=True),
        sa.UniqueConstraint('product_id', 'location_id', name='uq_inventory_product_location'),
    )
    op.create_index('ix_inventory_locations_product_id', 'inventory_locations', ['product_id'])
    op.create_index('ix_inventory_locations_location_id', 'inventory_locations', ['location_id'])

    op.create_table(
        'sync_operations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('operation_type', sa.String(), nullable=False),
        sa.Column('direction', sa.String(), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=True),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='PENDING'),
        sa.Column('previous_value', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('new_value', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('triggered_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=False), nullable=False),
        sa.Column('started_at', sa.TIMESTAMP(timezone=False), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=False), nullable=True),
    )
    for column in ('id', 'operation_type', 'direction', 'product_id', 'store_id', 'status', 'completed_at'):
        op.create_index(f'ix_sync_operations_{column}', 'sync_operations', [column])

    op.create_table(
        'conflicts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('conflict_type', sa.String(), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('central_value', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('store_value', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('resolution_strategy', sa.String(), nullable=False, server_default='USE_DATABASE'),
        sa.Column('resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('resolved_value', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('resolved_by', sa.String(), nullable=True),
        sa.Column('resolved_at', sa.TIMESTAMP(timezone=False), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=False), nullable=False),
    )
    for column in ('conflict_type', 'product_id', 'store_id', 'resolved'):
        op.create_index(f'ix_conflicts_{column}', 'conflicts', [column])

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('event_id', sa.String(), nullable=False),
        sa.Column('topic', sa.String(), nullable=False),
        sa.Column('shop_domain', sa.String(), nullable=False),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('processed_at', sa.TIMESTAMP(timezone=False), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_retries', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('received_at', sa.TIMESTAMP(timezone=False), nullable=False),
    )
    op.create_index('ix_webhook_events_event_id', 'webhook_events', ['event_id'], unique=True)
    op.create_index('ix_webhook_events_shop_domain', 'webhook_events', ['shop_domain'])
    op.create_index('ix_webhook_events_processed', 'webhook_events', ['processed'])
    op.create_index('ix_webhook_events_received_at', 'webhook_events', ['received_at'])


def downgrade() -> None:
    op.drop_table('webhook_events')
    op.drop_table('conflicts')
    op.drop_table('sync_operations')
    op.drop_table('inventory_locations')
    op.drop_table('inventory')
    op.drop_table('product_store_mappings')
    op.drop_table('store_locations')
    op.drop_table('stores')
    op.drop_table('products')
