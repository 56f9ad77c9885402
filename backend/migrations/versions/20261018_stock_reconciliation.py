"""Stock reconciliation schema

Revision ID: 20261018_stock
Revises:
Create Date: 2026-10-18

This migration adds:
1. Reference data (warehouses, locations, products, batches, presentations)
2. Movement requests and their items
3. Inventory balances and the stock movement ledger
4. Stock returns and their items
5. Audit events and document sequences
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_stock'
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False)


def upgrade():
    # ==========================================================================
    # 1. REFERENCE DATA
    # ==========================================================================
    op.create_table('warehouses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('city', sa.String(length=128), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _created_at(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'code', name='uq_warehouses_tenant_code'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('warehouses', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_warehouses_tenant_id'), ['tenant_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_warehouses_city'), ['city'], unique=False)

    op.create_table('locations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _created_at(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('warehouse_id', 'code', name='uq_locations_warehouse_code'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('locations', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_locations_tenant_id'), ['tenant_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_locations_warehouse_id'), ['warehouse_id'], unique=False)

    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('generic_name', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _created_at(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'sku', name='uq_products_tenant_sku'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_products_tenant_id'), ['tenant_id'], unique=False)

    op.create_table('batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('batch_number', sa.String(length=64), nullable=False),
        sa.Column('expires_at', sa.Date(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'product_id', 'batch_number', name='uq_batches_tenant_product_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('batches', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_batches_tenant_id'), ['tenant_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_batches_product_id'), ['product_id'], unique=False)

    op.create_table('product_presentations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('units_per_presentation', sa.Numeric(precision=18, scale=4), nullable=False),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _created_at(),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('product_presentations', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_product_presentations_tenant_id'), ['tenant_id'], unique=False)
        batch_op.create_index('ix_presentations_tenant_product', ['tenant_id', 'product_id'], unique=False)

    # ==========================================================================
    # 2. MOVEMENT REQUESTS
    # ==========================================================================
    op.create_table('movement_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('confirmation_status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('warehouse_id', sa.Integer(), nullable=False),
        sa.Column('destination_location_id', sa.Integer(), nullable=False),
        sa.Column('requested_city', sa.String(length=128), nullable=True),
        sa.Column('requested_by_id', sa.String(length=128), nullable=True),
        sa.Column('requested_by_name', sa.String(length=255), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('fulfilled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('fulfilled_by', sa.String(length=128), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirmed_by', sa.String(length=128), nullable=True),
        sa.Column('confirmation_note', sa.Text(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by', sa.String(length=128), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id'], ),
        sa.ForeignKeyConstraint(['destination_location_id'], ['locations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('movement_requests', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_movement_requests_tenant_id'), ['tenant_id'], unique=False)
        batch_op.create_index('ix_movement_requests_tenant_status', ['tenant_id', 'status'], unique=False)
        batch_op.create_index('ix_movement_requests_tenant_confirmation', ['tenant_id', 'confirmation_status'], unique=False)
        batch_op.create_index('ix_movement_requests_tenant_warehouse', ['tenant_id', 'warehouse_id'], unique=False)
        batch_op.create_index('ix_movement_requests_tenant_city_status', ['tenant_id', 'requested_city', 'status'], unique=False)

    op.create_table('movement_request_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('requested_quantity', sa.Numeric(precision=18, scale=4), nullable=False),
        sa.Column('remaining_quantity', sa.Numeric(precision=18, scale=4), nullable=False),
        sa.Column('presentation_id', sa.Integer(), nullable=True),
        sa.Column('presentation_quantity', sa.Numeric(precision=18, scale=4), nullable=True),
        _created_at(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('requested_quantity > 0', name='ck_request_items_requested_positive'),
        sa.CheckConstraint('remaining_quantity >= 0', name='ck_request_items_remaining_nonneg'),
        sa.CheckConstraint('remaining_quantity <= requested_quantity', name='ck_request_items_remaining_le_requested'),
        sa.ForeignKeyConstraint(['request_id'], ['movement_requests.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['presentation_id'], ['product_presentations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('movement_request_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_movement_request_items_tenant_id'), ['tenant_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_movement_request_items_request_id'), ['request_id'], unique=False)
        batch_op.create_index('ix_request_items_tenant_product_remaining', ['tenant_id', 'product_id', 'remaining_quantity'], unique=False)

    # ==========================================================================
    # 3. BALANCES AND MOVEMENTS
    # ==========================================================================
    op.create_table('inventory_balances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=True),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('reserved_quantity', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('quantity >= 0', name='ck_balances_quantity_nonneg'),
        sa.CheckConstraint('reserved_quantity >= 0', name='ck_balances_reserved_nonneg'),
        sa.CheckConstraint('reserved_quantity <= quantity', name='ck_balances_reserved_le_quantity'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id'], ),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'product_id', 'batch_id', 'location_id', name='uq_balances_tenant_product_batch_location'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('inventory_balances', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_inventory_balances_tenant_id'), ['tenant_id'], unique=False)
        batch_op.create_index('ix_balances_tenant_location', ['tenant_id', 'location_id'], unique=False)
        batch_op.create_index('ix_balances_tenant_product', ['tenant_id', 'product_id'], unique=False)

    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('number', sa.String(length=32), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=True),
        sa.Column('from_location_id', sa.Integer(), nullable=True),
        sa.Column('to_location_id', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Numeric(precision=18, scale=4), nullable=False),
        sa.Column('pending_quantity', sa.Numeric(precision=18, scale=4), nullable=False, server_default='0'),
        sa.Column('presentation_id', sa.Integer(), nullable=True),
        sa.Column('presentation_quantity', sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('movement_request_id', sa.Integer(), nullable=True),
        sa.Column('movement_request_item_id', sa.Integer(), nullable=True),
        sa.Column('reverses_movement_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('created_by', sa.String(length=128), nullable=True),
        _created_at(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('quantity > 0', name='ck_movements_quantity_positive'),
        sa.CheckConstraint('pending_quantity >= 0', name='ck_movements_pending_nonneg'),
        sa.CheckConstraint('pending_quantity <= quantity', name='ck_movements_pending_le_quantity'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id'], ),
        sa.ForeignKeyConstraint(['from_location_id'], ['locations.id'], ),
        sa.ForeignKeyConstraint(['to_location_id'], ['locations.id'], ),
        sa.ForeignKeyConstraint(['presentation_id'], ['product_presentations.id'], ),
        sa.ForeignKeyConstraint(['movement_request_id'], ['movement_requests.id'], ),
        sa.ForeignKeyConstraint(['movement_request_item_id'], ['movement_request_items.id'], ),
        sa.ForeignKeyConstraint(['reverses_movement_id'], ['stock_movements.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'number', name='uq_movements_tenant_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_movements', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_movements_tenant_id'), ['tenant_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_movement_type'), ['movement_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_from_location_id'), ['from_location_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_to_location_id'), ['to_location_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_movement_request_id'), ['movement_request_id'], unique=False)
        batch_op.create_index('ix_movements_tenant_reference', ['tenant_id', 'reference_type', 'reference_id'], unique=False)
        batch_op.create_index('ix_movements_request_pending', ['movement_request_id', 'pending_quantity'], unique=False)

    # ==========================================================================
    # 4. RETURNS
    # ==========================================================================
    op.create_table('stock_returns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('number', sa.String(length=32), nullable=False),
        sa.Column('to_location_id', sa.Integer(), nullable=False),
        sa.Column('source_type', sa.String(length=32), nullable=True),
        sa.Column('source_id', sa.Integer(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('photo_key', sa.String(length=512), nullable=True),
        sa.Column('photo_url', sa.String(length=1024), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=128), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['to_location_id'], ['locations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'number', name='uq_stock_returns_tenant_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_returns', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_returns_tenant_id'), ['tenant_id'], unique=False)
        batch_op.create_index('ix_stock_returns_tenant_created', ['tenant_id', 'created_at'], unique=False)
        batch_op.create_index('ix_stock_returns_tenant_location', ['tenant_id', 'to_location_id'], unique=False)
        batch_op.create_index('ix_stock_returns_source', ['source_type', 'source_id'], unique=False)

    op.create_table('stock_return_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('return_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Numeric(precision=18, scale=4), nullable=False),
        sa.Column('presentation_id', sa.Integer(), nullable=True),
        sa.Column('presentation_quantity', sa.Numeric(precision=18, scale=4), nullable=True),
        sa.Column('out_movement_id', sa.Integer(), nullable=True),
        sa.Column('movement_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.CheckConstraint('quantity > 0', name='ck_stock_return_items_quantity_positive'),
        sa.ForeignKeyConstraint(['return_id'], ['stock_returns.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id'], ),
        sa.ForeignKeyConstraint(['presentation_id'], ['product_presentations.id'], ),
        sa.ForeignKeyConstraint(['out_movement_id'], ['stock_movements.id'], ),
        sa.ForeignKeyConstraint(['movement_id'], ['stock_movements.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_return_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_return_items_tenant_id'), ['tenant_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_return_items_return_id'), ['return_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_return_items_out_movement_id'), ['out_movement_id'], unique=False)
        batch_op.create_index('ix_stock_return_items_tenant_product', ['tenant_id', 'product_id'], unique=False)

    # ==========================================================================
    # 5. AUDIT AND NUMBERING
    # ==========================================================================
    op.create_table('audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.String(length=128), nullable=True),
        sa.Column('actor_name', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('audit_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_audit_events_tenant_id'), ['tenant_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_events_action'), ['action'], unique=False)
        batch_op.create_index('ix_audit_events_tenant_occurred', ['tenant_id', 'occurred_at'], unique=False)
        batch_op.create_index('ix_audit_events_entity', ['entity_type', 'entity_id'], unique=False)

    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'document_type', 'year', name='uq_doc_sequences_tenant_type_year'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('document_sequences', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_document_sequences_tenant_id'), ['tenant_id'], unique=False)


def downgrade():
    op.drop_table('document_sequences')
    op.drop_table('audit_events')
    op.drop_table('stock_return_items')
    op.drop_table('stock_returns')
    op.drop_table('stock_movements')
    op.drop_table('inventory_balances')
    op.drop_table('movement_request_items')
    op.drop_table('movement_requests')
    op.drop_table('product_presentations')
    op.drop_table('batches')
    op.drop_table('products')
    op.drop_table('locations')
    op.drop_table('warehouses')
