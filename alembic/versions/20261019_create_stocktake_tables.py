"""Create counting campaign, serial reconciliation, stock snapshot and audit tables

Revision ID: create_stocktake_tables
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'create_stocktake_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


UUID = postgresql.UUID(as_uuid=True)
QTY = sa.Numeric(14, 3)


def _count_columns(stage: int) -> list:
    return [
        sa.Column(f'count{stage}', QTY, nullable=True),
        sa.Column(f'count{stage}_by', UUID, nullable=True),
        sa.Column(f'count{stage}_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Create all stocktake tables."""
    # Stock snapshot sources (maintained by master data)
    op.create_table(
        'stock_balances',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('product_id', UUID, nullable=False),
        sa.Column('product_code', sa.String(50), nullable=False),
        sa.Column('category_id', UUID, nullable=True),
        sa.Column('location_id', UUID, nullable=False),
        sa.Column('quantity', QTY, nullable=False, server_default='0'),
        sa.UniqueConstraint('product_id', 'location_id', name='uq_stock_balance_product_location'),
    )
    op.create_index('idx_stock_balances_location', 'stock_balances', ['location_id'])

    op.create_table(
        'stock_serials',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('serial_number', sa.String(100), nullable=False, unique=True),
        sa.Column('product_id', UUID, nullable=False),
        sa.Column('location_id', UUID, nullable=False),
    )
    op.create_index('idx_stock_serials_location', 'stock_serials', ['location_id'])

    # Counting campaigns
    op.create_table(
        'inventories',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('code', sa.String(50), nullable=False, unique=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('inventory_type', sa.String(20), nullable=False, server_default='general'),
        sa.Column('status', sa.String(30), nullable=False, server_default='planning'),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('predicted_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('location_ids', sa.JSON(), nullable=True),
        sa.Column('category_ids', sa.JSON(), nullable=True),
        sa.Column('product_ids', sa.JSON(), nullable=True),
        sa.Column('blocks_system_movements', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_by', UUID, nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_by', UUID, nullable=True),
        sa.Column('erp_migrated', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('erp_migrated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('erp_migrated_by', UUID, nullable=True),
        sa.Column('created_by', UUID, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_inventories_status', 'inventories', ['status'])

    op.create_table(
        'inventory_items',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('inventory_id', UUID, sa.ForeignKey('inventories.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', UUID, nullable=False),
        sa.Column('product_code', sa.String(50), nullable=False),
        sa.Column('location_id', UUID, nullable=False),
        sa.Column('category_id', UUID, nullable=True),
        sa.Column('expected_quantity', QTY, nullable=True),
        *_count_columns(1),
        *_count_columns(2),
        *_count_columns(3),
        *_count_columns(4),
        sa.Column('final_quantity', QTY, nullable=True),
        sa.Column('divergence_qty', QTY, nullable=True),
        sa.Column('divergence_class', sa.String(30), nullable=False, server_default='awaiting_counts'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('inventory_id', 'product_id', 'location_id', name='uq_inventory_item_product_location'),
    )
    op.create_index('idx_inventory_items_status', 'inventory_items', ['inventory_id', 'status'])

    op.create_table(
        'inventory_counts',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('item_id', UUID, sa.ForeignKey('inventory_items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('stage', sa.Integer(), nullable=False),
        sa.Column('quantity', QTY, nullable=False),
        sa.Column('counted_by', UUID, nullable=False),
        sa.Column('counted_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_inventory_counts_item_stage', 'inventory_counts', ['item_id', 'stage'])

    # Serial-identity reconciliation
    op.create_table(
        'inventory_serial_items',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('inventory_id', UUID, sa.ForeignKey('inventories.id', ondelete='CASCADE'), nullable=False),
        sa.Column('serial_number', sa.String(100), nullable=False),
        sa.Column('product_id', UUID, nullable=True),
        sa.Column('expected_location_id', UUID, nullable=True),
        sa.Column('found_location_id', UUID, nullable=True),
        sa.Column('found_stage', sa.Integer(), nullable=True),
        sa.Column('found_by', UUID, nullable=True),
        sa.Column('found_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('discrepancy_type', sa.String(30), nullable=True),
        sa.Column('resolution_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        sa.Column('resolved_by', UUID, nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('migrated_by', UUID, nullable=True),
        sa.Column('migrated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('erp_reference', sa.String(200), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('inventory_id', 'serial_number', name='uq_serial_item_inventory_serial'),
    )
    op.create_index('idx_serial_items_discrepancy', 'inventory_serial_items', ['inventory_id', 'discrepancy_type'])
    op.create_index('idx_serial_items_resolution', 'inventory_serial_items', ['inventory_id', 'resolution_status'])

    op.create_table(
        'inventory_serial_readings',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('serial_item_id', UUID,
                  sa.ForeignKey('inventory_serial_items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('stage', sa.Integer(), nullable=False),
        sa.Column('location_id', UUID, nullable=False),
        sa.Column('scanned_by', UUID, nullable=False),
        sa.Column('scanned_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('serial_item_id', 'stage', name='uq_serial_reading_stage'),
    )

    # Audit trail
    op.create_table(
        'audit_logs',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('user_id', UUID, nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(64), nullable=True),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])
    op.create_index('idx_audit_logs_entity', 'audit_logs', ['entity_type', 'entity_id'])


def downgrade() -> None:
    """Drop all stocktake tables."""
    op.drop_table('audit_logs')
    op.drop_table('inventory_serial_readings')
    op.drop_table('inventory_serial_items')
    op.drop_table('inventory_counts')
    op.drop_table('inventory_items')
    op.drop_table('inventories')
    op.drop_table('stock_serials')
    op.drop_table('stock_balances')
