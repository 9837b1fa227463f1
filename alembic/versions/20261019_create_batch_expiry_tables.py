"""Create batch, quarantine and expiry trend tables

Revision ID: 001_batch_expiry
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers
revision = '001_batch_expiry'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create the catalog read model, batch ledger, quarantine and snapshot tables"""

    # ====================
    # CATALOG READ MODEL
    # ====================
    op.create_table(
        'categories',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )

    op.create_table(
        'products',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('code', sa.String(50), unique=True, nullable=False),
        sa.Column('category_id', UUID(as_uuid=True), sa.ForeignKey('categories.id', ondelete='SET NULL'), nullable=True),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('quantity', sa.Integer, server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_products_code', 'products', ['code'])
    op.create_index('ix_products_category_id', 'products', ['category_id'])

    # ====================
    # BATCHES
    # ====================
    op.create_table(
        'product_batches',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('product_id', UUID(as_uuid=True), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('batch_number', sa.String(50), nullable=False),
        sa.Column('quantity', sa.Integer, server_default='0', nullable=False),
        sa.Column('initial_quantity', sa.Integer, nullable=False),
        sa.Column('expiry_date', sa.Date, nullable=False),
        sa.Column('manufacture_date', sa.Date, nullable=True),
        sa.Column('supplier_reference', sa.String(100), nullable=True),
        sa.Column('cost_per_unit', sa.Numeric(10, 2), nullable=True),
        sa.Column('status', sa.String(20), server_default='ACTIVE', nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('product_id', 'batch_number', name='uq_batch_product_number'),
        sa.CheckConstraint('quantity >= 0', name='ck_batch_quantity_non_negative'),
        sa.CheckConstraint('initial_quantity > 0', name='ck_batch_initial_quantity_positive'),
    )
    op.create_index('idx_batch_product_status_expiry', 'product_batches', ['product_id', 'status', 'expiry_date'])
    op.create_index('idx_batch_expiry', 'product_batches', ['expiry_date'])

    op.create_table(
        'batch_movements',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('batch_id', UUID(as_uuid=True), sa.ForeignKey('product_batches.id'), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('movement_type', sa.String(20), nullable=False),
        sa.Column('quantity_change', sa.Integer, nullable=False),
        sa.Column('quantity_after', sa.Integer, nullable=False),
        sa.Column('status_after', sa.String(20), nullable=False),
        sa.Column('reason', sa.String(255), nullable=True),
        sa.Column('performed_by', sa.String(50), server_default='SYSTEM', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('idx_bm_batch', 'batch_movements', ['batch_id', 'created_at'])
    op.create_index('idx_bm_product', 'batch_movements', ['product_id', 'created_at'])

    # ====================
    # QUARANTINE
    # ====================
    op.create_table(
        'quarantine_records',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('batch_id', UUID(as_uuid=True), sa.ForeignKey('product_batches.id'), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('reason', sa.String(255), nullable=False),
        sa.Column('quantity_quarantined', sa.Integer, nullable=False),
        sa.Column('estimated_loss', sa.Numeric(15, 2), server_default='0', nullable=False),
        sa.Column('quarantine_date', sa.Date, nullable=False),
        sa.Column('quarantined_by', sa.String(50), nullable=False),
        sa.Column('status', sa.String(30), server_default='PENDING_REVIEW', nullable=False),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_by', sa.String(50), nullable=True),
        sa.Column('disposal_method', sa.String(100), nullable=True),
        sa.Column('disposal_certificate', sa.String(255), nullable=True),
        sa.Column('return_reference', sa.String(100), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    # At most one open record per batch
    op.create_index(
        'uq_quarantine_open_batch', 'quarantine_records', ['batch_id'],
        unique=True, postgresql_where=sa.text("status = 'PENDING_REVIEW'"),
    )
    op.create_index('idx_qr_status', 'quarantine_records', ['status'])
    op.create_index('idx_qr_product', 'quarantine_records', ['product_id'])

    op.create_table(
        'quarantine_action_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('quarantine_record_id', UUID(as_uuid=True), sa.ForeignKey('quarantine_records.id'), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('performed_by', sa.String(50), nullable=False),
        sa.Column('performed_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('previous_status', sa.String(30), nullable=True),
        sa.Column('new_status', sa.String(30), nullable=True),
        sa.Column('comments', sa.Text, nullable=True),
    )
    op.create_index('idx_qal_record', 'quarantine_action_logs', ['quarantine_record_id', 'performed_at'])

    # ====================
    # EXPIRY TREND SNAPSHOTS
    # ====================
    op.create_table(
        'expiry_trend_snapshots',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('snapshot_date', sa.Date, nullable=False),
        sa.Column('total_products', sa.Integer, server_default='0', nullable=False),
        sa.Column('expired_count', sa.Integer, server_default='0', nullable=False),
        sa.Column('expiring_7_days', sa.Integer, server_default='0', nullable=False),
        sa.Column('expiring_30_days', sa.Integer, server_default='0', nullable=False),
        sa.Column('expiring_60_days', sa.Integer, server_default='0', nullable=False),
        sa.Column('expiring_90_days', sa.Integer, server_default='0', nullable=False),
        sa.Column('expired_value', sa.Numeric(15, 2), server_default='0', nullable=False),
        sa.Column('expiring_7_days_value', sa.Numeric(15, 2), server_default='0', nullable=False),
        sa.Column('expiring_30_days_value', sa.Numeric(15, 2), server_default='0', nullable=False),
        sa.Column('expiring_60_days_value', sa.Numeric(15, 2), server_default='0', nullable=False),
        sa.Column('expiring_90_days_value', sa.Numeric(15, 2), server_default='0', nullable=False),
        sa.Column('avg_days_to_expiry', sa.Float, server_default='0', nullable=False),
        sa.Column('critical_category_id', UUID(as_uuid=True), nullable=True),
        sa.Column('critical_category_name', sa.String(100), nullable=True),
        sa.Column('critical_category_count', sa.Integer, nullable=True),
        sa.Column('trend_direction', sa.String(20), server_default='STABLE', nullable=False),
        sa.Column('trend_percentage', sa.Float, server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_expiry_trend_snapshots_snapshot_date', 'expiry_trend_snapshots', ['snapshot_date'], unique=True)

    print("✓ Created batch expiry tables")


def downgrade():
    """Drop all batch expiry tables"""
    op.drop_table('expiry_trend_snapshots')
    op.drop_table('quarantine_action_logs')
    op.drop_table('quarantine_records')
    op.drop_table('batch_movements')
    op.drop_table('product_batches')
    op.drop_table('products')
    op.drop_table('categories')
