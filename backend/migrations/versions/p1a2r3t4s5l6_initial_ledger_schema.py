"""initial ledger schema

Revision ID: p1a2r3t4s5l6
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the parts ledger schema from scratch:
- suppliers / products / product_suppliers: catalog and purchase statistics
- stock_intakes / lots: received stock, one lot per intake line
- consumptions / consumption_lines: allocation records (which lots, what cost)
- returns / return_lines: customer returns restoring stock into original lots
- stock_movements: per-lot audit of every committed stock change
- ledger_events: append-only audit spine
- document_sequences: ING / DEV / AJU numbering
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'p1a2r3t4s5l6'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(*, with_updated: bool = False):
    cols = [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]
    if with_updated:
        cols.append(
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                      server_default=sa.text('CURRENT_TIMESTAMP'))
        )
    return cols


def upgrade():
    # ============================================================================
    # Catalog
    # ============================================================================
    op.create_table(
        'suppliers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=True),
        sa.Column('contact_name', sa.String(length=255), nullable=True),
        sa.Column('contact_phone', sa.String(length=64), nullable=True),
        sa.Column('contact_email', sa.String(length=255), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(with_updated=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_suppliers_code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_suppliers_active', 'suppliers', ['is_active'])

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('brand', sa.String(length=128), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),

        # Ledger-derived aggregates
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False, server_default='0'),

        sa.Column('sale_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_sale_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reorder_threshold', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(with_updated=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_name', 'products', ['name'])
    op.create_index('ix_products_active', 'products', ['is_active'])

    op.create_table(
        'product_suppliers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=False),
        sa.Column('last_intake_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_unit_cost_cents', sa.Integer(), nullable=True),
        sa.Column('total_quantity_received', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'supplier_id', name='uq_product_suppliers_pair'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_product_suppliers_product_id', 'product_suppliers', ['product_id'])
    op.create_index('ix_product_suppliers_supplier_id', 'product_suppliers', ['supplier_id'])

    # ============================================================================
    # Intakes and lots
    # ============================================================================
    op.create_table(
        'stock_intakes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=False),
        sa.Column('reference_number', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('total_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('received_by', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_number', name='uq_stock_intakes_docnum'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_intakes_supplier', 'stock_intakes', ['supplier_id'])
    op.create_index('ix_stock_intakes_received_at', 'stock_intakes', ['received_at'])

    # Lot invariants enforced in the database too:
    # 0 <= remaining_quantity <= received_quantity
    op.create_table(
        'lots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('intake_id', sa.Integer(), nullable=True),
        sa.Column('lot_number', sa.String(length=64), nullable=False),
        sa.Column('received_quantity', sa.Integer(), nullable=False),
        sa.Column('remaining_quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_on', sa.Date(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(with_updated=True),
        sa.CheckConstraint('remaining_quantity >= 0', name='ck_lots_remaining_non_negative'),
        sa.CheckConstraint('remaining_quantity <= received_quantity', name='ck_lots_remaining_bounded'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['intake_id'], ['stock_intakes.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'lot_number', name='uq_lots_product_lot_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_lots_product_id', 'lots', ['product_id'])
    op.create_index('ix_lots_intake_id', 'lots', ['intake_id'])
    op.create_index('ix_lots_fifo', 'lots', ['product_id', 'status', 'received_at', 'id'])

    # ============================================================================
    # Allocation records
    # ============================================================================
    op.create_table(
        'consumptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),

        # SALE, CREDIT, OUTFLOW, ADJUSTMENT
        sa.Column('reference_type', sa.String(length=32), nullable=False),
        sa.Column('reference_id', sa.String(length=64), nullable=False),
        sa.Column('reference_line', sa.String(length=64), nullable=True),

        sa.Column('unit_price_cents', sa.Integer(), nullable=True),
        sa.Column('total_cost_cents', sa.Integer(), nullable=False),
        sa.Column('actor', sa.String(length=255), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_consumptions_product_id', 'consumptions', ['product_id'])
    op.create_index('ix_consumptions_reference', 'consumptions', ['reference_type', 'reference_id'])

    op.create_table(
        'consumption_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('consumption_id', sa.Integer(), nullable=False),
        sa.Column('lot_id', sa.Integer(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
        sa.Column('reversed_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint('reversed_quantity <= quantity', name='ck_consumption_lines_reversed_bounded'),
        sa.ForeignKeyConstraint(['consumption_id'], ['consumptions.id'], ),
        sa.ForeignKeyConstraint(['lot_id'], ['lots.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('consumption_id', 'lot_id', name='uq_consumption_lines_lot'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_consumption_lines_consumption_id', 'consumption_lines', ['consumption_id'])
    op.create_index('ix_consumption_lines_lot_id', 'consumption_lines', ['lot_id'])

    # ============================================================================
    # Returns
    # ============================================================================
    op.create_table(
        'returns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=False),
        sa.Column('reference_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='REQUESTED'),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('refund_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('requested_by', sa.String(length=255), nullable=True),
        sa.Column('processed_by', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_number', name='uq_returns_docnum'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_returns_status', 'returns', ['status'])
    op.create_index('ix_returns_reference', 'returns', ['reference_type', 'reference_id'])
    op.create_index('ix_returns_status_created', 'returns', ['status', 'created_at'])

    op.create_table(
        'return_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('return_id', sa.Integer(), nullable=False),
        sa.Column('consumption_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=True),
        sa.Column('line_refund_cents', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['return_id'], ['returns.id'], ),
        sa.ForeignKeyConstraint(['consumption_id'], ['consumptions.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('return_id', 'consumption_id', name='uq_return_lines_consumption'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_return_lines_return_id', 'return_lines', ['return_id'])
    op.create_index('ix_return_lines_consumption_id', 'return_lines', ['consumption_id'])

    # ============================================================================
    # Audit
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),

        # INTAKE, CONSUMPTION, REVERSAL, ADJUSTMENT_IN
        sa.Column('movement_type', sa.String(length=32), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('lot_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
        sa.Column('lot_remaining_before', sa.Integer(), nullable=False),
        sa.Column('lot_remaining_after', sa.Integer(), nullable=False),
        sa.Column('consumption_id', sa.Integer(), nullable=True),
        sa.Column('return_id', sa.Integer(), nullable=True),
        sa.Column('intake_id', sa.Integer(), nullable=True),
        sa.Column('actor', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['lot_id'], ['lots.id'], ),
        sa.ForeignKeyConstraint(['consumption_id'], ['consumptions.id'], ),
        sa.ForeignKeyConstraint(['return_id'], ['returns.id'], ),
        sa.ForeignKeyConstraint(['intake_id'], ['stock_intakes.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_movement_type', 'stock_movements', ['movement_type'])
    op.create_index('ix_stock_movements_product_occurred', 'stock_movements', ['product_id', 'occurred_at'])
    op.create_index('ix_stock_movements_lot', 'stock_movements', ['lot_id'])
    op.create_index('ix_stock_movements_consumption_id', 'stock_movements', ['consumption_id'])
    op.create_index('ix_stock_movements_return_id', 'stock_movements', ['return_id'])
    op.create_index('ix_stock_movements_intake_id', 'stock_movements', ['intake_id'])

    op.create_table(
        'ledger_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('consumption_id', sa.Integer(), nullable=True),
        sa.Column('return_id', sa.Integer(), nullable=True),
        sa.Column('intake_id', sa.Integer(), nullable=True),
        sa.Column('actor', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        *_timestamps(),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['consumption_id'], ['consumptions.id'], ),
        sa.ForeignKeyConstraint(['return_id'], ['returns.id'], ),
        sa.ForeignKeyConstraint(['intake_id'], ['stock_intakes.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_ledger_events_event_type', 'ledger_events', ['event_type'])
    op.create_index('ix_ledger_events_entity_type', 'ledger_events', ['entity_type'])
    op.create_index('ix_ledger_events_entity_id', 'ledger_events', ['entity_id'])
    op.create_index('ix_ledger_events_consumption_id', 'ledger_events', ['consumption_id'])
    op.create_index('ix_ledger_events_return_id', 'ledger_events', ['return_id'])
    op.create_index('ix_ledger_events_intake_id', 'ledger_events', ['intake_id'])
    op.create_index('ix_ledger_events_occurred_at', 'ledger_events', ['occurred_at'])
    op.create_index('ix_ledger_events_product_occurred', 'ledger_events', ['product_id', 'occurred_at'])

    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type', name='uq_doc_sequences_type'),
        sqlite_autoincrement=True
    )


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('document_sequences')
    op.drop_table('ledger_events')
    op.drop_table('stock_movements')
    op.drop_table('return_lines')
    op.drop_table('returns')
    op.drop_table('consumption_lines')
    op.drop_table('consumptions')
    op.drop_table('lots')
    op.drop_table('stock_intakes')
    op.drop_table('product_suppliers')
    op.drop_table('products')
    op.drop_table('suppliers')
