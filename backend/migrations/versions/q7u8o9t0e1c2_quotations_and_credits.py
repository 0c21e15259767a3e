"""quotations and credits

Revision ID: q7u8o9t0e1c2
Revises: p1a2r3t4s5l6
Create Date: 2026-10-19 12:00:00.000000

- quotations / quotation_lines: price quotes convertible into a SALE
- credits / credit_lines: credit sales consumed on activation
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'q7u8o9t0e1c2'
down_revision = 'p1a2r3t4s5l6'
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    op.create_table(
        'quotations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_document', sa.String(length=32), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='DRAFT'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('valid_until', sa.Date(), nullable=True),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.String(length=255), nullable=True),
        sa.Column('processed_by', sa.String(length=255), nullable=True),
        _created_at(),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_number', name='uq_quotations_docnum'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_quotations_status', 'quotations', ['status'])
    op.create_index('ix_quotations_status_created', 'quotations', ['status', 'created_at'])

    op.create_table(
        'quotation_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('quotation_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('lot_id', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(['quotation_id'], ['quotations.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['lot_id'], ['lots.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('quotation_id', 'product_id', name='uq_quotation_lines_product'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_quotation_lines_quotation_id', 'quotation_lines', ['quotation_id'])

    op.create_table(
        'credits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_document', sa.String(length=32), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='TEMPORARY'),
        sa.Column('due_on', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.String(length=255), nullable=True),
        sa.Column('activated_by', sa.String(length=255), nullable=True),
        _created_at(),
        sa.Column('activated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('discarded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_number', name='uq_credits_docnum'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_credits_status', 'credits', ['status'])
    op.create_index('ix_credits_status_created', 'credits', ['status', 'created_at'])

    op.create_table(
        'credit_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('credit_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(['credit_id'], ['credits.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('credit_id', 'product_id', name='uq_credit_lines_product'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_credit_lines_credit_id', 'credit_lines', ['credit_id'])


def downgrade():
    op.drop_table('credit_lines')
    op.drop_table('credits')
    op.drop_table('quotation_lines')
    op.drop_table('quotations')
