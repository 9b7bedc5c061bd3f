"""initial fiscal schema

Revision ID: b7c1e2f3a4d5
Revises:
Create Date: 2026-10-19 00:00:00.000000

This migration creates the complete schema from scratch:
- document_series / series_user_access / series_sequences: numbering scopes,
  their access lists and per (series, type, year) counters
- cash_registers: balances moved by document postings
- fiscal_documents / fiscal_document_lines: drafts and certified documents
- cash_register_postings / stock_postings / client_account_postings:
  append-only side-effect ledgers
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b7c1e2f3a4d5'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """
    Create all tables from scratch.

    WHY: series_sequences.last_number is only ever moved by a conditional
    UPDATE; the unique constraints below are the storage-level backstop
    against duplicate numbers.
    """

    # ============================================================================
    # document_series: numbering scopes
    # ============================================================================
    op.create_table(
        'document_series',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=16), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('fiscal_year', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False, server_default='NORMAL'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('bank_details', sa.Text(), nullable=True),
        sa.Column('footer_text', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', 'fiscal_year', name='uq_document_series_code_year'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_document_series_code', 'document_series', ['code'])

    op.create_table(
        'series_user_access',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('series_id', sa.Integer(), nullable=False),
        sa.Column('user_ref', sa.String(length=64), nullable=False),
        sa.ForeignKeyConstraint(['series_id'], ['document_series.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('series_id', 'user_ref', name='uq_series_user_access'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_series_user_access_series_id', 'series_user_access', ['series_id'])

    op.create_table(
        'series_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('series_id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=8), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('last_number', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['series_id'], ['document_series.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('series_id', 'document_type', 'year', name='uq_series_sequences_scope'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_series_sequences_series_id', 'series_sequences', ['series_id'])

    # ============================================================================
    # cash_registers
    # ============================================================================
    op.create_table(
        'cash_registers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('opening_balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('operator_ref', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # fiscal_documents: drafts and certified documents
    # ============================================================================
    op.create_table(
        'fiscal_documents',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('flow', sa.String(length=16), nullable=False, server_default='SALES'),
        sa.Column('document_type', sa.String(length=8), nullable=False),
        sa.Column('series_id', sa.Integer(), nullable=True),
        sa.Column('number', sa.String(length=64), nullable=True),
        sa.Column('sequence', sa.Integer(), nullable=True),
        sa.Column('fiscal_year', sa.Integer(), nullable=True),
        sa.Column('issue_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('accounting_date', sa.Date(), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='AOA'),
        sa.Column('exchange_rate', sa.Numeric(18, 6), nullable=False, server_default='1'),
        sa.Column('party_ref', sa.String(length=64), nullable=True),
        sa.Column('party_name', sa.String(length=255), nullable=True),
        sa.Column('party_tax_id', sa.String(length=32), nullable=True),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('global_discount_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('withholding_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('cash_register_id', sa.Integer(), nullable=True),
        sa.Column('warehouse_ref', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='DRAFT'),
        sa.Column('is_certified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('hash', sa.String(length=64), nullable=True),
        sa.Column('previous_hash', sa.String(length=64), nullable=True),
        sa.Column('integration_status', sa.String(length=16), nullable=False, server_default='EMITTED'),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('effects_status', sa.String(length=16), nullable=False, server_default='NONE'),
        sa.Column('effects_error', sa.Text(), nullable=True),
        sa.Column('effects_posted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('source', sa.String(length=16), nullable=False, server_default='MANUAL'),
        sa.Column('operator_ref', sa.String(length=64), nullable=True),
        sa.Column('source_document_id', sa.String(length=36), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['series_id'], ['document_series.id']),
        sa.ForeignKeyConstraint(['cash_register_id'], ['cash_registers.id']),
        sa.ForeignKeyConstraint(['source_document_id'], ['fiscal_documents.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('series_id', 'document_type', 'fiscal_year', 'sequence',
                            name='uq_fiscal_documents_sequence'),
    )
    op.create_index('ix_fiscal_documents_document_type', 'fiscal_documents', ['document_type'])
    op.create_index('ix_fiscal_documents_series_id', 'fiscal_documents', ['series_id'])
    op.create_index('ix_fiscal_documents_party_ref', 'fiscal_documents', ['party_ref'])
    op.create_index('ix_fiscal_documents_cash_register_id', 'fiscal_documents', ['cash_register_id'])
    op.create_index('ix_fiscal_documents_status', 'fiscal_documents', ['status'])
    op.create_index('ix_fiscal_documents_effects_status', 'fiscal_documents', ['effects_status'])
    op.create_index('ix_fiscal_documents_source_document_id', 'fiscal_documents', ['source_document_id'])
    op.create_index('ix_fiscal_documents_number', 'fiscal_documents', ['number'])
    op.create_index('ix_fiscal_documents_series_type_certified', 'fiscal_documents',
                    ['series_id', 'document_type', 'is_certified'])

    op.create_table(
        'fiscal_document_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_id', sa.String(length=36), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('item_type', sa.String(length=16), nullable=False, server_default='SERVICE'),
        sa.Column('product_ref', sa.String(length=64), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('discount_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['document_id'], ['fiscal_documents.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_fiscal_document_lines_document_id', 'fiscal_document_lines', ['document_id'])

    # ============================================================================
    # Append-only posting ledgers
    # ============================================================================
    op.create_table(
        'cash_register_postings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cash_register_id', sa.Integer(), nullable=False),
        sa.Column('document_id', sa.String(length=36), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=True),
        sa.Column('kind', sa.String(length=8), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('origin', sa.String(length=16), nullable=False, server_default='SALES'),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['cash_register_id'], ['cash_registers.id']),
        sa.ForeignKeyConstraint(['document_id'], ['fiscal_documents.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_register_postings_cash_register_id', 'cash_register_postings', ['cash_register_id'])
    op.create_index('ix_cash_register_postings_document_id', 'cash_register_postings', ['document_id'])
    op.create_index('ix_cash_postings_register_occurred', 'cash_register_postings',
                    ['cash_register_id', 'occurred_at'])

    op.create_table(
        'stock_postings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_id', sa.String(length=36), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=True),
        sa.Column('kind', sa.String(length=8), nullable=False),
        sa.Column('product_ref', sa.String(length=64), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('warehouse_ref', sa.String(length=64), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['document_id'], ['fiscal_documents.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_postings_document_id', 'stock_postings', ['document_id'])
    op.create_index('ix_stock_postings_product_warehouse', 'stock_postings', ['product_ref', 'warehouse_ref'])

    op.create_table(
        'client_account_postings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('party_ref', sa.String(length=64), nullable=False),
        sa.Column('document_id', sa.String(length=36), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=True),
        sa.Column('kind', sa.String(length=8), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['document_id'], ['fiscal_documents.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_client_account_postings_party_ref', 'client_account_postings', ['party_ref'])
    op.create_index('ix_client_account_postings_document_id', 'client_account_postings', ['document_id'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('client_account_postings')
    op.drop_table('stock_postings')
    op.drop_table('cash_register_postings')
    op.drop_table('fiscal_document_lines')
    op.drop_table('fiscal_documents')
    op.drop_table('cash_registers')
    op.drop_table('series_sequences')
    op.drop_table('series_user_access')
    op.drop_table('document_series')
