"""initial quotation schema

Revision ID: 3c1f7a9e2b40
Revises:
Create Date: 2026-10-18 09:12:44.503118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3c1f7a9e2b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

QUOTATION_STATUS = sa.Enum('draft', 'pending', 'confirmed', 'invoiced', 'cancelled', 'expired', name='quotation_status')
PART_ITEM_STATUS = sa.Enum('available', 'reserved', 'sold', 'damaged', 'maintenance', name='part_item_status')
PART_ITEM_CONDITION = sa.Enum('new', 'refurbished', 'used', 'damaged', name='part_item_condition')


def _audit_columns():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('updated_by', sa.String(), nullable=True),
    ]


def upgrade() -> None:
    """Create the quotation, inventory and invoice tables."""
    op.create_table(
        'app_config',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('value', sa.String(length=255), nullable=False),
        *_audit_columns(),
    )
    op.create_index('ix_app_config_name', 'app_config', ['name'], unique=True)

    op.create_table(
        'audit_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('table_name', sa.String(), nullable=False),
        sa.Column('record_id', sa.Integer(), nullable=False),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('changed_by', sa.String(), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
    )

    op.create_table(
        'companies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone_number', sa.String(length=20), nullable=True),
        sa.Column('tax_rate', sa.Numeric(6, 4), nullable=True),
        *_audit_columns(),
    )

    op.create_table(
        'parts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('part_number', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('brand', sa.String(length=100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(15, 2), nullable=False),
        sa.Column('list_price', sa.Numeric(15, 2), nullable=True),
        sa.Column('discount', sa.Numeric(5, 2), nullable=False, server_default='0'),
        *_audit_columns(),
    )
    op.create_index('ix_parts_part_number', 'parts', ['part_number'], unique=True)

    op.create_table(
        'quotations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('quotation_number', sa.String(length=100), nullable=False),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=20), nullable=True),
        sa.Column('customer_address', sa.Text(), nullable=True),
        sa.Column('subtotal', sa.Numeric(15, 2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('shipping_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('total_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('discount_percent', sa.Numeric(5, 2), nullable=False),
        sa.Column('tax_rate', sa.Numeric(6, 4), nullable=False),
        sa.Column('status', QUOTATION_STATUS, nullable=False),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=False),
        sa.Column('payment_terms', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('internal_notes', sa.Text(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('access_token_hash', sa.String(length=64), nullable=True),
        sa.Column('confirmed_by', sa.String(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('invoiced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expired_at', sa.DateTime(timezone=True), nullable=True),
        *_audit_columns(),
    )
    op.create_index('ix_quotations_quotation_number', 'quotations', ['quotation_number'], unique=True)
    op.create_index('ix_quotations_status', 'quotations', ['status'])

    op.create_table(
        'quotation_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('quotation_id', sa.Integer(), sa.ForeignKey('quotations.id'), nullable=False),
        sa.Column('part_id', sa.Integer(), sa.ForeignKey('parts.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(15, 2), nullable=False),
        sa.Column('list_price', sa.Numeric(15, 2), nullable=True),
        sa.Column('discount', sa.Numeric(5, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(15, 2), nullable=False),
        sa.Column('backordered_quantity', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_audit_columns(),
        sa.CheckConstraint('quantity > 0', name='ck_quotation_items_quantity_positive'),
        sa.CheckConstraint('discount >= 0 AND discount <= 50', name='ck_quotation_items_discount_range'),
    )
    op.create_index('ix_quotation_items_quotation_id', 'quotation_items', ['quotation_id'])

    op.create_table(
        'part_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('part_id', sa.Integer(), sa.ForeignKey('parts.id'), nullable=False),
        sa.Column('bar_code', sa.String(length=100), nullable=False, unique=True),
        sa.Column('serial_number', sa.String(length=100), nullable=True),
        sa.Column('location', sa.String(length=100), nullable=True),
        sa.Column('shelve_location', sa.String(length=100), nullable=True),
        sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=True),
        sa.Column('purchase_price', sa.Numeric(15, 2), nullable=True),
        sa.Column('purchase_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('warranty_period', sa.Integer(), nullable=True),
        sa.Column('condition', PART_ITEM_CONDITION, nullable=False),
        sa.Column('status', PART_ITEM_STATUS, nullable=False),
        sa.Column('quotation_id', sa.Integer(), sa.ForeignKey('quotations.id'), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('added_by', sa.String(), nullable=True),
        sa.Column('updated_by', sa.String(), nullable=True),
        sa.Column('added_on', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_on', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_part_items_part_id', 'part_items', ['part_id'])
    op.create_index('ix_part_items_quotation_id', 'part_items', ['quotation_id'])
    op.create_index('ix_part_items_part_status_added', 'part_items', ['part_id', 'status', 'added_on'])

    op.create_table(
        'stock_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('part_id', sa.Integer(), sa.ForeignKey('parts.id'), nullable=False),
        sa.Column('part_item_id', sa.Integer(), sa.ForeignKey('part_items.id'), nullable=True),
        sa.Column('transaction_type', sa.String(length=50), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('old_status', sa.String(length=50), nullable=True),
        sa.Column('new_status', sa.String(length=50), nullable=True),
        sa.Column('reference_type', sa.String(length=50), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_stock_transactions_part_id', 'stock_transactions', ['part_id'])
    op.create_index('ix_stock_transactions_reference_id', 'stock_transactions', ['reference_id'])

    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('invoice_number', sa.String(length=100), nullable=False),
        sa.Column('quotation_id', sa.Integer(), sa.ForeignKey('quotations.id'), nullable=False, unique=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=True),
        sa.Column('subtotal', sa.Numeric(15, 2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('shipping_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('total_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('paid_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('balance_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_status', sa.String(length=50), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_audit_columns(),
    )
    op.create_index('ix_invoices_invoice_number', 'invoices', ['invoice_number'], unique=True)

    op.create_table(
        'invoice_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('invoice_id', sa.Integer(), sa.ForeignKey('invoices.id'), nullable=False),
        sa.Column('quotation_item_id', sa.Integer(), sa.ForeignKey('quotation_items.id'), nullable=True),
        sa.Column('part_id', sa.Integer(), sa.ForeignKey('parts.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(15, 2), nullable=False),
        sa.Column('discount', sa.Numeric(5, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(15, 2), nullable=False),
        sa.Column('serial_numbers', sa.JSON(), nullable=True),
        sa.Column('bar_codes', sa.JSON(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
    )
    op.create_index('ix_invoice_items_invoice_id', 'invoice_items', ['invoice_id'])


def downgrade() -> None:
    """Drop everything created by upgrade, dependents first."""
    for table in ('invoice_items', 'invoices', 'stock_transactions', 'part_items',
                  'quotation_items', 'quotations', 'parts', 'companies', 'audit_log', 'app_config'):
        op.drop_table(table)
    bind = op.get_bind()
    for enum_type in (PART_ITEM_CONDITION, PART_ITEM_STATUS, QUOTATION_STATUS):
        enum_type.drop(bind, checkfirst=True)
