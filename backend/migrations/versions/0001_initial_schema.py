"""initial back-office schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None

NOW = sa.text('CURRENT_TIMESTAMP')


def _stamps():
    return [
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('updated_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=NOW),
    ]


def _lock_fields():
    return [
        sa.Column('is_locked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('locked_by', sa.Integer(), nullable=True),
        sa.Column('locked_by_name', sa.String(length=128), nullable=True),
        sa.Column('locked_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=128), nullable=False, unique=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False, server_default='staff'),
        sa.Column('home_branch', sa.String(length=32), nullable=True),
        *_stamps(),
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table('branches',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=32), nullable=False, unique=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('city', sa.String(length=64), nullable=True),
        *_stamps(),
    )
    op.create_index('ix_branches_code', 'branches', ['code'])

    op.create_table('user_branches',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('branch_code', sa.String(length=32), sa.ForeignKey('branches.code', ondelete='CASCADE'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW),
        sa.UniqueConstraint('user_id', 'branch_code', name='uq_user_branch'),
    )
    op.create_index('ix_user_branches_user_id', 'user_branches', ['user_id'])
    op.create_index('ix_user_branches_branch_code', 'user_branches', ['branch_code'])

    op.create_table('user_permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('page', sa.String(length=64), nullable=False),
        sa.Column('columns', sa.JSON(), nullable=True),
        sa.Column('can_access', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=NOW),
        sa.UniqueConstraint('role', 'page', name='uq_user_permissions_role_page'),
    )
    op.create_index('ix_user_permissions_role', 'user_permissions', ['role'])

    op.create_table('crud_permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('page', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=True),
        sa.Column('can_create', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('can_edit', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('can_delete', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=NOW),
        sa.UniqueConstraint('role', 'page', 'user_id', name='uq_crud_permissions_role_page_user'),
    )
    op.create_index('ix_crud_permissions_role', 'crud_permissions', ['role'])

    op.create_table('audit_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('table_name', sa.String(length=64), nullable=False),
        sa.Column('record_id', sa.String(length=64), nullable=False),
        sa.Column('action', sa.String(length=16), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('user_name', sa.String(length=128), nullable=False),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_audit_log_table_name', 'audit_log', ['table_name'])
    op.create_index('ix_audit_log_record_id', 'audit_log', ['record_id'])
    op.create_index('ix_audit_log_user_id', 'audit_log', ['user_id'])

    op.create_table('payment_terms',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('term_name', sa.String(length=64), nullable=False, unique=True),
        sa.Column('calculation_type', sa.String(length=32), nullable=False),
        sa.Column('days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_dates', sa.JSON(), nullable=True),
        sa.Column('payment_day_of_week', sa.Integer(), nullable=True),
        sa.Column('early_payment_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('early_payment_discount', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('late_payment_penalty', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('grace_period_days', sa.Integer(), nullable=False, server_default='0'),
        *_stamps(),
    )

    op.create_table('purchase_orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('po_number', sa.String(length=64), nullable=False, unique=True),
        sa.Column('branch_code', sa.String(length=32), nullable=False),
        sa.Column('supplier_name', sa.String(length=128), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='PENDING'),
        sa.Column('po_date', sa.Date(), nullable=False),
        sa.Column('delivered_at', sa.Date(), nullable=True),
        sa.Column('payment_term_id', sa.Integer(), sa.ForeignKey('payment_terms.id'), nullable=True),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('total_amount', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('bulk_payment_ref', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.String(length=500), nullable=True),
        *_lock_fields(),
        *_stamps(),
    )
    op.create_index('ix_purchase_orders_po_number', 'purchase_orders', ['po_number'])
    op.create_index('ix_purchase_orders_branch_code', 'purchase_orders', ['branch_code'])
    op.create_index('ix_purchase_orders_supplier_name', 'purchase_orders', ['supplier_name'])
    op.create_index('ix_purchase_orders_status', 'purchase_orders', ['status'])
    op.create_index('ix_purchase_orders_bulk_payment_ref', 'purchase_orders', ['bulk_payment_ref'])

    op.create_table('petty_cash_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('request_number', sa.String(length=64), nullable=False, unique=True),
        sa.Column('branch_code', sa.String(length=32), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('purpose', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='PENDING'),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=True),
        *_lock_fields(),
        *_stamps(),
    )
    op.create_index('ix_petty_cash_requests_request_number', 'petty_cash_requests', ['request_number'])
    op.create_index('ix_petty_cash_requests_branch_code', 'petty_cash_requests', ['branch_code'])
    op.create_index('ix_petty_cash_requests_status', 'petty_cash_requests', ['status'])

    op.create_table('bulk_payments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('bulk_reference', sa.String(length=64), nullable=False, unique=True),
        sa.Column('total_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('payment_date', sa.Date(), nullable=False),
        sa.Column('payment_via', sa.String(length=64), nullable=True),
        sa.Column('payment_method', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.String(length=500), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
    )
    op.create_index('ix_bulk_payments_bulk_reference', 'bulk_payments', ['bulk_reference'])

    op.create_table('po_payments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('po_id', sa.Integer(), sa.ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('payment_date', sa.Date(), nullable=False),
        sa.Column('payment_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('payment_method', sa.String(length=64), nullable=True),
        sa.Column('payment_via', sa.String(length=64), nullable=True),
        sa.Column('reference_number', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.String(length=500), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        sa.Column('created_by', sa.Integer(), nullable=True),
    )
    op.create_index('ix_po_payments_po_id', 'po_payments', ['po_id'])


def downgrade():
    for table in (
        'po_payments', 'bulk_payments', 'petty_cash_requests', 'purchase_orders', 'payment_terms',
        'audit_log', 'crud_permissions', 'user_permissions', 'user_branches', 'branches', 'users',
    ):
        op.drop_table(table)
