"""commission payments

Revision ID: c8d2e4f6a1b3
Revises: b7c1d2e3f4a5
Create Date: 2026-10-19 12:00:00.000000

Adds commission_payments: one row per commission payout to a staff member,
with the period figures (sales count, revenue, profit, rate, basis) the
payout was based on.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c8d2e4f6a1b3'
down_revision = 'b7c1d2e3f4a5'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'commission_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('sales_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('revenue_total', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('profit_total', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('commission_rate', sa.Numeric(5, 2), nullable=False),
        sa.Column('commission_basis', sa.String(length=16), nullable=False),
        sa.Column('commission_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('paid_by', sa.Integer(), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('commission_amount > 0', name='ck_commission_payments_amount_positive'),
        sa.CheckConstraint('period_end >= period_start', name='ck_commission_payments_period'),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id']),
        sa.ForeignKeyConstraint(['paid_by'], ['staff.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index(
        'ix_commission_payments_staff_period',
        'commission_payments',
        ['staff_id', 'period_start', 'period_end'],
    )
    op.create_index('ix_commission_payments_paid_at', 'commission_payments', ['paid_at'])


def downgrade():
    op.drop_index('ix_commission_payments_paid_at', table_name='commission_payments')
    op.drop_index('ix_commission_payments_staff_period', table_name='commission_payments')
    op.drop_table('commission_payments')
