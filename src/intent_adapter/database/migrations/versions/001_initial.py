"""Initial migration - create transactions, payment_provider_customers and
payment_provider_customer_payment_methods tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create transactions table
    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('pid', sa.String(36), nullable=False, unique=True),
        sa.Column('payment_provider', sa.String(50), nullable=False),
        sa.Column('transaction_family', sa.String(20), nullable=False, server_default='payment'),
        sa.Column('transaction_family_id', sa.String(255), nullable=True),
        sa.Column('transaction_child_id', sa.String(255), nullable=True),
        sa.Column('parent_id', sa.Integer(), sa.ForeignKey('transactions.id'), nullable=True),
        sa.Column('orderable_id', sa.String(64), nullable=True),
        sa.Column('orderable_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('amount_refunded', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('amount_escrow', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('status', sa.String(50), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('local_status', sa.String(20), nullable=False, server_default='init'),
        sa.Column('refund', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('display_only', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('retrospective', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('through_webhook', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('livemode', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('cashier_id', sa.String(64), nullable=True),
        sa.Column('user_type', sa.String(50), nullable=True),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('last_four', sa.String(4), nullable=True),
        sa.Column('card_type', sa.String(30), nullable=True),
        sa.Column('address_matched', sa.Boolean(), nullable=True),
        sa.Column('cvc_matched', sa.Boolean(), nullable=True),
        sa.Column('postcode_matched', sa.Boolean(), nullable=True),
        sa.Column('threed_secure', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    # Create indexes for transactions
    op.create_index('ix_transactions_family_id', 'transactions', ['transaction_family_id'])
    op.create_index('ix_transactions_created_at', 'transactions', ['created_at'])
    op.create_index(
        'uq_transactions_natural_key',
        'transactions',
        [
            'payment_provider',
            'transaction_family',
            'transaction_family_id',
            sa.text("COALESCE(orderable_id, '0')"),
            sa.text("COALESCE(transaction_child_id, '')"),
        ],
        unique=True,
    )

    # Create payment_provider_customers table
    op.create_table(
        'payment_provider_customers',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('pid', sa.String(36), nullable=False, unique=True),
        sa.Column('payment_provider', sa.String(50), nullable=False),
        sa.Column('payment_provider_customer_id', sa.String(255), nullable=False),
        sa.Column('user_type', sa.String(50), nullable=True),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('tenant_id', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('payment_provider', 'payment_provider_customer_id', name='uq_provider_customer_id'),
        sa.UniqueConstraint('payment_provider', 'user_type', 'user_id', name='uq_provider_customer_user'),
    )

    # Create payment_provider_customer_payment_methods table
    op.create_table(
        'payment_provider_customer_payment_methods',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('pid', sa.String(36), nullable=False, unique=True),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('payment_provider_customers.id'), nullable=False),
        sa.Column('payment_provider', sa.String(50), nullable=False),
        sa.Column('payment_provider_payment_method_id', sa.String(255), nullable=False),
        sa.Column('type', sa.String(30), nullable=True),
        sa.Column('country_code', sa.String(2), nullable=True),
        sa.Column('brand', sa.String(30), nullable=True),
        sa.Column('last_four', sa.String(4), nullable=True),
        sa.Column('expires_at_month', sa.Integer(), nullable=True),
        sa.Column('expires_at_year', sa.Integer(), nullable=True),
        sa.Column('livemode', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('tenant_id', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    # Create indexes for payment_provider_customer_payment_methods
    op.create_index(
        'ix_payment_provider_customer_payment_methods_customer_id',
        'payment_provider_customer_payment_methods',
        ['customer_id'],
    )
    op.create_index(
        'ix_payment_provider_customer_payment_methods_payment_provider_payment_method_id',
        'payment_provider_customer_payment_methods',
        ['payment_provider_payment_method_id'],
    )


def downgrade() -> None:
    op.drop_index(
        'ix_payment_provider_customer_payment_methods_payment_provider_payment_method_id',
        table_name='payment_provider_customer_payment_methods',
    )
    op.drop_index(
        'ix_payment_provider_customer_payment_methods_customer_id',
        table_name='payment_provider_customer_payment_methods',
    )
    op.drop_table('payment_provider_customer_payment_methods')

    op.drop_table('payment_provider_customers')

    op.drop_index('uq_transactions_natural_key', table_name='transactions')
    op.drop_index('ix_transactions_created_at', table_name='transactions')
    op.drop_index('ix_transactions_family_id', table_name='transactions')
    op.drop_table('transactions')
