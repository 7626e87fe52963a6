"""Initial migration - create churches, connect accounts, donations, payout summaries and idempotency cache

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17

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
    op.create_table(
        'churches',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('auth_org_id', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_churches_auth_org_id', 'churches', ['auth_org_id'], unique=True)

    op.create_table(
        'stripe_connect_accounts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('church_id', sa.String(36), sa.ForeignKey('churches.id'), nullable=False, unique=True),
        sa.Column('stripe_account_id', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index(
        'ix_stripe_connect_accounts_stripe_account_id',
        'stripe_connect_accounts',
        ['stripe_account_id'],
        unique=True,
    )

    op.create_table(
        'donation_transactions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('church_id', sa.String(36), sa.ForeignKey('churches.id'), nullable=False),
        sa.Column('donor_id', sa.String(255), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='usd'),
        sa.Column('status', sa.String(50), nullable=False, server_default='pending'),
        sa.Column('stripe_payment_intent_id', sa.String(255), nullable=True, unique=True),
        sa.Column('transaction_date', sa.DateTime(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_donation_transactions_church_id', 'donation_transactions', ['church_id'])
    op.create_index(
        'ix_donation_transactions_status_transaction_date',
        'donation_transactions',
        ['status', 'transaction_date'],
    )

    op.create_table(
        'payout_summaries',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('stripe_payout_id', sa.String(255), nullable=False),
        sa.Column('church_id', sa.String(36), sa.ForeignKey('churches.id'), nullable=False),
        sa.Column('payout_date', sa.DateTime(), nullable=False),
        sa.Column('arrival_date', sa.DateTime(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='usd'),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('payout_schedule', sa.String(50), nullable=True),
        sa.Column('transaction_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('gross_volume', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_fees', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_refunds', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_disputes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reconciled_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payout_metadata_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_payout_summaries_stripe_payout_id', 'payout_summaries', ['stripe_payout_id'], unique=True)
    op.create_index('ix_payout_summaries_church_id', 'payout_summaries', ['church_id'])
    op.create_index('ix_payout_summaries_payout_date', 'payout_summaries', ['payout_date'])
    op.create_index('ix_payout_summaries_status', 'payout_summaries', ['status'])
    op.create_index(
        'ix_payout_summaries_church_id_payout_date',
        'payout_summaries',
        ['church_id', 'payout_date'],
    )

    op.create_table(
        'idempotency_cache',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('key', sa.String(255), nullable=False),
        sa.Column('response_data_json', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_idempotency_cache_key', 'idempotency_cache', ['key'], unique=True)
    op.create_index('ix_idempotency_cache_expires_at', 'idempotency_cache', ['expires_at'])


def downgrade() -> None:
    op.drop_index('ix_idempotency_cache_expires_at', table_name='idempotency_cache')
    op.drop_index('ix_idempotency_cache_key', table_name='idempotency_cache')

    op.drop_index('ix_payout_summaries_church_id_payout_date', table_name='payout_summaries')
    op.drop_index('ix_payout_summaries_status', table_name='payout_summaries')
    op.drop_index('ix_payout_summaries_payout_date', table_name='payout_summaries')
    op.drop_index('ix_payout_summaries_church_id', table_name='payout_summaries')
    op.drop_index('ix_payout_summaries_stripe_payout_id', table_name='payout_summaries')

    op.drop_index('ix_donation_transactions_status_transaction_date', table_name='donation_transactions')
    op.drop_index('ix_donation_transactions_church_id', table_name='donation_transactions')

    op.drop_index('ix_stripe_connect_accounts_stripe_account_id', table_name='stripe_connect_accounts')
    op.drop_index('ix_churches_auth_org_id', table_name='churches')

    op.drop_table('idempotency_cache')
    op.drop_table('payout_summaries')
    op.drop_table('donation_transactions')
    op.drop_table('stripe_connect_accounts')
    op.drop_table('churches')
