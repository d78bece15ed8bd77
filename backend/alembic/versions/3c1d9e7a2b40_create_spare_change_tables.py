"""create wallets, ledger, payout batch and preference tables

Revision ID: 3c1d9e7a2b40
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = '3c1d9e7a2b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'wallets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('address', sa.String(length=44), nullable=False),
        sa.Column('current_accumulated_usd', sa.Numeric(precision=20, scale=8), nullable=False, server_default='0'),
        sa.Column('current_accumulated_native', sa.Numeric(precision=20, scale=9), nullable=False, server_default='0'),
        sa.Column('lifetime_accumulated_usd', sa.Numeric(precision=20, scale=8), nullable=False, server_default='0'),
        sa.Column('lifetime_accumulated_native', sa.Numeric(precision=20, scale=9), nullable=False, server_default='0'),
        sa.Column('total_payouts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_seen_signature', sa.String(length=88), nullable=True),
        sa.Column('last_seen_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('first_connected_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_wallets_address', 'wallets', ['address'], unique=True)

    op.create_table(
        'payout_batches',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('wallet_address', sa.String(length=44), sa.ForeignKey('wallets.address'), nullable=False),
        sa.Column('total_spare_change_usd', sa.Numeric(precision=20, scale=8), nullable=False),
        sa.Column('total_spare_change_native', sa.Numeric(precision=20, scale=9), nullable=False),
        sa.Column('transaction_count', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('execution_signature', sa.String(length=88), nullable=True),
        sa.Column('execution_error', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_payout_batches_wallet_address', 'payout_batches', ['wallet_address'])

    op.create_table(
        'ledger_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('wallet_address', sa.String(length=44), sa.ForeignKey('wallets.address'), nullable=False),
        sa.Column('signature', sa.String(length=88), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('slot', sa.BigInteger(), nullable=True),
        sa.Column('token_mint', sa.String(length=44), nullable=True),
        sa.Column('original_amount_native', sa.Numeric(precision=20, scale=9), nullable=False),
        sa.Column('original_amount_usd', sa.Numeric(precision=20, scale=8), nullable=False, server_default='0'),
        sa.Column('spare_change_native', sa.Numeric(precision=20, scale=9), nullable=False),
        sa.Column('spare_change_usd', sa.Numeric(precision=20, scale=8), nullable=False),
        sa.Column('price_used', sa.Numeric(precision=20, scale=8), nullable=False),
        sa.Column('price_source', sa.String(length=20), nullable=False),
        sa.Column('price_degraded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_processed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('batch_id', sa.Integer(), sa.ForeignKey('payout_batches.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('wallet_address', 'signature', name='uq_ledger_wallet_signature'),
    )
    op.create_index('ix_ledger_transactions_wallet_address', 'ledger_transactions', ['wallet_address'])
    op.create_index('ix_ledger_transactions_batch_id', 'ledger_transactions', ['batch_id'])
    op.create_index('ix_ledger_wallet_processed', 'ledger_transactions', ['wallet_address', 'is_processed'])

    op.create_table(
        'wallet_preferences',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('wallet_address', sa.String(length=44), sa.ForeignKey('wallets.address'), nullable=False),
        sa.Column('roundup_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('percentage_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('percentage_rate', sa.Numeric(precision=5, scale=2), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('wallet_address', name='uq_wallet_preferences_wallet_address'),
    )


def downgrade() -> None:
    op.drop_table('wallet_preferences')
    op.drop_index('ix_ledger_wallet_processed', table_name='ledger_transactions')
    op.drop_index('ix_ledger_transactions_batch_id', table_name='ledger_transactions')
    op.drop_index('ix_ledger_transactions_wallet_address', table_name='ledger_transactions')
    op.drop_table('ledger_transactions')
    op.drop_index('ix_payout_batches_wallet_address', table_name='payout_batches')
    op.drop_table('payout_batches')
    op.drop_index('ix_wallets_address', table_name='wallets')
    op.drop_table('wallets')
