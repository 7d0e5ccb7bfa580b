"""Initial schema: users, deposit wallets, counters and the deposit ledger.

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
    # Users table
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('username', sa.String(255), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username')
    )

    # Deposit wallets: one per user, address unique, (xpub, index) unique
    op.create_table(
        'user_wallets',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('key_fingerprint', sa.String(16), nullable=False),
        sa.Column('derivation_index', sa.BigInteger(), nullable=False),
        sa.Column('derivation_path', sa.String(100), nullable=False),
        sa.Column('deposit_address', sa.String(42), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key_fingerprint', 'derivation_index', name='uq_user_wallets_key_index')
    )
    op.create_index('ix_user_wallets_user_id', 'user_wallets', ['user_id'], unique=True)
    op.create_index('ix_user_wallets_deposit_address', 'user_wallets', ['deposit_address'], unique=True)

    # Derivation counters (one per xpub)
    op.create_table(
        'derivation_counters',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('key_fingerprint', sa.String(16), nullable=False),
        sa.Column('last_index', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_derivation_counters_key_fingerprint', 'derivation_counters', ['key_fingerprint'], unique=True)

    # Wallet balances
    op.create_table(
        'wallet_balances',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('deposit_balance', sa.Numeric(36, 18), nullable=True),
        sa.Column('income_balance', sa.Numeric(36, 18), nullable=True),
        sa.Column('total_deposited', sa.Numeric(36, 18), nullable=True),
        sa.Column('total_withdrawn', sa.Numeric(36, 18), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_wallet_balances_user_id', 'wallet_balances', ['user_id'], unique=True)

    # Ledger journal
    op.create_table(
        'wallet_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('transaction_type', sa.String(20), nullable=False),
        sa.Column('wallet_type', sa.String(20), nullable=False),
        sa.Column('amount', sa.Numeric(36, 18), nullable=False),
        sa.Column('transaction_hash', sa.String(255), nullable=True),
        sa.Column('log_index', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('block_number', sa.BigInteger(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_hash', 'log_index', name='uq_wallet_transactions_hash_log')
    )
    op.create_index('ix_wallet_transactions_transaction_hash', 'wallet_transactions', ['transaction_hash'])
    op.create_index('ix_wallet_transactions_user_created', 'wallet_transactions', ['user_id', 'created_at'])

    # Deposit sync markers
    op.create_table(
        'wallet_sync_state',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('last_synced_block', sa.BigInteger(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_wallet_sync_state_user_id', 'wallet_sync_state', ['user_id'], unique=True)


def downgrade() -> None:
    op.drop_index('ix_wallet_sync_state_user_id', 'wallet_sync_state')
    op.drop_table('wallet_sync_state')
    op.drop_index('ix_wallet_transactions_user_created', 'wallet_transactions')
    op.drop_index('ix_wallet_transactions_transaction_hash', 'wallet_transactions')
    op.drop_table('wallet_transactions')
    op.drop_index('ix_wallet_balances_user_id', 'wallet_balances')
    op.drop_table('wallet_balances')
    op.drop_index('ix_derivation_counters_key_fingerprint', 'derivation_counters')
    op.drop_table('derivation_counters')
    op.drop_index('ix_user_wallets_deposit_address', 'user_wallets')
    op.drop_index('ix_user_wallets_user_id', 'user_wallets')
    op.drop_table('user_wallets')
    op.drop_table('users')
