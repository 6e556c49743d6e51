"""Initial schema: users, deposit addresses, deposits and scan state.

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
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('telegram_id', sa.BigInteger(), nullable=False),
        sa.Column('username', sa.String(255), nullable=True),
        sa.Column('available_balance', sa.Numeric(18, 8), nullable=False),
        sa.Column('frozen_balance', sa.Numeric(18, 8), nullable=False),
        sa.Column('registered_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('available_balance >= 0', name='ck_users_available_non_negative'),
        sa.CheckConstraint('frozen_balance >= 0', name='ck_users_frozen_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('telegram_id')
    )
    op.create_index('ix_users_telegram_id', 'users', ['telegram_id'])

    # One deposit address per user; derivation_index never reused
    op.create_table(
        'user_tron_addresses',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('tron_address', sa.String(64), nullable=False),
        sa.Column('derivation_index', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
        sa.UniqueConstraint('tron_address'),
        sa.UniqueConstraint('derivation_index')
    )
    op.create_index('ix_user_tron_addresses_tron_address', 'user_tron_addresses', ['tron_address'])

    # Deposits table
    op.create_table(
        'deposits',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(18, 8), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('tx_hash', sa.String(128), nullable=True),
        sa.Column('tron_address', sa.String(64), nullable=True),
        sa.Column('block_number', sa.BigInteger(), nullable=True),
        sa.Column('on_chain_amount', sa.Numeric(18, 8), nullable=True),
        sa.Column('review_note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirmed_by', sa.String(100), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tx_hash')
    )
    op.create_index('ix_deposits_user_id', 'deposits', ['user_id'])
    op.create_index('ix_deposits_status', 'deposits', ['status'])

    # Scan checkpoint (single row)
    op.create_table(
        'tron_scan_state',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('last_block_height', sa.BigInteger(), nullable=False),
        sa.Column('last_scan_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('is_scanning', sa.Boolean(), nullable=False),
        sa.Column('scan_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )


def downgrade() -> None:
    op.drop_table('tron_scan_state')
    op.drop_index('ix_deposits_status', table_name='deposits')
    op.drop_index('ix_deposits_user_id', table_name='deposits')
    op.drop_table('deposits')
    op.drop_index('ix_user_tron_addresses_tron_address', table_name='user_tron_addresses')
    op.drop_table('user_tron_addresses')
    op.drop_index('ix_users_telegram_id', table_name='users')
    op.drop_table('users')
