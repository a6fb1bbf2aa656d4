"""initial schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial database schema."""

    # ========================================================================
    # Create traders table
    # ========================================================================
    op.create_table(
        'traders',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('trader_key', sa.String(16), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('trader_key', name='uq_traders_trader_key'),
    )
    op.create_index('idx_traders_is_active', 'traders', ['is_active'])

    # ========================================================================
    # Create transactions table (append-only ledger)
    # ========================================================================
    op.create_table(
        'transactions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('seq', sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column('trader_key', sa.String(16), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('reference', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('amount >= 0', name='ck_transaction_amount_non_negative'),
        sa.CheckConstraint("kind IN ('credit_add', 'voucher_purchase')", name='ck_transaction_kind'),
        sa.UniqueConstraint('seq', name='uq_transactions_seq'),
        sa.ForeignKeyConstraint(['trader_key'], ['traders.trader_key'], name='fk_transactions_trader', ondelete='RESTRICT'),
    )
    op.create_index('idx_transactions_trader_created', 'transactions', ['trader_key', 'created_at', 'seq'])
    op.create_index('idx_transactions_kind', 'transactions', ['kind'])

    # ========================================================================
    # Create clients table
    # ========================================================================
    op.create_table(
        'clients',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('trader_key', sa.String(16), nullable=False),
        sa.Column('phone', sa.String(32), nullable=False),
        sa.Column('mac_address', sa.String(17), nullable=False),
        sa.Column('rewarded', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('trader_key', 'phone', name='uq_client_trader_phone'),
        sa.UniqueConstraint('trader_key', 'mac_address', name='uq_client_trader_mac'),
        sa.ForeignKeyConstraint(['trader_key'], ['traders.trader_key'], name='fk_clients_trader', ondelete='RESTRICT'),
    )
    op.create_index('idx_clients_trader_created', 'clients', ['trader_key', 'created_at'])

    # ========================================================================
    # Create trader_pricing table
    # ========================================================================
    op.create_table(
        'trader_pricing',
        sa.Column('trader_key', sa.String(16), primary_key=True),
        sa.Column('hour_price', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('day_price', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('week_price', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('month_price', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint(
            'hour_price >= 0 AND day_price >= 0 AND week_price >= 0 AND month_price >= 0',
            name='ck_pricing_non_negative',
        ),
        sa.ForeignKeyConstraint(['trader_key'], ['traders.trader_key'], name='fk_pricing_trader', ondelete='CASCADE'),
    )

    # ========================================================================
    # Create trader_discounts table
    # ========================================================================
    op.create_table(
        'trader_discounts',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('trader_key', sa.String(16), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('discount_type', sa.String(20), nullable=False),
        sa.Column('discount_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('category', sa.String(20), nullable=False),
        sa.Column('threshold', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint("discount_type IN ('percentage', 'fixed_amount')", name='ck_discount_type'),
        sa.CheckConstraint("category IN ('hour', 'day', 'week', 'month')", name='ck_discount_category'),
        sa.CheckConstraint('discount_value >= 0', name='ck_discount_value_non_negative'),
        sa.CheckConstraint(
            "discount_type <> 'percentage' OR discount_value <= 100",
            name='ck_discount_percentage_range',
        ),
        sa.CheckConstraint('threshold >= 0', name='ck_discount_threshold_non_negative'),
        sa.CheckConstraint(
            'starts_at IS NULL OR ends_at IS NULL OR starts_at < ends_at',
            name='ck_discount_window_order',
        ),
        sa.ForeignKeyConstraint(['trader_key'], ['traders.trader_key'], name='fk_discounts_trader', ondelete='CASCADE'),
    )
    op.create_index('idx_discounts_trader_category', 'trader_discounts', ['trader_key', 'category'])

    # ========================================================================
    # Create devices table
    # ========================================================================
    op.create_table(
        'devices',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('host', sa.String(255), nullable=False),
        sa.Column('port', sa.Integer(), nullable=False, server_default='80'),
        sa.Column('username', sa.String(255), nullable=False),
        sa.Column('password', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('port > 0 AND port < 65536', name='ck_device_port_range'),
        sa.UniqueConstraint('host', name='uq_devices_host'),
    )
    op.create_index('idx_devices_active_created', 'devices', ['is_active', 'created_at'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('devices')
    op.drop_table('trader_discounts')
    op.drop_table('trader_pricing')
    op.drop_table('clients')
    op.drop_table('transactions')
    op.drop_table('traders')
