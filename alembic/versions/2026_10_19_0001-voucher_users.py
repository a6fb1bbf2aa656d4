"""voucher users

Revision ID: 2026_10_19_0001
Revises: 2026_10_19_0000
Create Date: 2026-10-19 14:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0001'
down_revision: Union[str, None] = '2026_10_19_0000'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create voucher_users table."""
    op.create_table(
        'voucher_users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('trader_key', sa.String(16), nullable=False),
        sa.Column('username', sa.String(64), nullable=False),
        sa.Column('profile', sa.String(64), nullable=False, server_default='default'),
        sa.Column('category', sa.String(20), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('limit_uptime_seconds', sa.BigInteger(), nullable=False),
        sa.Column('device_user_created', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint("category IN ('hour', 'day', 'week', 'month')", name='ck_voucher_user_category'),
        sa.CheckConstraint('quantity > 0', name='ck_voucher_user_quantity_positive'),
        sa.CheckConstraint('limit_uptime_seconds > 0', name='ck_voucher_user_uptime_positive'),
        sa.ForeignKeyConstraint(['trader_key'], ['traders.trader_key'], name='fk_voucher_users_trader', ondelete='RESTRICT'),
    )
    op.create_index('idx_voucher_users_trader_created', 'voucher_users', ['trader_key', 'created_at'])
    op.create_index('idx_voucher_users_username', 'voucher_users', ['username'])


def downgrade() -> None:
    """Drop voucher_users table."""
    op.drop_table('voucher_users')
