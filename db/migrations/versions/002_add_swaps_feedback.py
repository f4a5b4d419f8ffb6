"""add_swaps_feedback

Revision ID: 002
Revises: 001
Create Date: 2026-10-05 16:40:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table('swaps_feedback',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=128), nullable=True),
        sa.Column('last_name', sa.String(length=128), nullable=True),
        sa.Column('storefront_customer_id', sa.BigInteger(), nullable=True),
        sa.Column('billing_customer_id', sa.String(length=64), nullable=True),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.Column('text', sa.Text(), nullable=True),

        # Период отзыва (следующий месяц)
        sa.Column('month', sa.String(length=2), nullable=False),
        sa.Column('month_name', sa.String(length=16), nullable=False),
        sa.Column('year', sa.String(length=4), nullable=False),

        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', 'month', 'year', name='uq_swaps_feedback_email_period'),
    )
    op.create_index(op.f('ix_swaps_feedback_email'), 'swaps_feedback', ['email'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_swaps_feedback_email'), table_name='swaps_feedback')
    op.drop_table('swaps_feedback')
