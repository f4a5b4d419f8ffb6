"""add_rotation_inventory_ledger

Revision ID: 001
Revises:
Create Date: 2026-09-28 10:12:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    cycle_status = postgresql.ENUM('upcoming', 'active', 'archived', name='rotation_cycle_status', create_type=True)
    cycle_status.create(op.get_bind(), checkfirst=True)

    ledger_category = postgresql.ENUM('rotm', 'swap', name='ledger_category', create_type=True)
    ledger_category.create(op.get_bind(), checkfirst=True)

    op.create_table('tracks',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('value', sa.String(length=64), nullable=False),
        sa.Column('label', sa.String(length=128), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_tracks_value'), 'tracks', ['value'], unique=True)

    op.create_table('rotation_cycles',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('status', postgresql.ENUM(name='rotation_cycle_status', create_type=False), nullable=False),
        # Границы окна обмена
        sa.Column('swap_window_opens_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('swap_window_closes_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_rotation_cycles_status'), 'rotation_cycles', ['status'], unique=False)
    # Не более одного активного цикла
    op.create_index(
        'uq_rotation_cycles_single_active',
        'rotation_cycles',
        ['status'],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table('rotation_cycle_products',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('cycle_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.BigInteger(), nullable=False),
        sa.Column('track_id', sa.Integer(), nullable=True),
        sa.Column('category', postgresql.ENUM(name='ledger_category', create_type=False), nullable=False),

        # Счетчики пулов
        sa.Column('existing_sub_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('new_sub_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('swap_qty', sa.Integer(), nullable=False, server_default='0'),

        # Варианты витрины
        sa.Column('swap_variant_ref', sa.BigInteger(), nullable=True),
        sa.Column('newsub_variant_ref', sa.BigInteger(), nullable=True),
        sa.Column('existingsub_variant_ref', sa.BigInteger(), nullable=True),

        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['cycle_id'], ['rotation_cycles.id'], ),
        sa.ForeignKeyConstraint(['track_id'], ['tracks.id'], ),
        sa.UniqueConstraint('cycle_id', 'product_id', name='uq_cycle_product'),
        sa.CheckConstraint('existing_sub_qty >= 0', name='ck_existing_sub_qty_non_negative'),
        sa.CheckConstraint('new_sub_qty >= 0', name='ck_new_sub_qty_non_negative'),
        sa.CheckConstraint('swap_qty >= 0', name='ck_swap_qty_non_negative'),
    )
    op.create_index(op.f('ix_rotation_cycle_products_cycle_id'), 'rotation_cycle_products', ['cycle_id'], unique=False)
    op.create_index(op.f('ix_rotation_cycle_products_product_id'), 'rotation_cycle_products', ['product_id'], unique=False)
    op.create_index(
        op.f('ix_rotation_cycle_products_swap_variant_ref'), 'rotation_cycle_products', ['swap_variant_ref'], unique=False
    )


def downgrade() -> None:
    op.drop_index(op.f('ix_rotation_cycle_products_swap_variant_ref'), table_name='rotation_cycle_products')
    op.drop_index(op.f('ix_rotation_cycle_products_product_id'), table_name='rotation_cycle_products')
    op.drop_index(op.f('ix_rotation_cycle_products_cycle_id'), table_name='rotation_cycle_products')
    op.drop_table('rotation_cycle_products')

    op.drop_index('uq_rotation_cycles_single_active', table_name='rotation_cycles')
    op.drop_index(op.f('ix_rotation_cycles_status'), table_name='rotation_cycles')
    op.drop_table('rotation_cycles')

    op.drop_index(op.f('ix_tracks_value'), table_name='tracks')
    op.drop_table('tracks')

    sa.Enum(name='ledger_category').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='rotation_cycle_status').drop(op.get_bind(), checkfirst=True)
