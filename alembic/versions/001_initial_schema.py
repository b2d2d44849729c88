"""Initial schema - platform connections and the sales ledger

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'platform_connections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('platform', sa.String(), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=False, server_default=''),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('platform_account_id', sa.String(), nullable=True),
        sa.Column('platform_username', sa.String(), nullable=True),
        sa.Column('connected_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'platform', name='uq_platform_connections_user_platform'),
    )
    op.create_index('ix_platform_connections_user_id', 'platform_connections', ['user_id'])

    op.create_table(
        'sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('platform', sa.String(), nullable=False),
        sa.Column('external_id', sa.String(), nullable=True),
        sa.Column('listing_id', sa.String(), nullable=True),
        sa.Column('sale_price', sa.Float(), nullable=False),
        sa.Column('shipping_cost', sa.Float(), nullable=False, server_default='0'),
        sa.Column('platform_fees', sa.Float(), nullable=False, server_default='0'),
        sa.Column('cost', sa.Float(), nullable=False, server_default='0'),
        sa.Column('buyer_username', sa.String(), nullable=True),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('item_title', sa.Text(), nullable=True),
        sa.Column('item_image_url', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        # NULL external ids (manual entries) never collide
        sa.UniqueConstraint('user_id', 'platform', 'external_id', name='uq_sales_user_platform_external_id'),
    )
    op.create_index('ix_sales_user_id', 'sales', ['user_id'])
    op.create_index('ix_sales_platform', 'sales', ['platform'])
    op.create_index('ix_sales_sold_at', 'sales', ['sold_at'])


def downgrade() -> None:
    op.drop_index('ix_sales_sold_at', table_name='sales')
    op.drop_index('ix_sales_platform', table_name='sales')
    op.drop_index('ix_sales_user_id', table_name='sales')
    op.drop_table('sales')
    op.drop_index('ix_platform_connections_user_id', table_name='platform_connections')
    op.drop_table('platform_connections')
