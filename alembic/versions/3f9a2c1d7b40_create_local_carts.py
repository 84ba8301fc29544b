"""create_local_carts

Revision ID: 3f9a2c1d7b40
Revises:
Create Date: 2026-10-19 10:12:41.118302

"""
from alembic import op
import sqlalchemy as sa


revision = '3f9a2c1d7b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'local_carts',
        sa.Column('storage_key', sa.String(length=255), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('storage_key'),
    )


def downgrade() -> None:
    op.drop_table('local_carts')
