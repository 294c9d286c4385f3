"""Mark swept cart lines and stamp order timestamps from the application clock

Revision ID: 8d2e4b61c5a7
Revises: 3f1c9a7d2b10
Create Date: 2026-10-20 10:41:07.552913

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# Revision identifiers used by Alembic
revision: str = '8d2e4b61c5a7'
down_revision: Union[str, Sequence[str], None] = '3f1c9a7d2b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Timestamps the reaper and reconciler compare against naive UTC
APP_TIMESTAMPS = {
    'orders': ['created_at', 'updated_at'],
    'payment_intents': ['created_at'],
    'custom_cake_orders': ['created_at', 'updated_at'],
    'image_based_orders': ['created_at', 'updated_at'],
}


def upgrade() -> None:
    """Upgrade schema."""
    # Lines sold out by another customer's purchase
    op.add_column('cart_items', sa.Column('swept_at', sa.DateTime(), nullable=True))

    for table, columns in APP_TIMESTAMPS.items():
        with op.batch_alter_table(table) as batch:
            for column in columns:
                batch.alter_column(column, existing_type=sa.DateTime(), server_default=None)


def downgrade() -> None:
    """Downgrade schema."""
    for table, columns in APP_TIMESTAMPS.items():
        with op.batch_alter_table(table) as batch:
            for column in columns:
                batch.alter_column(column, existing_type=sa.DateTime(), server_default=sa.func.now())

    with op.batch_alter_table('cart_items') as batch:
        batch.drop_column('swept_at')
