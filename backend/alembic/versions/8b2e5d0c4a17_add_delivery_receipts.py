"""Add delivery receipts and received quantities

Revision ID: 8b2e5d0c4a17
Revises: 3f1c2a9d8e01
Create Date: 2026-10-19 15:40:02.551930

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# Revision identifiers used by Alembic
revision: str = '8b2e5d0c4a17'
down_revision: Union[str, Sequence[str], None] = '3f1c2a9d8e01'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    with op.batch_alter_table('order_items') as batch_op:
        batch_op.add_column(sa.Column('received_quantity', sa.Float(), nullable=False, server_default='0'))

    op.create_table(
        'delivery_receipts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('received_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('received_at', sa.DateTime(), nullable=False),
        sa.Column('delivered_by', sa.String(length=100), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('lines', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_delivery_receipts_id', 'delivery_receipts', ['id'])
    op.create_index('ix_delivery_receipts_order_id', 'delivery_receipts', ['order_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('delivery_receipts')
    with op.batch_alter_table('order_items') as batch_op:
        batch_op.drop_column('received_quantity')
