"""add instance actual_amount

Revision ID: 8d2a4b6c1e09
Revises: 3c9e1f0a7b21
Create Date: 2026-10-18 14:03:27.551920

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8d2a4b6c1e09'
down_revision: Union[str, None] = '3c9e1f0a7b21'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table('instances', schema=None) as batch_op:
        batch_op.add_column(sa.Column('actual_amount', sa.Float(), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table('instances', schema=None) as batch_op:
        batch_op.drop_column('actual_amount')
