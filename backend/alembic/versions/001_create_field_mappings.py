"""create_field_mappings

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:12:41.208311

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table('field_mappings'):
        op.create_table('field_mappings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('table_key', sa.String(length=255), nullable=False),
        sa.Column('content_type', sa.String(length=32), nullable=False),
        sa.Column('strategy', sa.String(length=64), nullable=False),
        sa.Column('strategy_version', sa.String(length=16), nullable=False),
        sa.Column('columns', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'table_key', name='uq_field_mappings_user_table')
        )
        op.create_index(op.f('ix_field_mappings_id'), 'field_mappings', ['id'], unique=False)
        op.create_index(op.f('ix_field_mappings_user_id'), 'field_mappings', ['user_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if inspector.has_table('field_mappings'):
        indexes = [idx['name'] for idx in inspector.get_indexes('field_mappings')]
        for name in ('ix_field_mappings_user_id', 'ix_field_mappings_id'):
            if name in indexes:
                op.drop_index(op.f(name), table_name='field_mappings')
        op.drop_table('field_mappings')
