"""Add storage mode singleton and video compression columns.

Revision ID: 001
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'storage_config',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('mode', sa.String(20), nullable=False, server_default='remote'),
        sa.Column('updated_by', sa.String(64), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    # videos is owned by the catalog; only the compression columns are added here
    op.add_column('videos', sa.Column('compression_status', sa.String(20), nullable=True, server_default='pending'))
    op.add_column('videos', sa.Column('storage_backend', sa.String(20), nullable=True))
    op.add_column('videos', sa.Column('original_size', sa.BigInteger(), nullable=True))
    op.add_column('videos', sa.Column('compressed_size', sa.BigInteger(), nullable=True))
    op.create_index('ix_videos_compression_status', 'videos', ['compression_status'])


def downgrade() -> None:
    op.drop_index('ix_videos_compression_status', table_name='videos')
    op.drop_column('videos', 'compressed_size')
    op.drop_column('videos', 'original_size')
    op.drop_column('videos', 'storage_backend')
    op.drop_column('videos', 'compression_status')
    op.drop_table('storage_config')
