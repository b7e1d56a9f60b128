"""create shared_poi_links table

Revision ID: 20261019_1010_create_shared_poi_links
Revises: 20261019_1000_create_poi_favorites
Create Date: 2026-10-19 10:10:00
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = '20261019_1010_create_shared_poi_links'
down_revision = '20261019_1000_create_poi_favorites'
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        'shared_poi_links',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('share_code', sa.String(32), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=True, index=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('poi_ids', sa.JSON().with_variant(postgresql.JSONB(), 'postgresql'), nullable=False),
        sa.Column('import_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('last_imported_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_shared_poi_links_share_code', 'shared_poi_links', ['share_code'], unique=True)

def downgrade() -> None:
    op.drop_index('ix_shared_poi_links_share_code', table_name='shared_poi_links')
    op.drop_table('shared_poi_links')
