"""create poi_import_events table

Revision ID: 20261019_1020_create_poi_import_events
Revises: 20261019_1010_create_shared_poi_links
Create Date: 2026-10-19 10:20:00
"""
from alembic import op
import sqlalchemy as sa

revision = '20261019_1020_create_poi_import_events'
down_revision = '20261019_1010_create_shared_poi_links'
branch_labels = None
depends_on = None

def upgrade() -> None:
    # No foreign key to shared_poi_links: history survives link deletion.
    op.create_table(
        'poi_import_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('shared_link_id', sa.String(36), nullable=False, index=True),
        sa.Column('imported_count', sa.Integer(), nullable=False),
        sa.Column('imported_by', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True),
        sa.CheckConstraint('imported_count >= 0', name='ck_poi_import_events_count'),
    )

def downgrade() -> None:
    op.drop_table('poi_import_events')
