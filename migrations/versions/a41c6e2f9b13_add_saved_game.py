"""Add saved_game table

Revision ID: a41c6e2f9b13
Revises: 
Create Date: 2026-10-19 10:12:31.504218

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a41c6e2f9b13'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('saved_game',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('room', sa.String(length=8), nullable=False),
        sa.Column('snapshot_json', sa.Text(), nullable=False),
        sa.Column('updated', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('room')
    )


def downgrade():
    op.drop_table('saved_game')
