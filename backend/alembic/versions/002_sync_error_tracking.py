"""Add stream check and sync error tracking

Revision ID: 002_sync_error_tracking
Revises: 001_initial
Create Date: 2026-10-09

Adds:
- activities.streams_checked_at: set once Strava answered the streams request
- strava_sync_state.last_error: message of the last failed run
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '002_sync_error_tracking'
down_revision: Union[str, None] = '001_initial'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        'activities',
        sa.Column('streams_checked_at', sa.DateTime(), nullable=True)
    )
    op.add_column(
        'strava_sync_state',
        sa.Column('last_error', sa.String(500), nullable=True)
    )


def downgrade() -> None:
    with op.batch_alter_table('strava_sync_state') as batch_op:
        batch_op.drop_column('last_error')
    with op.batch_alter_table('activities') as batch_op:
        batch_op.drop_column('streams_checked_at')
