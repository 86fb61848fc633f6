"""Initial migration - create sync tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-01

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create strava_accounts table
    op.create_table(
        'strava_accounts',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(36), nullable=False, index=True),
        sa.Column('provider', sa.String(32), nullable=False),
        sa.Column('provider_account_id', sa.String(20), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.Integer(), nullable=True),
        sa.Column('token_type', sa.String(32), nullable=True),
        sa.Column('scope', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('user_id', 'provider', name='uq_strava_accounts_user_provider'),
        sa.UniqueConstraint('provider', 'provider_account_id', name='uq_strava_accounts_athlete'),
    )

    # Create activities table
    op.create_table(
        'activities',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('type', sa.String(50), nullable=True),
        sa.Column('distance_m', sa.Float(), nullable=True),
        sa.Column('moving_s', sa.Integer(), nullable=True),
        sa.Column('elapsed_s', sa.Integer(), nullable=True),
        sa.Column('start_date', sa.DateTime(), nullable=True, index=True),
        sa.Column('timezone', sa.String(64), nullable=True),
        sa.Column('is_trainer', sa.Boolean(), nullable=True),
        sa.Column('is_commute', sa.Boolean(), nullable=True),
        sa.Column('total_elev_m', sa.Float(), nullable=True),
        sa.Column('raw', sa.JSON(), nullable=True),
        sa.Column('avg_hr', sa.Float(), nullable=True),
        sa.Column('max_hr', sa.Float(), nullable=True),
        sa.Column('avg_speed', sa.Float(), nullable=True),
        sa.Column('avg_cadence', sa.Float(), nullable=True),
        sa.Column('avg_watts', sa.Float(), nullable=True),
        sa.Column('calories', sa.Float(), nullable=True),
        sa.Column('device_name', sa.String(255), nullable=True),
        sa.Column('map_polyline', sa.Text(), nullable=True),
        sa.Column('raw_detail', sa.JSON(), nullable=True),
        sa.Column('has_streams', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    # Create activity_streams table
    op.create_table(
        'activity_streams',
        sa.Column(
            'activity_id', sa.String(32),
            sa.ForeignKey('activities.id', ondelete='CASCADE'),
            primary_key=True
        ),
        sa.Column('time', sa.JSON(), nullable=True),
        sa.Column('heartrate', sa.JSON(), nullable=True),
        sa.Column('velocity_smooth', sa.JSON(), nullable=True),
        sa.Column('altitude', sa.JSON(), nullable=True),
        sa.Column('cadence', sa.JSON(), nullable=True),
        sa.Column('watts', sa.JSON(), nullable=True),
        sa.Column('grade_smooth', sa.JSON(), nullable=True),
        sa.Column('latlng', sa.JSON(), nullable=True),
        sa.Column('sample_count', sa.Integer(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    # Create strava_sync_state table
    op.create_table(
        'strava_sync_state',
        sa.Column('user_id', sa.String(36), primary_key=True),
        sa.Column('last_sync_start', sa.DateTime(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.Column('backfill_done', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table('strava_sync_state')
    op.drop_table('activity_streams')
    op.drop_table('activities')
    op.drop_table('strava_accounts')
