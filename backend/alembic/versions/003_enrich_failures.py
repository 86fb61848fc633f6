"""Add enrichment failure counter

Revision ID: 003_enrich_failures
Revises: 002_sync_error_tracking
Create Date: 2026-10-17

Adds:
- activities.enrich_failures: failed detail/stream attempts, capped rows
  are no longer picked for enrichment
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '003_enrich_failures'
down_revision: Union[str, None] = '002_sync_error_tracking'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        'activities',
        sa.Column('enrich_failures', sa.Integer(), nullable=False, server_default='0')
    )


def downgrade() -> None:
    with op.batch_alter_table('activities') as batch_op:
        batch_op.drop_column('enrich_failures')
