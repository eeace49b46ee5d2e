"""publishing job approval timestamp

Revision ID: 0002_publishing_job_approval
Revises: 0001_initial_pipeline_schema
Create Date: 2026-10-19 09:30:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "0002_publishing_job_approval"
down_revision: Union[str, None] = "0001_initial_pipeline_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("publishing_jobs", sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    op.drop_column("publishing_jobs", "approved_at")
