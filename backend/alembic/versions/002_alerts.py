"""alerts

Revision ID: 002_alerts
Revises: 001_initial_schema
Create Date: 2026-10-19 15:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '002_alerts'
down_revision = '001_initial_schema'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'alerts',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('alert_type', sa.String(50), nullable=False, comment='Alert type (critical_error/consecutive_errors)'),
        sa.Column('severity', sa.String(20), nullable=False, comment='Severity of the triggering error'),
        sa.Column('correlation_id', sa.String(64), nullable=True, comment='Correlation id of the triggering error'),
        sa.Column('message', sa.Text(), nullable=True, comment='Alert message'),
        sa.Column('data', sa.JSON(), nullable=True, comment='Full alert payload'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), comment='Created at'),
        sa.Index('idx_alerts_created_at', 'created_at'),
    )


def downgrade() -> None:
    op.drop_table('alerts')
