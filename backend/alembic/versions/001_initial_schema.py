"""initial_schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'documents',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(100), nullable=False, comment='Owner user id'),
        sa.Column('original_text', sa.Text(), nullable=False, comment='Submitted text'),
        sa.Column('content_hash', sa.String(64), nullable=True, comment='SHA-256 of the normalised text'),
        sa.Column('language', sa.String(10), nullable=False, server_default='en', comment='Detected language'),
        sa.Column('status', sa.String(20), nullable=False, server_default='completed', comment='Status (processing/completed/failed)'),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='Extra metadata (word count, source)'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), comment='Created at'),
        sa.Index('idx_documents_user_id', 'user_id'),
        sa.Index('idx_documents_content_hash', 'content_hash'),
    )

    op.create_table(
        'summaries',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('document_id', sa.Uuid(), sa.ForeignKey('documents.id', ondelete='CASCADE'), nullable=False, comment='Source document'),
        sa.Column('user_id', sa.String(100), nullable=False, comment='Owner user id'),
        sa.Column('summary_text', sa.Text(), nullable=False, comment='Summary text'),
        sa.Column('method', sa.String(50), nullable=False, comment='Method (extractive/abstractive/hybrid/hierarchical/... (fallback))'),
        sa.Column('config', sa.JSON(), nullable=False, comment='Summarization config'),
        sa.Column('metrics', sa.JSON(), nullable=True, comment='Summary metrics'),
        sa.Column('model_version', sa.String(100), nullable=True, comment='Model version that produced the summary'),
        sa.Column('processing_time', sa.Integer(), nullable=True, comment='Processing time in milliseconds'),
        sa.Column('confidence', sa.Float(), nullable=True, comment='Confidence score (0-1)'),
        sa.Column('cache_key', sa.String(128), nullable=True, comment='Cache key'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), comment='Created at'),
        sa.Index('idx_summaries_document_id', 'document_id'),
        sa.Index('idx_summaries_user_id', 'user_id'),
        sa.Index('idx_summaries_model_version', 'model_version'),
    )

    op.create_table(
        'usage_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(100), nullable=False, comment='User id'),
        sa.Column('action', sa.String(50), nullable=False, comment='Action (summarize/upload/feedback)'),
        sa.Column('document_id', sa.Uuid(), nullable=True, comment='Related document'),
        sa.Column('summary_id', sa.Uuid(), nullable=True, comment='Related summary'),
        sa.Column('tokens_used', sa.Integer(), nullable=False, server_default='0', comment='Tokens used'),
        sa.Column('cost', sa.Float(), nullable=False, server_default='0', comment='Cost'),
        sa.Column('processing_time', sa.Integer(), nullable=True, comment='Processing time in milliseconds'),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='Extra metadata'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), comment='Created at'),
        sa.Index('idx_usage_logs_user_action_created', 'user_id', 'action', 'created_at'),
        sa.Index('idx_usage_logs_created_at', 'created_at'),
    )

    op.create_table(
        'user_blocks',
        sa.Column('user_id', sa.String(100), primary_key=True, comment='User id'),
        sa.Column('reason', sa.String(100), nullable=True, comment='Block reason'),
        sa.Column('blocked_until', sa.DateTime(timezone=True), nullable=False, comment='Block expiry'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), comment='Updated at'),
    )

    op.create_table(
        'user_profiles',
        sa.Column('user_id', sa.String(100), primary_key=True, comment='User id'),
        sa.Column('tier', sa.String(20), nullable=False, server_default='free', comment='Tier (free/pro/premium)'),
        sa.Column('monthly_quota', sa.Integer(), nullable=True, comment='Monthly request quota, tier default when empty'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), comment='Created at'),
    )

    op.create_table(
        'model_versions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False, comment='Display name'),
        sa.Column('type', sa.String(20), nullable=False, comment='Model type (extractive/abstractive/hybrid)'),
        sa.Column('provider', sa.String(50), nullable=False, comment='Backend provider'),
        sa.Column('backend_model_id', sa.String(200), nullable=False, comment='Model id understood by the backend'),
        sa.Column('version', sa.String(100), nullable=False, unique=True, comment='Version string'),
        sa.Column('cost', sa.Float(), nullable=False, server_default='0', comment='Cost per 1K tokens'),
        sa.Column('quality', sa.Float(), nullable=False, server_default='0', comment='Quality score (0-1)'),
        sa.Column('speed', sa.Float(), nullable=False, server_default='0', comment='Speed score (0-1)'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false(), comment='Serving traffic'),
        sa.Column('config', sa.JSON(), nullable=True, comment='Backend parameters'),
        sa.Column('metrics', sa.JSON(), nullable=True, comment='Running metric averages'),
        sa.Column('deployed_at', sa.DateTime(timezone=True), nullable=True, comment='Last activation time'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), comment='Created at'),
        sa.Index('idx_model_versions_type_active', 'type', 'is_active'),
    )

    op.create_table(
        'feedback',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('summary_id', sa.Uuid(), nullable=False, comment='Rated summary'),
        sa.Column('user_id', sa.String(100), nullable=False, comment='User id'),
        sa.Column('rating', sa.Integer(), nullable=False, comment='Rating (1-5)'),
        sa.Column('feedback_type', sa.String(30), nullable=False, comment='Feedback type'),
        sa.Column('edited_summary', sa.Text(), nullable=True, comment='User corrected summary'),
        sa.Column('comments', sa.Text(), nullable=True, comment='Free-form comments'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), comment='Created at'),
        sa.Index('idx_feedback_summary_id', 'summary_id'),
        sa.Index('idx_feedback_created_at', 'created_at'),
    )

    op.create_table(
        'retraining_examples',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('summary_id', sa.Uuid(), nullable=True, comment='Originating summary'),
        sa.Column('model_version', sa.String(100), nullable=True, comment='Model version that produced the summary'),
        sa.Column('source_text', sa.Text(), nullable=False, comment='Source text'),
        sa.Column('target_text', sa.Text(), nullable=False, comment='Target summary'),
        sa.Column('rating', sa.Integer(), nullable=True, comment='Rating that triggered the example'),
        sa.Column('feedback_type', sa.String(30), nullable=True, comment='Feedback type'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', comment='Status (pending/used)'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), comment='Created at'),
    )

    op.create_table(
        'summary_cache',
        sa.Column('cache_key', sa.String(128), primary_key=True, comment='Cache key'),
        sa.Column('value', sa.Text(), nullable=False, comment='Serialised SummaryResult'),
        sa.Column('hits', sa.Integer(), nullable=False, server_default='0', comment='Hit count'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False, comment='Expiry time'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), comment='Created at'),
        sa.Index('idx_summary_cache_expires_at', 'expires_at'),
    )

    op.create_table(
        'error_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('correlation_id', sa.String(64), nullable=False, comment='Correlation id returned to the caller'),
        sa.Column('error_type', sa.String(30), nullable=False, comment='Error kind'),
        sa.Column('severity', sa.String(20), nullable=False, comment='Severity (low/medium/high/critical)'),
        sa.Column('message', sa.Text(), nullable=True, comment='Internal error message'),
        sa.Column('user_id', sa.String(100), nullable=True, comment='User id'),
        sa.Column('context', sa.JSON(), nullable=True, comment='Operation context'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), comment='Created at'),
        sa.Index('idx_error_logs_correlation_id', 'correlation_id'),
        sa.Index('idx_error_logs_created_at', 'created_at'),
    )


def downgrade() -> None:
    op.drop_table('error_logs')
    op.drop_table('summary_cache')
    op.drop_table('retraining_examples')
    op.drop_table('feedback')
    op.drop_table('model_versions')
    op.drop_table('user_profiles')
    op.drop_table('user_blocks')
    op.drop_table('usage_logs')
    op.drop_table('summaries')
    op.drop_table('documents')
