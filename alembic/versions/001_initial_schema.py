"""initial schema

Revision ID: 001
Revises:
Create Date: 2025-11-03

"""
from alembic import op
import sqlalchemy as sa

from app.migration_ops import create_index_if_missing, create_table_if_missing

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create feedback table (diagnostics stored as JSON text)
    create_table_if_missing(
        'feedback',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('app_version', sa.String(), nullable=True),
        sa.Column('build_number', sa.String(), nullable=True),
        sa.Column('macos_version', sa.String(), nullable=True),
        sa.Column('device_model', sa.String(), nullable=True),
        sa.Column('total_disk_space', sa.String(), nullable=True),
        sa.Column('free_disk_space', sa.String(), nullable=True),
        sa.Column('session_count', sa.Integer(), nullable=True),
        sa.Column('frame_count', sa.Integer(), nullable=True),
        sa.Column('segment_count', sa.Integer(), nullable=True),
        sa.Column('database_size_mb', sa.Float(), nullable=True),
        sa.Column('diagnostics_timestamp', sa.String(), nullable=True),
        sa.Column('recent_errors', sa.Text(), nullable=True),
        sa.Column('recent_logs', sa.Text(), nullable=True),
        sa.Column('settings_snapshot', sa.Text(), nullable=True),
        sa.Column('display_info', sa.Text(), nullable=True),
        sa.Column('process_info', sa.Text(), nullable=True),
        sa.Column('accessibility_info', sa.Text(), nullable=True),
        sa.Column('performance_info', sa.Text(), nullable=True),
        sa.Column('emergency_crash_reports', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    create_index_if_missing('ix_feedback_type', 'feedback', ['type'])
    create_index_if_missing('ix_feedback_created_at', 'feedback', ['created_at'])

    # Create downloads table
    create_table_if_missing(
        'downloads',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('version', sa.String(), nullable=True),
        sa.Column('source', sa.String(), nullable=True),
        sa.Column('os', sa.String(), nullable=True),
        sa.Column('os_version', sa.String(), nullable=True),
        sa.Column('browser', sa.String(), nullable=True),
        sa.Column('browser_version', sa.String(), nullable=True),
        sa.Column('architecture', sa.String(), nullable=True),
        sa.Column('platform', sa.String(), nullable=True),
        sa.Column('language', sa.String(), nullable=True),
        sa.Column('screen_resolution', sa.String(), nullable=True),
        sa.Column('timezone', sa.String(), nullable=True),
        sa.Column('referrer', sa.Text(), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('ip', sa.String(), nullable=True),
        sa.Column('country', sa.String(), nullable=True),
        sa.Column('city', sa.String(), nullable=True),
        sa.Column('region', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    create_index_if_missing('ix_downloads_source', 'downloads', ['source'])
    create_index_if_missing('ix_downloads_created_at', 'downloads', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_downloads_created_at', table_name='downloads')
    op.drop_index('ix_downloads_source', table_name='downloads')
    op.drop_table('downloads')
    op.drop_index('ix_feedback_created_at', table_name='feedback')
    op.drop_index('ix_feedback_type', table_name='feedback')
    op.drop_table('feedback')
