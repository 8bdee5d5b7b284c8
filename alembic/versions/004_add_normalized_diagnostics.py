"""Add normalized diagnostics tables and migration markers

Revision ID: 004
Revises: 003
Create Date: 2026-02-09

"""
from alembic import op
import sqlalchemy as sa

from app.migration_ops import (
    add_column_if_missing,
    create_index_if_missing,
    create_table_if_missing,
)

# revision identifiers, used by Alembic.
revision = '004'
down_revision = '003'
branch_labels = None
depends_on = None


def _feedback_fk(primary_key: bool = False) -> sa.Column:
    return sa.Column(
        'feedback_id',
        sa.Integer(),
        sa.ForeignKey('feedback.id', ondelete='CASCADE'),
        primary_key=primary_key,
        nullable=False,
    )


def _timestamps(with_updated: bool = True) -> list:
    columns = [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]
    if with_updated:
        columns.append(
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
        )
    return columns


def upgrade() -> None:
    add_column_if_missing('feedback', sa.Column('display_count', sa.Integer(), nullable=False, server_default='0'))

    create_table_if_missing(
        'feedback_performance',
        _feedback_fk(primary_key=True),
        sa.Column('cpu_usage_percent', sa.Float(), nullable=False, server_default='0'),
        sa.Column('memory_used_gb', sa.Float(), nullable=False, server_default='0'),
        sa.Column('memory_total_gb', sa.Float(), nullable=False, server_default='0'),
        sa.Column('memory_pressure', sa.String(), nullable=False, server_default='unknown'),
        sa.Column('swap_used_gb', sa.Float(), nullable=False, server_default='0'),
        sa.Column('thermal_state', sa.String(), nullable=False, server_default='unknown'),
        sa.Column('processor_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_low_power_mode_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('power_source', sa.String(), nullable=False, server_default='unknown'),
        sa.Column('battery_level', sa.Integer(), nullable=True),
        *_timestamps(),
    )
    create_index_if_missing(
        'ix_feedback_performance_memory_pressure', 'feedback_performance', ['memory_pressure']
    )

    create_table_if_missing(
        'feedback_process',
        _feedback_fk(primary_key=True),
        sa.Column('total_running', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('event_monitoring_apps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('window_management_apps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('security_apps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('has_jamf', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('has_kandji', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('axui_server_cpu', sa.Float(), nullable=False, server_default='0'),
        sa.Column('window_server_cpu', sa.Float(), nullable=False, server_default='0'),
        *_timestamps(),
    )
    create_index_if_missing('ix_feedback_process_has_jamf', 'feedback_process', ['has_jamf'])
    create_index_if_missing('ix_feedback_process_has_kandji', 'feedback_process', ['has_kandji'])

    create_table_if_missing(
        'feedback_accessibility',
        _feedback_fk(primary_key=True),
        sa.Column('voice_over_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('switch_control_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reduce_motion_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('increase_contrast_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reduce_transparency_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('differentiate_without_color_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('display_has_inverted_colors', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )

    create_table_if_missing(
        'feedback_displays',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        _feedback_fk(),
        sa.Column('row_index', sa.Integer(), nullable=False),
        sa.Column('display_index', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('resolution', sa.String(), nullable=False, server_default=''),
        sa.Column('backing_scale_factor', sa.String(), nullable=False, server_default=''),
        sa.Column('color_space', sa.String(), nullable=False, server_default=''),
        sa.Column('refresh_rate', sa.String(), nullable=False, server_default=''),
        sa.Column('is_retina', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('frame', sa.String(), nullable=False, server_default=''),
        sa.Column('is_main_display', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(with_updated=False),
        sa.UniqueConstraint('feedback_id', 'row_index', name='uq_feedback_display_row'),
    )
    create_index_if_missing('ix_feedback_displays_feedback_id', 'feedback_displays', ['feedback_id'])
    create_index_if_missing('ix_feedback_displays_display_index', 'feedback_displays', ['display_index'])

    create_table_if_missing(
        'feedback_settings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        _feedback_fk(),
        sa.Column('setting_key', sa.String(), nullable=False),
        sa.Column('setting_value', sa.Text(), nullable=True),
        *_timestamps(with_updated=False),
        sa.UniqueConstraint('feedback_id', 'setting_key', name='uq_feedback_setting_key'),
    )
    create_index_if_missing('ix_feedback_settings_feedback_id', 'feedback_settings', ['feedback_id'])
    create_index_if_missing('ix_feedback_settings_setting_key', 'feedback_settings', ['setting_key'])

    create_table_if_missing(
        'feedback_crash_reports',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        _feedback_fk(),
        sa.Column('report_index', sa.Integer(), nullable=False),
        sa.Column('report_text', sa.Text(), nullable=False),
        *_timestamps(with_updated=False),
        sa.UniqueConstraint('feedback_id', 'report_index', name='uq_feedback_crash_report'),
    )
    create_index_if_missing('ix_feedback_crash_reports_feedback_id', 'feedback_crash_reports', ['feedback_id'])

    create_table_if_missing(
        'feedback_log_entries',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        _feedback_fk(),
        sa.Column('level', sa.String(), nullable=False),
        sa.Column('entry_index', sa.Integer(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        *_timestamps(with_updated=False),
        sa.UniqueConstraint('feedback_id', 'level', 'entry_index', name='uq_feedback_log_entry'),
    )
    create_index_if_missing('ix_feedback_log_entries_feedback_id', 'feedback_log_entries', ['feedback_id'])
    create_index_if_missing('ix_feedback_log_entries_level', 'feedback_log_entries', ['level'])

    # Markers for one-time data migrations (e.g. the legacy diagnostics backfill)
    create_table_if_missing(
        'migration_state',
        sa.Column('key', sa.String(), primary_key=True),
        sa.Column('value', sa.String(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('migration_state')
    op.drop_table('feedback_log_entries')
    op.drop_table('feedback_crash_reports')
    op.drop_table('feedback_settings')
    op.drop_table('feedback_displays')
    op.drop_table('feedback_accessibility')
    op.drop_table('feedback_process')
    op.drop_table('feedback_performance')
    with op.batch_alter_table('feedback') as batch_op:
        batch_op.drop_column('display_count')
