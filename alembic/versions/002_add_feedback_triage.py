"""Add triage fields, screenshots and feedback notes

Revision ID: 002
Revises: 001
Create Date: 2025-12-01

"""
from alembic import op
import sqlalchemy as sa

from app.migration_ops import (
    add_column_if_missing,
    create_index_if_missing,
    create_table_if_missing,
)

# revision identifiers, used by Alembic.
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    add_column_if_missing('feedback', sa.Column('status', sa.String(), nullable=False, server_default='open'))
    add_column_if_missing('feedback', sa.Column('priority', sa.String(), nullable=False, server_default='medium'))
    add_column_if_missing('feedback', sa.Column('notes', sa.Text(), nullable=False, server_default=''))
    add_column_if_missing('feedback', sa.Column('tags', sa.Text(), nullable=False, server_default='[]'))
    add_column_if_missing('feedback', sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()))
    add_column_if_missing('feedback', sa.Column('has_screenshot', sa.Boolean(), nullable=False, server_default=sa.false()))
    add_column_if_missing('feedback', sa.Column('screenshot_data', sa.LargeBinary(), nullable=True))
    if add_column_if_missing('feedback', sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True)):
        op.execute("UPDATE feedback SET updated_at = created_at WHERE updated_at IS NULL")

    create_index_if_missing('ix_feedback_status', 'feedback', ['status'])
    create_index_if_missing('ix_feedback_priority', 'feedback', ['priority'])
    create_index_if_missing('ix_feedback_updated_at', 'feedback', ['updated_at'])

    create_table_if_missing(
        'feedback_notes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('feedback_id', sa.Integer(), nullable=False),
        sa.Column('author', sa.String(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['feedback_id'], ['feedback.id'], ondelete='CASCADE'),
    )
    create_index_if_missing('ix_feedback_notes_feedback_id', 'feedback_notes', ['feedback_id'])


def downgrade() -> None:
    op.drop_index('ix_feedback_notes_feedback_id', table_name='feedback_notes')
    op.drop_table('feedback_notes')
    op.drop_index('ix_feedback_updated_at', table_name='feedback')
    op.drop_index('ix_feedback_priority', table_name='feedback')
    op.drop_index('ix_feedback_status', table_name='feedback')
    with op.batch_alter_table('feedback') as batch_op:
        batch_op.drop_column('updated_at')
        batch_op.drop_column('screenshot_data')
        batch_op.drop_column('has_screenshot')
        batch_op.drop_column('is_read')
        batch_op.drop_column('tags')
        batch_op.drop_column('notes')
        batch_op.drop_column('priority')
        batch_op.drop_column('status')
