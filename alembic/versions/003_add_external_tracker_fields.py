"""Add external tracker linkage to feedback

Revision ID: 003
Revises: 002
Create Date: 2026-01-12

"""
from alembic import op
import sqlalchemy as sa

from app.migration_ops import add_column_if_missing, create_index_if_missing

# revision identifiers, used by Alembic.
revision = '003'
down_revision = '002'
branch_labels = None
depends_on = None


def upgrade() -> None:
    add_column_if_missing('feedback', sa.Column('external_source', sa.String(), nullable=False, server_default='app'))
    add_column_if_missing('feedback', sa.Column('external_id', sa.String(), nullable=True))
    add_column_if_missing('feedback', sa.Column('external_url', sa.String(), nullable=True))

    # One local row per upstream item; rows without an external id are unconstrained
    create_index_if_missing(
        'uq_feedback_external_source_id',
        'feedback',
        ['external_source', 'external_id'],
        unique=True,
        sqlite_where=sa.text('external_id IS NOT NULL'),
        postgresql_where=sa.text('external_id IS NOT NULL'),
    )


def downgrade() -> None:
    op.drop_index('uq_feedback_external_source_id', table_name='feedback')
    with op.batch_alter_table('feedback') as batch_op:
        batch_op.drop_column('external_url')
        batch_op.drop_column('external_id')
        batch_op.drop_column('external_source')
