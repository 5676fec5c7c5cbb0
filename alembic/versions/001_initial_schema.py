"""Initial schema - users, encryption keys/profiles and migration jobs.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

users.mail / users.init are sized for Fernet tokens (512) and carry no index
while encrypted; uninstalling restores the mail index (see Finalizer).
For existing databases that already have a users table, use `alembic stamp head`.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables and indexes."""

    # ==========================================================================
    # users - mail (primary) and init (secondary) hold plaintext or ciphertext
    # ==========================================================================
    op.create_table('users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(60), nullable=False),
        sa.Column('mail', sa.String(512), nullable=True),
        sa.Column('init', sa.String(512), nullable=True),
        sa.Column('status', sa.Boolean(), server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    # ==========================================================================
    # encryption_keys / encryption_profiles
    # ==========================================================================
    op.create_table('encryption_keys',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('provider', sa.String(20), nullable=False, server_default='env'),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    op.create_table('encryption_profiles',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('key_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['key_id'], ['encryption_keys.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    # ==========================================================================
    # migration_jobs - persisted batch state
    # ==========================================================================
    op.create_table('migration_jobs',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('operation', sa.String(20), nullable=False),
        sa.Column('context', sa.String(20), nullable=False, server_default='none'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('processed_count', sa.Integer(), server_default='0'),
        sa.Column('total_count', sa.Integer(), server_default='0'),
        sa.Column('state', sa.JSON(), nullable=True),
        sa.Column('steps', sa.Integer(), server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('finalized', sa.Boolean(), server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_migration_jobs_status', 'migration_jobs', ['status'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index('idx_migration_jobs_status', table_name='migration_jobs')
    op.drop_table('migration_jobs')
    op.drop_table('encryption_profiles')
    op.drop_table('encryption_keys')
    op.drop_table('users')
