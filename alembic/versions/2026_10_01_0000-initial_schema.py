"""initial schema

Revision ID: 2026_10_01_0000
Revises:
Create Date: 2026-10-01 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_01_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, rules and active_overrides."""

    # ========================================================================
    # Create users table
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('uuid', UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('pending_code', sa.String(16), nullable=True),
        sa.Column('pending_domain', sa.String(253), nullable=True),
        sa.Column('pending_created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_heartbeat_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('uuid', name='uq_users_uuid'),
    )

    op.create_index('idx_users_last_heartbeat_at', 'users', ['last_heartbeat_at'])
    op.create_index('idx_users_created_at', 'users', ['created_at'])

    # ========================================================================
    # Create rules table
    # ========================================================================
    op.create_table(
        'rules',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('domain', sa.String(253), nullable=False),
        sa.Column('daily_limit_minutes', sa.Float(), nullable=False, server_default='0'),
        sa.Column('used_today_minutes', sa.Float(), nullable=False, server_default='0'),
        sa.Column('last_reset_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),

        # Constraints
        sa.CheckConstraint('daily_limit_minutes >= 0', name='ck_rule_limit_non_negative'),
        sa.CheckConstraint('used_today_minutes >= 0', name='ck_rule_used_non_negative'),
        sa.UniqueConstraint('user_id', 'domain', name='uq_rule_user_domain'),
    )

    op.create_index('idx_rules_user_id', 'rules', ['user_id'])

    # ========================================================================
    # Create active_overrides table
    # ========================================================================
    op.create_table(
        'active_overrides',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('domain', sa.String(253), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )

    op.create_index('idx_active_overrides_user_id', 'active_overrides', ['user_id'])
    op.create_index('idx_active_overrides_expires_at', 'active_overrides', ['expires_at'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('active_overrides')
    op.drop_table('rules')
    op.drop_table('users')
