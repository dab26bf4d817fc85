"""initial schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial database schema."""

    # ========================================================================
    # Create users table
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('username', sa.String(64), nullable=True),
        sa.Column('profile_picture_url', sa.Text(), nullable=True),
        sa.Column('avatar_url', sa.Text(), nullable=True),
        sa.Column('tier', sa.String(20), nullable=False, server_default='free'),
        sa.Column('lifetime_purchase', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('pending_downgrade_notice', JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint("tier IN ('free', 'premium')", name='ck_user_tier'),
        sa.UniqueConstraint('username', name='uq_users_username'),
        sa.UniqueConstraint('stripe_customer_id', name='uq_users_stripe_customer_id'),
    )
    op.create_index('idx_users_lifetime_purchase', 'users', ['lifetime_purchase'])

    # ========================================================================
    # Create study_lists table
    # ========================================================================
    op.create_table(
        'study_lists',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('slug', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(32), nullable=False, server_default='other'),
        sa.Column('is_public', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('copied_from_id', UUID(as_uuid=True), sa.ForeignKey('study_lists.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.UniqueConstraint('user_id', 'slug', name='uq_study_list_user_slug'),
    )

    # Indexes for study_lists
    op.create_index('idx_study_lists_public', 'study_lists', ['is_public', 'category'])
    op.create_index('idx_study_lists_user_private', 'study_lists', ['user_id', 'is_public', 'updated_at'])
    op.create_index('idx_study_lists_copied_from', 'study_lists', ['copied_from_id'], postgresql_where=sa.text('copied_from_id IS NOT NULL'))

    # ========================================================================
    # Create study_items table
    # ========================================================================
    op.create_table(
        'study_items',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('study_list_id', UUID(as_uuid=True), sa.ForeignKey('study_lists.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(300), nullable=False),
        sa.Column('url', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_study_items_study_list_id', 'study_items', ['study_list_id'])

    # ========================================================================
    # Create votes table
    # ========================================================================
    op.create_table(
        'votes',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('study_list_id', UUID(as_uuid=True), sa.ForeignKey('study_lists.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(4), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint("type IN ('UP', 'DOWN')", name='ck_vote_type'),
        sa.UniqueConstraint('user_id', 'study_list_id', name='uq_vote_user_list'),
    )
    op.create_index('idx_votes_list_type', 'votes', ['study_list_id', 'type'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('votes')
    op.drop_table('study_items')
    op.drop_table('study_lists')
    op.drop_table('users')
