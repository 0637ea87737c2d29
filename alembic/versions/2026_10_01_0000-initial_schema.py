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
    """Create users, referrals and chat_messages."""

    # ========================================================================
    # Create users table
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=True),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('profile_image_url', sa.String(500), nullable=True),

        # Subscription
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('subscription_status', sa.String(20), nullable=False, server_default='free'),
        sa.Column('subscription_expiry', sa.DateTime(timezone=True), nullable=True),

        # Daily dice roll allowance and bonus tokens
        sa.Column('dice_rolls_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('dice_rolls_limit', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('rolls_reset_date', sa.Date(), nullable=True),
        sa.Column('extra_roll_tokens', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ads_watched_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ads_watch_date', sa.Date(), nullable=True),
        sa.Column('total_ads_watched', sa.Integer(), nullable=False, server_default='0'),

        # Referrals
        sa.Column('referral_code', sa.String(20), nullable=True),
        sa.Column('referred_by', sa.String(20), nullable=True),
        sa.Column('referral_rewards_earned', sa.Integer(), nullable=False, server_default='0'),

        sa.Column('is_test_user', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('dice_rolls_used >= 0', name='ck_dice_rolls_used_non_negative'),
        sa.CheckConstraint('extra_roll_tokens >= 0', name='ck_extra_roll_tokens_non_negative'),
        sa.CheckConstraint('ads_watched_count >= 0', name='ck_ads_watched_non_negative'),
        sa.CheckConstraint(
            "subscription_status IN ('free', 'active', 'canceled', 'past_due')",
            name='subscription_status',
        ),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sa.UniqueConstraint('referral_code', name='uq_users_referral_code'),
    )

    # Indexes for users
    op.create_index(
        'idx_users_stripe_customer', 'users', ['stripe_customer_id'],
        postgresql_where=sa.text('stripe_customer_id IS NOT NULL'),
    )
    op.create_index('idx_users_subscription_status', 'users', ['subscription_status'])

    # ========================================================================
    # Create referrals table
    # ========================================================================
    op.create_table(
        'referrals',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('referrer_user_id', UUID(as_uuid=True), nullable=True),
        sa.Column('referee_user_id', UUID(as_uuid=True), nullable=True),
        sa.Column('referral_code', sa.String(20), nullable=False),
        sa.Column('signup_date', sa.DateTime(timezone=True), nullable=True, server_default=sa.text('NOW()')),
        sa.Column('reward_granted', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('reward_granted_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Foreign keys
        sa.ForeignKeyConstraint(['referrer_user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['referee_user_id'], ['users.id'], ondelete='CASCADE'),

        # One referral per referee
        sa.UniqueConstraint('referee_user_id', name='uq_referrals_referee'),
    )

    op.create_index('ix_referrals_referrer_user_id', 'referrals', ['referrer_user_id'])
    op.create_index('idx_referrals_pending', 'referrals', ['reward_granted'])

    # ========================================================================
    # Create chat_messages table
    # ========================================================================
    op.create_table(
        'chat_messages',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('room_id', sa.String(100), nullable=False, server_default='public'),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('audio_url', sa.String(500), nullable=True),
        sa.Column('audio_duration_sec', sa.Integer(), nullable=True),
        sa.Column('mime_type', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),

        # Text XOR audio
        sa.CheckConstraint(
            '(content IS NULL) <> (audio_url IS NULL)',
            name='ck_chat_message_single_payload',
        ),
    )

    op.create_index('idx_chat_messages_room_created', 'chat_messages', ['room_id', 'created_at'])
    op.create_index('idx_chat_messages_user', 'chat_messages', ['user_id'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('chat_messages')
    op.drop_table('referrals')
    op.drop_table('users')
