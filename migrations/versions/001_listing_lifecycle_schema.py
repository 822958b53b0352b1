"""Listing lifecycle schema: users, subscriptions, listings, favorites, lifecycle events.

Tables:
- users / subscriptions: account and one-to-one subscription state (tier source)
- listings: listings with lifecycle timestamps (expires_at, archived_at, delete_at)
- favorites: saved listings, cascade-deleted by the lifecycle (no FK to listings)
- listing_lifecycle_events: immutable audit trail of transitions

Revision ID: 001_listing_lifecycle_schema
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_listing_lifecycle_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create lifecycle tables."""

    # -------------------------------------------------------------------------
    # 1. users / subscriptions
    # -------------------------------------------------------------------------
    print("  Creating users and subscriptions tables...")

    op.create_table(
        'users',
        sa.Column('id', sa.String(length=128), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('account_tier', sa.String(length=16), nullable=False, server_default='free'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'subscriptions',
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='none'),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(length=128), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id'),
    )

    # -------------------------------------------------------------------------
    # 2. listings
    # -------------------------------------------------------------------------
    print("  Creating listings table...")

    op.create_table(
        'listings',
        sa.Column('id', sa.String(length=128), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=True),
        sa.Column('title', sa.Text(), nullable=False, server_default=''),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('archived_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delete_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expiration_reason', sa.String(length=64), nullable=True),
        sa.Column('account_tier_at_archival', sa.String(length=16), nullable=True),
        sa.Column('previous_status', sa.String(length=16), nullable=True),
        sa.Column('restored_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('restored_reason', sa.String(length=64), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_listings_status_id', 'listings', ['status', 'id'], unique=False)
    op.create_index('ix_listings_user_id_status', 'listings', ['user_id', 'status'], unique=False)
    op.create_index('ix_listings_delete_at', 'listings', ['delete_at'], unique=False)

    # -------------------------------------------------------------------------
    # 3. favorites
    # -------------------------------------------------------------------------
    print("  Creating favorites table...")

    op.create_table(
        'favorites',
        sa.Column('id', sa.String(length=128), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('listing_id', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_favorites_listing_id', 'favorites', ['listing_id'], unique=False)
    op.create_index('ix_favorites_user_id', 'favorites', ['user_id'], unique=False)

    # -------------------------------------------------------------------------
    # 4. listing_lifecycle_events
    # -------------------------------------------------------------------------
    print("  Creating listing_lifecycle_events table...")

    op.create_table(
        'listing_lifecycle_events',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('listing_id', sa.String(length=128), nullable=True),
        sa.Column('user_id', sa.String(length=128), nullable=True),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('event_timestamp', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('initiated_by', sa.String(length=32), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=True),
        sa.Column('event_metadata', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key', name='uq_listing_lifecycle_events_idempotency_key'),
    )
    op.create_index('ix_listing_lifecycle_events_listing_id', 'listing_lifecycle_events', ['listing_id'], unique=False)
    op.create_index('ix_listing_lifecycle_events_event_type', 'listing_lifecycle_events', ['event_type'], unique=False)

    print("  Upgrade complete!")


def downgrade() -> None:
    """Drop lifecycle tables."""

    print("  Dropping listing_lifecycle_events table...")
    op.drop_index('ix_listing_lifecycle_events_event_type', table_name='listing_lifecycle_events')
    op.drop_index('ix_listing_lifecycle_events_listing_id', table_name='listing_lifecycle_events')
    op.drop_table('listing_lifecycle_events')

    print("  Dropping favorites table...")
    op.drop_index('ix_favorites_user_id', table_name='favorites')
    op.drop_index('ix_favorites_listing_id', table_name='favorites')
    op.drop_table('favorites')

    print("  Dropping listings table...")
    op.drop_index('ix_listings_delete_at', table_name='listings')
    op.drop_index('ix_listings_user_id_status', table_name='listings')
    op.drop_index('ix_listings_status_id', table_name='listings')
    op.drop_table('listings')

    print("  Dropping subscriptions and users tables...")
    op.drop_table('subscriptions')
    op.drop_table('users')

    print("  Downgrade complete!")
