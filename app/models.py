# app/models.py
"""
Waboku marketplace database models (listing lifecycle slice).

Tables:
- User: marketplace account; account_tier is a cached, derived value
- Subscription: one-to-one subscription state (authoritative for tier)
- Listing: trading-card listings and their lifecycle timestamps
- Favorite: a user's saved listing (references listings by id)
- ListingLifecycleEvent: append-only audit trail of lifecycle transitions
"""

from datetime import datetime, timezone
from enum import Enum
import uuid

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

class AccountTier(str, Enum):
    """Account subscription level governing listing duration."""
    FREE = "free"
    PREMIUM = "premium"


class SubscriptionStatus(str, Enum):
    """Subscription states mirrored from Stripe."""
    NONE = "none"
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class ListingStatus(str, Enum):
    """Listing lifecycle states. Only active and archived are swept."""
    ACTIVE = "active"
    ARCHIVED = "archived"
    SOLD = "sold"
    INACTIVE = "inactive"


class LifecycleEventType(str, Enum):
    """Audit event types for listing lifecycle transitions."""
    ARCHIVED = "archived"
    DELETED = "deleted"
    RESTORED = "restored"
    EXPIRY_RECOMPUTED = "expiry_recomputed"
    DELETE_AT_STAMPED = "delete_at_stamped"
    FAVORITES_CASCADED = "favorites_cascaded"
    TIER_RECONCILED = "tier_reconciled"
    IMPORTED = "imported"


# -----------------------------------------------------------------------------
# User / Subscription
# -----------------------------------------------------------------------------

class User(Base):
    """
    Marketplace account.

    account_tier is a denormalized copy kept for display. It is never read
    by the lifecycle; app.services.lifecycle.tier_service derives the tier
    from the subscription row instead.
    """
    __tablename__ = "users"

    id = Column(String(128), primary_key=True, default=_new_id)
    username = Column(String(64), nullable=True)
    email = Column(String(255), nullable=True)
    account_tier = Column(String(16), nullable=False, default=AccountTier.FREE.value)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    subscription = relationship(
        "Subscription",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )


class Subscription(Base):
    """Subscription state for a user (one row per user)."""
    __tablename__ = "subscriptions"

    user_id = Column(String(128), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    status = Column(String(16), nullable=False, default=SubscriptionStatus.NONE.value)
    end_date = Column(DateTime(timezone=True), nullable=True)  # Paid-through date
    stripe_subscription_id = Column(String(128), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="subscription")


# -----------------------------------------------------------------------------
# Listing
# -----------------------------------------------------------------------------

class Listing(Base):
    """
    A trading-card listing.

    Lifecycle:
    - created active, expires_at = created_at + tier duration
    - archived at/after expires_at: archived_at, delete_at (+7d) stamped
    - deleted at/after delete_at (favorites cascade)
    - or restored to active with a fresh expires_at

    user_id is a weak reference: the owner may have been deleted.
    """
    __tablename__ = "listings"

    id = Column(String(128), primary_key=True, default=_new_id)
    user_id = Column(String(128), nullable=True)
    title = Column(Text, nullable=False, default="")
    price = Column(Numeric(10, 2), nullable=True)
    status = Column(String(16), nullable=False, default=ListingStatus.ACTIVE.value)

    # Set once by the listing service; no default so legacy rows can stay empty
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    # Archival-specific (cleared together on restore)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    delete_at = Column(DateTime(timezone=True), nullable=True)
    expiration_reason = Column(String(64), nullable=True)
    account_tier_at_archival = Column(String(16), nullable=True)

    # Audit
    previous_status = Column(String(16), nullable=True)
    restored_at = Column(DateTime(timezone=True), nullable=True)
    restored_reason = Column(String(64), nullable=True)

    __table_args__ = (
        Index("ix_listings_status_id", "status", "id"),
        Index("ix_listings_user_id_status", "user_id", "status"),
        Index("ix_listings_delete_at", "delete_at"),
    )


# -----------------------------------------------------------------------------
# Favorite
# -----------------------------------------------------------------------------

class Favorite(Base):
    """
    A user's saved listing.

    listing_id is deliberately not a foreign key: favorites are removed by the
    lifecycle cascade (and the orphan cleanup), not by the database.
    """
    __tablename__ = "favorites"

    id = Column(String(128), primary_key=True, default=_new_id)
    user_id = Column(String(128), nullable=False)
    listing_id = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_favorites_listing_id", "listing_id"),
        Index("ix_favorites_user_id", "user_id"),
    )


# -----------------------------------------------------------------------------
# ListingLifecycleEvent
# -----------------------------------------------------------------------------

class ListingLifecycleEvent(Base):
    """
    Immutable audit trail for lifecycle transitions.

    Rows outlive the listing they describe, so listing_id is not a foreign key.
    """
    __tablename__ = "listing_lifecycle_events"

    id = Column(String(32), primary_key=True, default=_new_id)
    listing_id = Column(String(128), nullable=True)
    user_id = Column(String(128), nullable=True)
    event_type = Column(String(32), nullable=False)
    event_timestamp = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    initiated_by = Column(String(32), nullable=False)
    idempotency_key = Column(String(255), nullable=True, unique=True)
    event_metadata = Column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_listing_lifecycle_events_listing_id", "listing_id"),
        Index("ix_listing_lifecycle_events_event_type", "event_type"),
    )
