"""
Account tier resolution.

tier_from_subscription() is the only implementation of the tier rule:

    premium  if subscription.status == "active"
    premium  if subscription.status == "canceled" and end_date is in the future
    free     otherwise

resolve_tier() reads the user's subscription row and applies it. It is a pure
read: correcting a drifted User.account_tier is the job of
reconciliation_service.reconcile_account_tiers(), never a side effect here.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from cachetools import LRUCache
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.constants import SweepDefaults
from app.models import AccountTier, Subscription, SubscriptionStatus, User
from app.services.lifecycle.errors import MalformedTimestampError
from app.services.lifecycle.timestamps import isoformat, parse_timestamp, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierResolution:
    """Result of resolving a user's effective tier."""

    user_id: str
    tier: str
    source: str  # "subscription", "missing", "error"
    subscription_status: str | None = None
    subscription_end_date: datetime | None = None
    stored_account_tier: str | None = None

    @property
    def is_premium(self) -> bool:
        return self.tier == AccountTier.PREMIUM.value

    @property
    def stored_tier_matches(self) -> bool:
        """False when User.account_tier has drifted from the resolved tier."""
        return self.stored_account_tier is None or self.stored_account_tier == self.tier

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "tier": self.tier,
            "source": self.source,
            "subscription_status": self.subscription_status,
            "subscription_end_date": isoformat(self.subscription_end_date),
            "stored_account_tier": self.stored_account_tier,
        }


def tier_from_subscription(status: str | None, end_date, now: datetime | None = None) -> str:
    """
    Apply the tier rule to raw subscription fields.

    An end_date that cannot be parsed counts as already past.
    """
    now = parse_timestamp(now) if now is not None else utcnow()
    status = (status or SubscriptionStatus.NONE.value).lower()

    if status == SubscriptionStatus.ACTIVE.value:
        return AccountTier.PREMIUM.value

    if status == SubscriptionStatus.CANCELED.value and end_date is not None:
        try:
            paid_through = parse_timestamp(end_date, field_name="subscription.end_date")
        except MalformedTimestampError as e:
            logger.warning(f"Treating subscription end date as past: {e}")
            return AccountTier.FREE.value
        if paid_through is not None and paid_through > now:
            return AccountTier.PREMIUM.value

    return AccountTier.FREE.value


def resolve_tier(db: Session, user_id: str, now: datetime | None = None) -> TierResolution:
    """
    Resolve the effective tier for a user.

    Never raises for a missing or unreadable user: both resolve to free,
    distinguished by `source`.

    Raises:
        ValueError: if user_id is empty
    """
    if not user_id or not isinstance(user_id, str):
        raise ValueError("user_id is required")

    try:
        user = db.query(User).filter(User.id == user_id).first()
        subscription = (
            db.query(Subscription).filter(Subscription.user_id == user_id).first()
            if user is not None
            else None
        )
    except SQLAlchemyError as e:
        logger.error(
            f"Could not read user {user_id}, defaulting to free tier: {e}",
            extra={"event": "tier_resolution_error", "user_id": user_id},
        )
        return TierResolution(user_id=user_id, tier=AccountTier.FREE.value, source="error")

    if user is None:
        logger.debug(f"No user record for {user_id}, defaulting to free tier")
        return TierResolution(user_id=user_id, tier=AccountTier.FREE.value, source="missing")

    status = subscription.status if subscription else None
    end_date = subscription.end_date if subscription else None

    return TierResolution(
        user_id=user_id,
        tier=tier_from_subscription(status, end_date, now=now),
        source="subscription",
        subscription_status=status or SubscriptionStatus.NONE.value,
        subscription_end_date=parse_timestamp(end_date) if end_date is not None else None,
        stored_account_tier=user.account_tier,
    )


class TierCache:
    """
    Per-run memo of tier resolutions.

    Lives for one sweep only; a new sweep builds a new cache so nothing
    survives between invocations. Bounded so a sweep over many distinct
    owners doesn't grow without limit.
    """

    def __init__(self, db: Session, now: datetime | None = None):
        self._db = db
        self._now = now
        self._resolutions: LRUCache = LRUCache(maxsize=SweepDefaults.TIER_CACHE_SIZE)

    def get(self, user_id: str | None) -> TierResolution:
        if not user_id:
            # Orphaned listing with no owner reference
            return TierResolution(user_id="", tier=AccountTier.FREE.value, source="missing")

        if user_id not in self._resolutions:
            self._resolutions[user_id] = resolve_tier(self._db, user_id, now=self._now)
        return self._resolutions[user_id]
