"""
Listing duration policy.

The single place listing durations and the post-archival retention window
are turned into timestamps. Handlers never do this arithmetic inline.
"""

from datetime import datetime, timedelta

from app.constants import ListingDurations
from app.models import AccountTier

_DURATION_HOURS = {
    AccountTier.FREE.value: ListingDurations.FREE_HOURS,
    AccountTier.PREMIUM.value: ListingDurations.PREMIUM_HOURS,
}


def _tier_value(tier) -> str:
    return tier.value if isinstance(tier, AccountTier) else str(tier or "").lower()


def duration_hours_for(tier) -> int:
    """Active duration in hours for a tier. Unknown tiers get the free duration."""
    return _DURATION_HOURS.get(_tier_value(tier), ListingDurations.FREE_HOURS)


def retention_days_after_archival() -> int:
    """Days an archived listing is kept before permanent deletion (tier independent)."""
    return ListingDurations.RETENTION_DAYS_AFTER_ARCHIVAL


def inactive_timeout_days() -> int:
    """Days an inactive listing may go without an update before it is archived."""
    return ListingDurations.INACTIVE_TIMEOUT_DAYS


def inactive_archive_after(updated_at: datetime) -> datetime:
    """When an inactive listing last updated at `updated_at` becomes archivable."""
    return updated_at + timedelta(days=inactive_timeout_days())


def expected_expiry(created_at: datetime, tier) -> datetime:
    """When a listing created at `created_at` stops being active under `tier`."""
    return created_at + timedelta(hours=duration_hours_for(tier))


def delete_at_for(archived_at: datetime) -> datetime:
    """When a listing archived at `archived_at` is permanently deleted."""
    return archived_at + timedelta(days=retention_days_after_archival())


def policy_table() -> dict:
    """Policy as a plain dict for status endpoints and the CLI."""
    return {
        "duration_hours": {tier.value: duration_hours_for(tier) for tier in AccountTier},
        "retention_days_after_archival": retention_days_after_archival(),
        "inactive_timeout_days": inactive_timeout_days(),
    }
