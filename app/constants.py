# app/constants.py
"""
Centralized magic constants organized by domain.

All hardcoded numbers/strings used throughout the codebase should be
defined here with documentation explaining their purpose. Listing
duration and retention windows are defined ONLY here; every handler
that needs them goes through app.services.lifecycle.duration_policy.
"""


class ListingDurations:
    """How long a listing stays active, per account tier."""

    FREE_HOURS = 48                     # 2 days
    PREMIUM_HOURS = 720                 # 30 days

    # Archived listings are kept this long before permanent deletion,
    # independent of tier
    RETENTION_DAYS_AFTER_ARCHIVAL = 7

    # Inactive listings untouched this long are archived
    INACTIVE_TIMEOUT_DAYS = 7


class StoreLimits:
    """Limits imposed by the backing store."""

    MAX_BATCH_OPERATIONS = 500          # Max writes per batch commit
    MAX_PAGE_SIZE = 500                 # Max listings fetched per sweep page


class SweepDefaults:
    """Default values for lifecycle sweeps."""

    PAGE_SIZE = 100                     # Listings evaluated per page
    TIME_BUDGET_SECONDS = 25            # Wall-clock budget per invocation
    MAX_REPORTED_ERRORS = 20            # Errors kept in the summary payload
    ERROR_MESSAGE_MAX_CHARS = 200       # Truncation for summary error strings
    PROGRESS_LOG_EVERY = 50             # Progress log cadence (listings)
    TIER_CACHE_SIZE = 10_000            # Owners memoized per sweep


class ExpirationReasons:
    """Values stored in Listing.expiration_reason / restored_reason."""

    TIER_DURATION_EXCEEDED = "tier_duration_exceeded"
    MANUAL = "manual"
    MALFORMED_TIMESTAMP = "malformed_timestamp"
    INACTIVE_TIMEOUT = "inactive_timeout"
    PREMIUM_RESTORATION = "premium_tier_restoration"
