# app/schemas/lifecycle.py
"""
Schemas for listing lifecycle endpoints (admin + cron).
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

# -----------------------------------------------------------------------------
# Policy / status
# -----------------------------------------------------------------------------


class PolicyResponse(BaseModel):
    """Listing duration policy."""

    duration_hours: dict[str, int]
    retention_days_after_archival: int
    inactive_timeout_days: int


class LifecycleStatusResponse(BaseModel):
    """Counts by status plus drift counters."""

    as_of: datetime
    listings_by_status: dict[str, int]
    total_listings: int
    total_favorites: int
    drift: dict[str, int]
    policy: PolicyResponse


# -----------------------------------------------------------------------------
# Sweeps
# -----------------------------------------------------------------------------


class SweepRequest(BaseModel):
    """Request to trigger a manual sweep."""

    status: str = Field("active", pattern="^(active|inactive|archived)$", description="Listing status to sweep")
    dry_run: bool = Field(False, description="Evaluate only, don't write")
    page_size: int | None = Field(None, ge=1, le=500, description="Listings per page")
    time_budget_seconds: float | None = Field(None, gt=0, le=300, description="Wall-clock budget")
    apply_restorations: bool | None = Field(None, description="Override SWEEP_APPLY_RESTORATIONS")


class SweepResponse(BaseModel):
    """Sweep summary."""

    success: bool
    status_filter: str
    dry_run: bool
    scanned: int
    archived: int
    deleted: int
    restored: int
    recomputed: int
    delete_at_stamped: int
    unchanged: int
    superseded: int
    skipped: int
    favorites_deleted: int
    cascade_failures: int
    timed_out: bool
    error_count: int
    errors: list[str] = Field(default_factory=list)
    trace_id: str | None = None
    started_at: datetime | None = None
    duration_seconds: float = 0.0


# -----------------------------------------------------------------------------
# Single listing
# -----------------------------------------------------------------------------


class TierResponse(BaseModel):
    """Resolved tier for a user."""

    user_id: str
    tier: str
    source: str
    subscription_status: str | None = None
    subscription_end_date: datetime | None = None
    stored_account_tier: str | None = None
    duration_hours: int | None = None


class ListingFixResponse(BaseModel):
    """Before/after diagnostic for one listing."""

    listing_id: str
    dry_run: bool
    before: dict[str, Any]
    tier: dict[str, Any]
    evaluation: dict[str, Any]
    transition: dict[str, Any]
    after: dict[str, Any] | None = None


# -----------------------------------------------------------------------------
# Reconciliation
# -----------------------------------------------------------------------------


class UserRestoreResponse(BaseModel):
    """Per-user restoration result."""

    success: bool
    user_id: str
    tier: str
    dry_run: bool
    listings_checked: int
    listings_restored: int
    listings_skipped: int
    restored_ids: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    message: str | None = None


class TierReconciliationResponse(BaseModel):
    """Tier reconciliation result."""

    success: bool
    dry_run: bool
    users_scanned: int
    users_updated: int
    users_unchanged: int
    changes: list[dict[str, Any]] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class OrphanCleanupResponse(BaseModel):
    """Orphaned favorites cleanup result."""

    success: bool
    dry_run: bool
    orphans_found: int
    favorites_deleted: int
    batches_committed: int
    failed_batches: int
    errors: list[str] = Field(default_factory=list)
