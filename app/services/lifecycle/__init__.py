# app/services/lifecycle/__init__.py
"""
Listing lifecycle services for the Waboku marketplace.

Three lifecycle states:
- Active: free listings for 48 hours, premium listings for 30 days
- Archived: hidden, kept 7 days (delete_at)
- Deleted: listing removed, favorites cascade-deleted

Services:
- tier_service: Account tier resolution (subscription -> free/premium)
- duration_policy: Durations and retention window
- evaluator: Pure (listing, tier, now) -> verdict
- executor: Conditional per-listing writes and favorite cascade
- sweep_service: Scheduled/manual sweeps and single-listing fixes
- reconciliation_service: Tier reconciliation, per-user restore, orphan cleanup
- legacy_import: One-time import of legacy listing documents
"""

from app.services.lifecycle.duration_policy import (
    delete_at_for,
    duration_hours_for,
    expected_expiry,
    inactive_archive_after,
    policy_table,
    retention_days_after_archival,
)
from app.services.lifecycle.errors import (
    BatchWriteError,
    CascadeError,
    LifecycleError,
    ListingNotFoundError,
    MalformedTimestampError,
)
from app.services.lifecycle.evaluator import Evaluation, ListingRecord, Verdict, evaluate
from app.services.lifecycle.executor import (
    CascadeResult,
    TransitionResult,
    apply_verdict,
    cascade_delete_favorites,
)
from app.services.lifecycle.reconciliation_service import (
    OrphanCleanupResult,
    TierReconciliationResult,
    UserRestoreResult,
    cleanup_orphaned_favorites,
    reconcile_account_tiers,
    restore_user_listings,
)
from app.services.lifecycle.sweep_service import (
    FixReport,
    SweepResult,
    fix_listing,
    get_lifecycle_stats,
    run_archive_sweep,
    run_sweep,
)
from app.services.lifecycle.tier_service import TierCache, TierResolution, resolve_tier, tier_from_subscription

__all__ = [
    # Tier
    "resolve_tier",
    "tier_from_subscription",
    "TierCache",
    "TierResolution",
    # Policy
    "duration_hours_for",
    "retention_days_after_archival",
    "expected_expiry",
    "delete_at_for",
    "inactive_archive_after",
    "policy_table",
    # Evaluator
    "evaluate",
    "Evaluation",
    "ListingRecord",
    "Verdict",
    # Executor
    "apply_verdict",
    "cascade_delete_favorites",
    "TransitionResult",
    "CascadeResult",
    # Sweeps
    "run_archive_sweep",
    "run_sweep",
    "fix_listing",
    "get_lifecycle_stats",
    "SweepResult",
    "FixReport",
    # Reconciliation
    "reconcile_account_tiers",
    "restore_user_listings",
    "cleanup_orphaned_favorites",
    "TierReconciliationResult",
    "UserRestoreResult",
    "OrphanCleanupResult",
    # Errors
    "LifecycleError",
    "ListingNotFoundError",
    "MalformedTimestampError",
    "BatchWriteError",
    "CascadeError",
]
