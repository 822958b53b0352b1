# app/routers/admin_lifecycle.py
"""
Admin endpoints for the listing lifecycle.

GET  /v1/admin/lifecycle/policy - Duration/retention table
GET  /v1/admin/lifecycle/status - Counts by status plus drift counters
POST /v1/admin/lifecycle/sweep - Trigger a manual sweep
GET  /v1/admin/lifecycle/listings/{listing_id} - Diagnose one listing (no writes)
POST /v1/admin/lifecycle/listings/{listing_id}/fix - Diagnose and correct one listing
GET  /v1/admin/lifecycle/users/{user_id}/tier - Resolve a user's tier
POST /v1/admin/lifecycle/users/{user_id}/restore - Restore a premium user's archived listings
POST /v1/admin/lifecycle/reconcile-tiers - Correct drifted account_tier fields
POST /v1/admin/lifecycle/cleanup-orphans - Remove favorites of missing listings
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.auth import require_admin_key
from app.database import get_db
from app.schemas.lifecycle import (
    LifecycleStatusResponse,
    ListingFixResponse,
    OrphanCleanupResponse,
    PolicyResponse,
    SweepRequest,
    SweepResponse,
    TierReconciliationResponse,
    TierResponse,
    UserRestoreResponse,
)
from app.services.lifecycle import (
    ListingNotFoundError,
    cleanup_orphaned_favorites,
    duration_hours_for,
    fix_listing,
    get_lifecycle_stats,
    policy_table,
    reconcile_account_tiers,
    resolve_tier,
    restore_user_listings,
    run_sweep,
)
from app.services.lifecycle.errors import LifecycleError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin/lifecycle", tags=["admin-lifecycle"])


# -----------------------------------------------------------------------------
# Policy / status
# -----------------------------------------------------------------------------


@router.get("/policy", response_model=PolicyResponse)
def get_policy(
    _: None = Depends(require_admin_key),
) -> PolicyResponse:
    """
    Get the listing duration policy (hours per tier, retention days).
    """
    return PolicyResponse(**policy_table())


@router.get("/status", response_model=LifecycleStatusResponse)
def get_lifecycle_status(
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> LifecycleStatusResponse:
    """
    Get listing counts by status and drift counters.

    Drift counters should trend to zero as sweeps run: active listings past
    expires_at, archived listings missing or past delete_at, and orphaned
    favorites.
    """
    stats = get_lifecycle_stats(db)
    return LifecycleStatusResponse(**stats, policy=PolicyResponse(**policy_table()))


# -----------------------------------------------------------------------------
# Sweeps
# -----------------------------------------------------------------------------


@router.post("/sweep", response_model=SweepResponse)
def trigger_sweep(
    request: SweepRequest,
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> SweepResponse:
    """
    Trigger a manual sweep over active, inactive or archived listings.

    Per-listing failures don't fail the request; they are counted and a
    capped list of short messages is returned.
    """
    result = run_sweep(
        db,
        request.status,
        page_size=request.page_size,
        time_budget_seconds=request.time_budget_seconds,
        dry_run=request.dry_run,
        initiated_by="admin",
        apply_restorations=request.apply_restorations,
    )
    return SweepResponse(**result.to_dict())


# -----------------------------------------------------------------------------
# Single listing
# -----------------------------------------------------------------------------


def _fix(db: Session, listing_id: str, dry_run: bool) -> ListingFixResponse:
    try:
        report = fix_listing(db, listing_id, dry_run=dry_run, initiated_by="admin")
    except ListingNotFoundError:
        raise HTTPException(status_code=404, detail=f"Listing {listing_id} not found")
    except LifecycleError as e:
        logger.error(f"Fix failed for listing {listing_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return ListingFixResponse(**report.to_dict())


@router.get("/listings/{listing_id}", response_model=ListingFixResponse)
def diagnose_listing(
    listing_id: str,
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> ListingFixResponse:
    """
    Show what the lifecycle would do to a listing right now. Nothing is written.
    """
    return _fix(db, listing_id, dry_run=True)


@router.post("/listings/{listing_id}/fix", response_model=ListingFixResponse)
def fix_single_listing(
    listing_id: str,
    dry_run: bool = Query(False, description="Preview only"),
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> ListingFixResponse:
    """
    Evaluate one listing and apply the verdict.

    Returns the listing before and after, the tier it was judged under, and
    the transition that was applied.
    """
    return _fix(db, listing_id, dry_run=dry_run)


# -----------------------------------------------------------------------------
# Users
# -----------------------------------------------------------------------------


@router.get("/users/{user_id}/tier", response_model=TierResponse)
def get_user_tier(
    user_id: str,
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> TierResponse:
    """
    Resolve a user's effective tier from their subscription.

    Unknown users resolve to free (source="missing").
    """
    resolution = resolve_tier(db, user_id)
    return TierResponse(**resolution.to_dict(), duration_hours=duration_hours_for(resolution.tier))


@router.post("/users/{user_id}/restore", response_model=UserRestoreResponse)
def restore_user(
    user_id: str,
    dry_run: bool = Query(False, description="Preview only"),
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> UserRestoreResponse:
    """
    Restore a premium user's listings that were archived for exceeding the
    free duration but are still within the premium duration.
    """
    result = restore_user_listings(db, user_id, dry_run=dry_run, initiated_by="admin")
    return UserRestoreResponse(**result.__dict__)


# -----------------------------------------------------------------------------
# Reconciliation
# -----------------------------------------------------------------------------


@router.post("/reconcile-tiers", response_model=TierReconciliationResponse)
def reconcile_tiers(
    dry_run: bool = Query(True, description="Preview only"),
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> TierReconciliationResponse:
    """
    Rewrite stored account_tier fields that drifted from subscription state.

    Use dry_run=true (default) to preview the changes.
    """
    result = reconcile_account_tiers(db, dry_run=dry_run, initiated_by="admin")
    return TierReconciliationResponse(**result.__dict__)


@router.post("/cleanup-orphans", response_model=OrphanCleanupResponse)
def cleanup_orphans(
    dry_run: bool = Query(True, description="Preview only"),
    db: Session = Depends(get_db),
    _: None = Depends(require_admin_key),
) -> OrphanCleanupResponse:
    """
    Delete favorites that reference listings which no longer exist.

    Use dry_run=true (default) to preview what would be cleaned.
    """
    result = cleanup_orphaned_favorites(db, dry_run=dry_run)
    return OrphanCleanupResponse(**result.__dict__)
