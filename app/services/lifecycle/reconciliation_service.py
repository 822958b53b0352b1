"""
Reconciliation jobs for derived lifecycle state.

These are explicit, logged jobs an operator (or the scheduler) runs on
purpose. Nothing here happens as a side effect of reading a tier or
evaluating a listing.

- reconcile_account_tiers: rewrite User.account_tier where it drifted from
  the tier the subscription implies
- restore_user_listings: put a newly-premium user's expiry-archived
  listings back to active
- cleanup_orphaned_favorites: remove favorites whose listing is gone
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.constants import StoreLimits
from app.models import Favorite, LifecycleEventType, Listing, ListingStatus, User
from app.services.lifecycle.errors import LifecycleError
from app.services.lifecycle.evaluator import ListingRecord, Verdict, evaluate
from app.services.lifecycle.executor import apply_verdict, log_lifecycle_event
from app.services.lifecycle.tier_service import resolve_tier
from app.services.lifecycle.timestamps import parse_timestamp, utcnow
from app.services.resilience import store_retry

logger = logging.getLogger(__name__)

# Changes echoed back in a reconciliation result (the rest are only logged)
MAX_REPORTED_CHANGES = 50


@dataclass
class TierReconciliationResult:
    """Result of a tier reconciliation run."""
    success: bool
    users_scanned: int = 0
    users_updated: int = 0
    users_unchanged: int = 0
    changes: list[dict] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    dry_run: bool = False


@dataclass
class UserRestoreResult:
    """Result of restoring one user's archived listings."""
    success: bool
    user_id: str
    tier: str
    listings_checked: int = 0
    listings_restored: int = 0
    listings_skipped: int = 0
    restored_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    dry_run: bool = False
    message: str | None = None


@dataclass
class OrphanCleanupResult:
    """Result of an orphaned favorites cleanup."""
    success: bool
    orphans_found: int = 0
    favorites_deleted: int = 0
    batches_committed: int = 0
    failed_batches: int = 0
    errors: list[str] = field(default_factory=list)
    dry_run: bool = False


# -----------------------------------------------------------------------------
# Tier reconciliation
# -----------------------------------------------------------------------------


def reconcile_account_tiers(
    db: Session,
    now: datetime | None = None,
    dry_run: bool = False,
    initiated_by: str = "admin",
    page_size: int = StoreLimits.MAX_BATCH_OPERATIONS,
) -> TierReconciliationResult:
    """
    Rewrite User.account_tier wherever it differs from the resolved tier.

    The update is guarded on the stored value the job read, so a concurrent
    writer is never overwritten with a stale correction.

    Args:
        db: Database session
        now: Time used to judge canceled subscriptions (defaults to now)
        dry_run: If True, report drift without writing
        initiated_by: Who initiated the job (scheduler, admin, cli)
        page_size: Users read per page

    Returns:
        TierReconciliationResult
    """
    now = parse_timestamp(now, "now") if now is not None else utcnow()
    result = TierReconciliationResult(success=True, dry_run=dry_run)
    after_id = None

    while True:
        query = db.query(User.id)
        if after_id is not None:
            query = query.filter(User.id > after_id)
        user_ids = [row.id for row in query.order_by(User.id).limit(page_size).all()]
        if not user_ids:
            break
        after_id = user_ids[-1]

        for user_id in user_ids:
            result.users_scanned += 1
            resolution = resolve_tier(db, user_id, now=now)

            if resolution.source != "subscription" or resolution.stored_tier_matches:
                result.users_unchanged += 1
                continue

            change = {
                "user_id": user_id,
                "stored_tier": resolution.stored_account_tier,
                "resolved_tier": resolution.tier,
                "subscription_status": resolution.subscription_status,
            }

            if dry_run:
                result.users_updated += 1
                if len(result.changes) < MAX_REPORTED_CHANGES:
                    result.changes.append(change)
                continue

            try:
                updated = store_retry(_write_account_tier, db, resolution, initiated_by, now)
            except SQLAlchemyError as e:
                result.errors.append(f"User {user_id}: {e}")
                logger.error(f"Failed to reconcile tier for user {user_id}: {e}")
                continue

            if updated:
                result.users_updated += 1
                if len(result.changes) < MAX_REPORTED_CHANGES:
                    result.changes.append(change)
                logger.info(
                    f"Reconciled account tier for user {user_id}: "
                    f"{resolution.stored_account_tier} -> {resolution.tier}",
                    extra={
                        "event": "tier_reconciled",
                        "user_id": user_id,
                        "tier": resolution.tier,
                        "initiated_by": initiated_by,
                    },
                )
            else:
                result.users_unchanged += 1

        if len(user_ids) < page_size:
            break

    result.success = len(result.errors) == 0

    logger.info(
        f"Tier reconciliation {'(dry run) ' if dry_run else ''}complete: "
        f"{result.users_scanned} scanned, {result.users_updated} updated, {len(result.errors)} errors"
    )
    return result


def _write_account_tier(db: Session, resolution, initiated_by: str, now: datetime) -> int:
    try:
        updated = (
            db.query(User)
            .filter(User.id == resolution.user_id, User.account_tier == resolution.stored_account_tier)
            .update({"account_tier": resolution.tier, "updated_at": now}, synchronize_session=False)
        )
        if updated:
            log_lifecycle_event(
                db,
                None,
                LifecycleEventType.TIER_RECONCILED,
                initiated_by,
                user_id=resolution.user_id,
                event_metadata={
                    "from": resolution.stored_account_tier,
                    "to": resolution.tier,
                    "subscription_status": resolution.subscription_status,
                },
            )
        db.commit()
        return updated
    except SQLAlchemyError:
        db.rollback()
        raise


# -----------------------------------------------------------------------------
# Per-user restoration
# -----------------------------------------------------------------------------


def restore_user_listings(
    db: Session,
    user_id: str,
    now: datetime | None = None,
    dry_run: bool = False,
    initiated_by: str = "admin",
) -> UserRestoreResult:
    """
    Restore a premium user's listings that were archived for exceeding the
    free duration but are still inside the premium duration.

    Uses the same evaluator and executor as the sweeps; only listings whose
    verdict is restore_to_active are touched.

    Raises:
        ValueError: if user_id is empty
    """
    now = parse_timestamp(now, "now") if now is not None else utcnow()
    resolution = resolve_tier(db, user_id, now=now)
    result = UserRestoreResult(success=True, user_id=user_id, tier=resolution.tier, dry_run=dry_run)

    if not resolution.is_premium:
        result.message = "User is not premium; nothing to restore"
        logger.info(f"Skipping restoration for user {user_id}: tier is {resolution.tier}")
        return result

    rows = (
        db.query(Listing)
        .filter(Listing.user_id == user_id, Listing.status == ListingStatus.ARCHIVED.value)
        .order_by(Listing.id)
        .all()
    )
    listings = [ListingRecord.from_row(row) for row in rows]

    for listing in listings:
        result.listings_checked += 1
        evaluation = evaluate(listing, resolution.tier, now)

        if evaluation.verdict != Verdict.RESTORE_TO_ACTIVE:
            result.listings_skipped += 1
            continue

        try:
            transition = apply_verdict(
                db, listing, evaluation, initiated_by=initiated_by, dry_run=dry_run, now=now
            )
        except LifecycleError as e:
            result.errors.append(f"Listing {listing.id}: {e}")
            logger.error(f"Failed to restore listing {listing.id}: {e}")
            continue

        if transition.applied or dry_run:
            result.listings_restored += 1
            result.restored_ids.append(listing.id)
        else:
            result.listings_skipped += 1

    result.success = len(result.errors) == 0
    result.message = f"Restored {result.listings_restored} of {result.listings_checked} archived listings"

    logger.info(
        f"User {user_id} restoration {'(dry run) ' if dry_run else ''}complete: "
        f"{result.listings_restored} restored, {result.listings_skipped} skipped, "
        f"{len(result.errors)} errors",
        extra={"event": "user_restoration", "user_id": user_id, "initiated_by": initiated_by},
    )
    return result


# -----------------------------------------------------------------------------
# Orphaned favorites
# -----------------------------------------------------------------------------


def cleanup_orphaned_favorites(
    db: Session,
    dry_run: bool = False,
    batch_size: int = StoreLimits.MAX_BATCH_OPERATIONS,
) -> OrphanCleanupResult:
    """
    Delete favorites whose listing no longer exists.

    Catches favorites left behind when a listing's cascade partly failed or
    when a listing was removed outside the lifecycle. Batches are at most
    the store batch limit; a failing batch is recorded and skipped.
    Favorites are the only listing-keyed records this service owns; offers
    and short-id mappings are cleaned up by the services that own them.
    """
    batch_size = max(1, min(batch_size, StoreLimits.MAX_BATCH_OPERATIONS))
    result = OrphanCleanupResult(success=True, dry_run=dry_run)
    orphaned = ~Favorite.listing_id.in_(select(Listing.id))
    after_id = None

    while True:
        query = db.query(Favorite.id).filter(orphaned)
        if after_id is not None:
            query = query.filter(Favorite.id > after_id)
        ids = [row.id for row in query.order_by(Favorite.id).limit(batch_size).all()]
        if not ids:
            break
        after_id = ids[-1]
        result.orphans_found += len(ids)

        if dry_run:
            continue

        try:
            result.favorites_deleted += store_retry(_delete_favorites, db, ids)
            result.batches_committed += 1
        except SQLAlchemyError as e:
            result.failed_batches += 1
            result.errors.append(f"Favorites batch ending {after_id}: {e}")
            logger.error(f"Orphaned favorites batch failed: {e}")

    result.success = result.failed_batches == 0

    logger.info(
        f"Orphaned favorites cleanup {'(dry run) ' if dry_run else ''}complete: "
        f"{result.orphans_found} found, {result.favorites_deleted} deleted, "
        f"{result.failed_batches} failed batches",
        extra={"event": "orphan_cleanup", "items_processed": result.orphans_found},
    )
    return result


def _delete_favorites(db: Session, ids: list[str]) -> int:
    try:
        deleted = db.query(Favorite).filter(Favorite.id.in_(ids)).delete(synchronize_session=False)
        db.commit()
        return deleted
    except SQLAlchemyError:
        db.rollback()
        raise
