"""
Lifecycle transition executor.

Applies an Evaluation to the store. Every mutation is one conditional
UPDATE/DELETE guarded on the status the evaluator observed, committed
together with its audit event. When the guard matches nothing, another
sweep already moved the listing and the transition is reported as a no-op.

Handles:
- archive_now: stamp archived_at/delete_at/account_tier_at_archival
- delete_now: remove the listing, then cascade-delete its favorites in
  bounded batches (best-effort, per-batch errors collected)
- restore_to_active: fresh expires_at, every archival field cleared
- keep_active: rewrite expires_at only when the tier changed it
- stamp_delete_at: backfill delete_at on archived listings missing it
- no_action: nothing
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.constants import ExpirationReasons, StoreLimits
from app.models import (
    Favorite,
    LifecycleEventType,
    Listing,
    ListingLifecycleEvent,
    ListingStatus,
)
from app.services.lifecycle.duration_policy import delete_at_for, inactive_timeout_days
from app.services.lifecycle.errors import BatchWriteError, CascadeError, MalformedTimestampError
from app.services.lifecycle.evaluator import Evaluation, Verdict
from app.services.lifecycle.timestamps import isoformat, parse_timestamp
from app.services.resilience import store_retry

logger = logging.getLogger(__name__)

# Cleared together on restore; leaving any of them behind is drift
ARCHIVAL_FIELDS = ("archived_at", "delete_at", "expiration_reason", "account_tier_at_archival")


@dataclass
class CascadeResult:
    """Result of removing favorites that reference a deleted listing."""

    listing_id: str
    favorites_deleted: int = 0
    batches_committed: int = 0
    failed_batches: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed_batches == 0


@dataclass
class TransitionResult:
    """What apply_verdict() wrote (or would have written)."""

    listing_id: str
    verdict: Verdict
    applied: bool = False
    dry_run: bool = False
    updated_fields: dict = field(default_factory=dict)
    cascade_actions: list[dict] = field(default_factory=list)
    skipped_reason: str | None = None
    cascade_error: CascadeError | None = None

    def to_dict(self) -> dict:
        return {
            "listing_id": self.listing_id,
            "verdict": self.verdict.value,
            "applied": self.applied,
            "dry_run": self.dry_run,
            "updated_fields": self.updated_fields,
            "cascade_actions": self.cascade_actions,
            "skipped_reason": self.skipped_reason,
            "cascade_error": str(self.cascade_error) if self.cascade_error else None,
        }


def _serialize(values: dict) -> dict:
    return {k: isoformat(v) if isinstance(v, datetime) else v for k, v in values.items()}


def log_lifecycle_event(
    db: Session,
    listing_id: str | None,
    event_type: LifecycleEventType,
    initiated_by: str,
    user_id: str | None = None,
    idempotency_key: str | None = None,
    event_metadata: dict | None = None,
) -> ListingLifecycleEvent:
    """
    Log a lifecycle event for audit trail.

    Uses idempotency_key to prevent duplicate events.
    """
    if idempotency_key:
        existing = (
            db.query(ListingLifecycleEvent)
            .filter(ListingLifecycleEvent.idempotency_key == idempotency_key)
            .first()
        )
        if existing:
            return existing

    event = ListingLifecycleEvent(
        listing_id=listing_id,
        user_id=user_id,
        event_type=event_type.value,
        initiated_by=initiated_by,
        idempotency_key=idempotency_key,
        event_metadata=event_metadata,
    )
    db.add(event)
    return event


def _event_key(event_type: LifecycleEventType, listing_id: str, now: datetime) -> str:
    return f"{event_type.value}:{listing_id}:{now.strftime('%Y%m%d%H%M%S%f')}"


def _guarded_update(
    db: Session,
    listing_id: str,
    expected_status: str,
    values: dict,
    event_type: LifecycleEventType,
    initiated_by: str,
    now: datetime,
    user_id: str | None = None,
    event_metadata: dict | None = None,
    extra_filters: tuple = (),
) -> int:
    """Conditional single-listing UPDATE plus audit event, in one commit. Returns rows matched."""

    def _write() -> int:
        try:
            matched = (
                db.query(Listing)
                .filter(Listing.id == listing_id, Listing.status == expected_status, *extra_filters)
                .update(values, synchronize_session=False)
            )
            if matched:
                log_lifecycle_event(
                    db,
                    listing_id,
                    event_type,
                    initiated_by,
                    user_id=user_id,
                    idempotency_key=_event_key(event_type, listing_id, now),
                    event_metadata=event_metadata,
                )
            db.commit()
            return matched
        except SQLAlchemyError:
            db.rollback()
            raise

    _write.__name__ = f"{event_type.value}_listing"

    try:
        return store_retry(_write)
    except SQLAlchemyError as e:
        raise BatchWriteError(f"{event_type.value} write failed: {e}", listing_id=listing_id) from e


def _guarded_delete(
    db: Session,
    listing_id: str,
    initiated_by: str,
    now: datetime,
    user_id: str | None = None,
    event_metadata: dict | None = None,
) -> int:
    """Conditional single-listing DELETE (archived only) plus audit event. Returns rows matched."""

    def _delete_listing() -> int:
        try:
            matched = (
                db.query(Listing)
                .filter(Listing.id == listing_id, Listing.status == ListingStatus.ARCHIVED.value)
                .delete(synchronize_session=False)
            )
            if matched:
                log_lifecycle_event(
                    db,
                    listing_id,
                    LifecycleEventType.DELETED,
                    initiated_by,
                    user_id=user_id,
                    idempotency_key=_event_key(LifecycleEventType.DELETED, listing_id, now),
                    event_metadata=event_metadata,
                )
            db.commit()
            return matched
        except SQLAlchemyError:
            db.rollback()
            raise

    try:
        return store_retry(_delete_listing)
    except SQLAlchemyError as e:
        raise BatchWriteError(f"delete failed: {e}", listing_id=listing_id) from e


def cascade_delete_favorites(
    db: Session,
    listing_id: str,
    batch_size: int = StoreLimits.MAX_BATCH_OPERATIONS,
    initiated_by: str = "scheduler",
) -> CascadeResult:
    """
    Remove every favorite referencing listing_id, in batches of at most batch_size.

    Best-effort: a batch that fails (after retries) is recorded and skipped,
    and the cascade moves on to the next batch. Rerunning picks up whatever a
    failed batch left behind.
    """
    batch_size = max(1, min(batch_size, StoreLimits.MAX_BATCH_OPERATIONS))
    result = CascadeResult(listing_id=listing_id)
    after_id: str | None = None

    while True:
        query = db.query(Favorite.id).filter(Favorite.listing_id == listing_id)
        if after_id is not None:
            query = query.filter(Favorite.id > after_id)
        ids = [row.id for row in query.order_by(Favorite.id).limit(batch_size).all()]

        if not ids:
            break
        after_id = ids[-1]

        def _delete_batch(batch_ids=ids) -> int:
            try:
                deleted = (
                    db.query(Favorite)
                    .filter(Favorite.id.in_(batch_ids))
                    .delete(synchronize_session=False)
                )
                db.commit()
                return deleted
            except SQLAlchemyError:
                db.rollback()
                raise

        try:
            result.favorites_deleted += store_retry(_delete_batch)
            result.batches_committed += 1
        except SQLAlchemyError as e:
            result.failed_batches += 1
            result.errors.append(f"Favorites batch ending {after_id}: {e}")
            logger.error(
                f"Favorite cascade batch failed for listing {listing_id}: {e}",
                extra={"event": "cascade_batch_failed", "listing_id": listing_id, "error_kind": "cascade_failure"},
            )

    if result.favorites_deleted:
        try:
            log_lifecycle_event(
                db,
                listing_id,
                LifecycleEventType.FAVORITES_CASCADED,
                initiated_by,
                event_metadata={
                    "favorites_deleted": result.favorites_deleted,
                    "batches": result.batches_committed,
                    "failed_batches": result.failed_batches,
                },
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Failed to record favorite cascade for listing {listing_id}: {e}")

    logger.debug(
        f"Cascade for listing {listing_id}: {result.favorites_deleted} favorites removed "
        f"in {result.batches_committed} batches ({result.failed_batches} failed)"
    )
    return result


def _stored_expiry(listing) -> datetime | None:
    try:
        return parse_timestamp(getattr(listing, "expires_at", None), "expires_at")
    except MalformedTimestampError:
        return None


def apply_verdict(
    db: Session,
    listing,
    evaluation: Evaluation,
    initiated_by: str = "scheduler",
    dry_run: bool = False,
    now: datetime | None = None,
) -> TransitionResult:
    """
    Apply an evaluation's verdict to a listing.

    Args:
        db: Database session
        listing: The listing that was evaluated
        evaluation: Output of evaluate() for this listing
        initiated_by: Who initiated the transition (scheduler, admin, cli)
        dry_run: Compute the writes without performing them
        now: Transition time (defaults to evaluation.evaluated_at)

    Returns:
        TransitionResult. applied=False with a skipped_reason when the guard
        did not match (concurrent transition) or nothing needed writing.

    Raises:
        BatchWriteError: the listing's own write failed after retries
    """
    now = parse_timestamp(now, "now") if now is not None else evaluation.evaluated_at
    listing_id = listing.id
    user_id = getattr(listing, "user_id", None)
    verdict = evaluation.verdict
    result = TransitionResult(listing_id=listing_id, verdict=verdict, dry_run=dry_run)

    if verdict == Verdict.NO_ACTION:
        result.skipped_reason = evaluation.reason
        return result

    if verdict == Verdict.ARCHIVE_NOW:
        reason = (
            evaluation.reason
            if evaluation.reason in (ExpirationReasons.TIER_DURATION_EXCEEDED, ExpirationReasons.INACTIVE_TIMEOUT)
            else ExpirationReasons.MALFORMED_TIMESTAMP
        )
        values = {
            "status": ListingStatus.ARCHIVED.value,
            "archived_at": now,
            "delete_at": delete_at_for(now),
            "account_tier_at_archival": evaluation.tier,
            "expiration_reason": reason,
            "previous_status": evaluation.observed_status,
            "updated_at": now,
        }
        extra_filters = ()
        if reason == ExpirationReasons.INACTIVE_TIMEOUT:
            # a listing touched since it was read is no longer idle
            extra_filters = (Listing.updated_at < now - timedelta(days=inactive_timeout_days()),)
        return _apply_update(
            db, result, values, evaluation.observed_status, LifecycleEventType.ARCHIVED,
            initiated_by, now, user_id, evaluation, dry_run,
            extra_filters=extra_filters,
        )

    if verdict == Verdict.RESTORE_TO_ACTIVE:
        values = {
            "status": ListingStatus.ACTIVE.value,
            "expires_at": evaluation.expected_expiry,
            **{name: None for name in ARCHIVAL_FIELDS},
            "previous_status": ListingStatus.ARCHIVED.value,
            "restored_at": now,
            "restored_reason": ExpirationReasons.PREMIUM_RESTORATION,
            "updated_at": now,
        }
        return _apply_update(
            db, result, values, ListingStatus.ARCHIVED.value, LifecycleEventType.RESTORED,
            initiated_by, now, user_id, evaluation, dry_run,
        )

    if verdict == Verdict.KEEP_ACTIVE:
        expected = evaluation.expected_expiry
        if expected is None or _stored_expiry(listing) == expected:
            result.skipped_reason = "expires_at already current"
            return result
        values = {"expires_at": expected, "updated_at": now}
        return _apply_update(
            db, result, values, ListingStatus.ACTIVE.value, LifecycleEventType.EXPIRY_RECOMPUTED,
            initiated_by, now, user_id, evaluation, dry_run,
        )

    if verdict == Verdict.STAMP_DELETE_AT:
        values = {"delete_at": evaluation.effective_delete_at, "updated_at": now}
        return _apply_update(
            db, result, values, ListingStatus.ARCHIVED.value, LifecycleEventType.DELETE_AT_STAMPED,
            initiated_by, now, user_id, evaluation, dry_run,
            extra_filters=(Listing.delete_at.is_(None),),
        )

    if verdict == Verdict.DELETE_NOW:
        return _apply_delete(db, listing, result, initiated_by, now, user_id, evaluation, dry_run)

    raise ValueError(f"Unknown verdict: {verdict}")


def _apply_update(
    db: Session,
    result: TransitionResult,
    values: dict,
    expected_status: str,
    event_type: LifecycleEventType,
    initiated_by: str,
    now: datetime,
    user_id: str | None,
    evaluation: Evaluation,
    dry_run: bool,
    extra_filters: tuple = (),
) -> TransitionResult:
    result.updated_fields = _serialize(values)

    if dry_run:
        return result

    matched = _guarded_update(
        db,
        result.listing_id,
        expected_status,
        values,
        event_type,
        initiated_by,
        now,
        user_id=user_id,
        event_metadata={"reason": evaluation.reason, "tier": evaluation.tier, "fields": result.updated_fields},
        extra_filters=extra_filters,
    )

    if not matched:
        result.updated_fields = {}
        if extra_filters:
            result.skipped_reason = f"listing no longer {expected_status} or changed since read (concurrent transition)"
        else:
            result.skipped_reason = f"listing no longer {expected_status} (concurrent transition)"
        logger.info(
            f"Listing {result.listing_id} already transitioned, nothing to do",
            extra={"event": "transition_superseded", "listing_id": result.listing_id},
        )
        return result

    result.applied = True
    # Restorations undo an archival, so they stand out in the log
    level = logging.WARNING if event_type == LifecycleEventType.RESTORED else logging.INFO
    logger.log(
        level,
        f"Listing {result.listing_id}: {event_type.value}",
        extra={
            "event": f"listing_{event_type.value}",
            "listing_id": result.listing_id,
            "verdict": result.verdict.value,
            "reason": evaluation.reason,
            "tier": evaluation.tier,
            "initiated_by": initiated_by,
        },
    )
    return result


def _forget_listing(db: Session, listing_id: str) -> None:
    """Drop a deleted listing from the session's identity map."""
    instance = db.identity_map.get(db.identity_key(Listing, listing_id))
    if instance is not None:
        db.expunge(instance)


def _apply_delete(
    db: Session,
    listing,
    result: TransitionResult,
    initiated_by: str,
    now: datetime,
    user_id: str | None,
    evaluation: Evaluation,
    dry_run: bool,
) -> TransitionResult:
    listing_id = result.listing_id

    if dry_run:
        pending = db.query(Favorite).filter(Favorite.listing_id == listing_id).count()
        result.cascade_actions = [{"action": "delete_favorites", "favorites": pending}]
        return result

    matched = _guarded_delete(
        db,
        listing_id,
        initiated_by,
        now,
        user_id=user_id,
        event_metadata={
            "reason": evaluation.reason,
            "tier": evaluation.tier,
            "effective_delete_at": isoformat(evaluation.effective_delete_at),
            "data_quality_issues": evaluation.data_quality_issues,
        },
    )

    _forget_listing(db, listing_id)

    if not matched:
        result.skipped_reason = "listing no longer archived (concurrent transition)"
        logger.info(
            f"Listing {listing_id} already deleted or restored, nothing to do",
            extra={"event": "transition_superseded", "listing_id": listing_id},
        )
        if db.query(Listing.id).filter(Listing.id == listing_id).first() is not None:
            # Restored concurrently; its favorites stay
            return result
    else:
        result.applied = True
        logger.info(
            f"Deleted listing {listing_id} ({evaluation.reason})",
            extra={
                "event": "listing_deleted",
                "listing_id": listing_id,
                "reason": evaluation.reason,
                "initiated_by": initiated_by,
            },
        )

    # Also runs when a concurrent sweep won the delete, so favorites it left
    # behind are still removed.
    cascade = cascade_delete_favorites(db, listing_id, initiated_by=initiated_by)
    result.cascade_actions = [
        {
            "action": "delete_favorites",
            "favorites": cascade.favorites_deleted,
            "batches": cascade.batches_committed,
            "failed_batches": cascade.failed_batches,
        }
    ]
    if not cascade.success:
        result.cascade_error = CascadeError(
            f"{cascade.failed_batches} favorite batch(es) failed: {'; '.join(cascade.errors)}",
            listing_id=listing_id,
            failed_batches=cascade.failed_batches,
        )

    return result
