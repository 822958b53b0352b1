"""
Sweep service: the scheduled and manual triggers.

run_sweep() pages through listings of one status, resolves each owner's
tier, evaluates the listing and applies the verdict. A sweep never holds a
transaction across listings: each transition commits on its own, so a sweep
that runs out of time or hits a bad listing leaves everything it already did
in place. Running the same sweep again without the clock moving changes
nothing.

run_archive_sweep() is the archive trigger: it sweeps active listings and
then inactive listings under one time budget and reports the combined counts.

fix_listing() runs the same evaluate/apply pair on a single listing and
returns a before/after diagnostic for operators.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.config import get_settings
from app.constants import StoreLimits, SweepDefaults
from app.logging_config import ProgressTracker, log_sweep
from app.models import Favorite, Listing, ListingStatus
from app.services.lifecycle.duration_policy import inactive_timeout_days
from app.services.lifecycle.errors import LifecycleError, ListingNotFoundError
from app.services.lifecycle.evaluator import Evaluation, ListingRecord, Verdict, evaluate
from app.services.lifecycle.executor import TransitionResult, apply_verdict
from app.services.lifecycle.tier_service import TierCache, TierResolution
from app.services.lifecycle.timestamps import isoformat, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

SWEEPABLE_STATUSES = (ListingStatus.ACTIVE.value, ListingStatus.INACTIVE.value, ListingStatus.ARCHIVED.value)

# Statuses the archive trigger sweeps, in order
ARCHIVE_SWEEP_STATUSES = (ListingStatus.ACTIVE.value, ListingStatus.INACTIVE.value)

# SweepResult fields summed when sweeps are combined
_COUNTERS = (
    "scanned", "archived", "deleted", "restored", "recomputed", "delete_at_stamped",
    "unchanged", "superseded", "skipped", "favorites_deleted", "cascade_failures", "error_count",
)


@dataclass
class SweepResult:
    """Summary of a sweep."""
    success: bool
    status_filter: str
    dry_run: bool = False
    scanned: int = 0
    archived: int = 0
    deleted: int = 0
    restored: int = 0
    recomputed: int = 0
    delete_at_stamped: int = 0
    unchanged: int = 0
    superseded: int = 0
    skipped: int = 0
    favorites_deleted: int = 0
    cascade_failures: int = 0
    timed_out: bool = False
    error_count: int = 0
    errors: list[str] = field(default_factory=list)
    trace_id: str | None = None
    started_at: datetime | None = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        data = dict(self.__dict__)
        data["started_at"] = isoformat(self.started_at)
        return data


@dataclass
class FixReport:
    """Before/after diagnostic for a single listing."""
    listing_id: str
    dry_run: bool
    before: dict
    tier: TierResolution
    evaluation: Evaluation
    transition: TransitionResult
    after: dict | None

    def to_dict(self) -> dict:
        return {
            "listing_id": self.listing_id,
            "dry_run": self.dry_run,
            "before": self.before,
            "tier": self.tier.to_dict(),
            "evaluation": self.evaluation.to_dict(),
            "transition": self.transition.to_dict(),
            "after": self.after,
        }


def listing_snapshot(listing) -> dict:
    """JSON-safe snapshot of a listing's lifecycle fields."""
    return ListingRecord.from_row(listing).to_dict()


def _short_error(listing_id: str, error: Exception) -> str:
    message = f"Listing {listing_id}: {error}"
    limit = SweepDefaults.ERROR_MESSAGE_MAX_CHARS
    return message if len(message) <= limit else message[: limit - 3] + "..."


def _record_error(result: SweepResult, listing_id: str, error: Exception, max_reported: int) -> None:
    result.error_count += 1
    if len(result.errors) < max_reported:
        result.errors.append(_short_error(listing_id, error))


def _tally(result: SweepResult, transition: TransitionResult) -> None:
    """Count one transition. Dry runs count what would have been written."""
    verdict = transition.verdict
    wrote = transition.applied or (transition.dry_run and transition.skipped_reason is None)

    for action in transition.cascade_actions:
        if not transition.dry_run:
            result.favorites_deleted += action.get("favorites", 0)
    if transition.cascade_error is not None:
        result.cascade_failures += 1

    if not wrote:
        if transition.skipped_reason and "concurrent" in transition.skipped_reason:
            result.superseded += 1
        else:
            result.unchanged += 1
        return

    if verdict == Verdict.ARCHIVE_NOW:
        result.archived += 1
    elif verdict == Verdict.DELETE_NOW:
        result.deleted += 1
    elif verdict == Verdict.RESTORE_TO_ACTIVE:
        result.restored += 1
    elif verdict == Verdict.KEEP_ACTIVE:
        result.recomputed += 1
    elif verdict == Verdict.STAMP_DELETE_AT:
        result.delete_at_stamped += 1


def _fetch_page(db: Session, status_filter: str, after_id: str | None, page_size: int) -> list[ListingRecord]:
    query = db.query(Listing).filter(Listing.status == status_filter)
    if after_id is not None:
        query = query.filter(Listing.id > after_id)
    rows = query.order_by(Listing.id).limit(page_size).all()
    return [ListingRecord.from_row(row) for row in rows]


def run_sweep(
    db: Session,
    status_filter: str,
    now: datetime | None = None,
    page_size: int | None = None,
    time_budget_seconds: float | None = None,
    dry_run: bool = False,
    initiated_by: str = "scheduler",
    apply_restorations: bool | None = None,
    max_reported_errors: int | None = None,
    clock=time.monotonic,
) -> SweepResult:
    """
    Sweep every listing with the given status.

    Args:
        db: Database session
        status_filter: "active" (archive expired), "inactive" (archive idle)
            or "archived" (delete/restore)
        now: Evaluation time for the whole sweep (defaults to current UTC time)
        page_size: Listings fetched per page (capped at the store batch limit)
        time_budget_seconds: Stop once this much wall-clock time has passed
        dry_run: If True, evaluate and report without writing
        initiated_by: Who initiated the sweep (scheduler, admin, cli)
        apply_restorations: Apply restore_to_active verdicts (else count as skipped)
        max_reported_errors: Cap on error strings kept in the result
        clock: Monotonic clock used for the time budget

    Returns:
        SweepResult with per-verdict counts
    """
    status_filter = (status_filter or "").lower()
    if status_filter not in SWEEPABLE_STATUSES:
        raise ValueError(f"status_filter must be one of {SWEEPABLE_STATUSES}, got {status_filter!r}")

    settings = get_settings()
    now = parse_timestamp(now, "now") if now is not None else utcnow()
    page_size = page_size or settings.SWEEP_PAGE_SIZE
    page_size = max(1, min(page_size, StoreLimits.MAX_PAGE_SIZE))
    budget = time_budget_seconds if time_budget_seconds is not None else settings.SWEEP_TIME_BUDGET_SECONDS
    if apply_restorations is None:
        apply_restorations = settings.SWEEP_APPLY_RESTORATIONS
    if max_reported_errors is None:
        max_reported_errors = settings.SWEEP_MAX_REPORTED_ERRORS

    result = SweepResult(success=True, status_filter=status_filter, dry_run=dry_run, started_at=now)
    tiers = TierCache(db, now=now)
    started = clock()
    deadline = started + budget

    with log_sweep(
        f"sweep_{status_filter}",
        status_filter=status_filter,
        initiated_by=initiated_by,
    ) as trace_id:
        result.trace_id = trace_id
        tracker = ProgressTracker(stage=f"sweep_{status_filter}", log_every=SweepDefaults.PROGRESS_LOG_EVERY)
        after_id = None

        while not result.timed_out:
            page = _fetch_page(db, status_filter, after_id, page_size)
            if not page:
                break
            after_id = page[-1].id

            for listing in page:
                if clock() >= deadline:
                    result.timed_out = True
                    logger.warning(
                        f"Sweep {status_filter} hit its {budget}s budget after {result.scanned} listings",
                        extra={"event": "sweep_timed_out", "items_processed": result.scanned},
                    )
                    break

                result.scanned += 1
                ok = _process_listing(
                    db, listing, tiers, now, result,
                    dry_run=dry_run,
                    initiated_by=initiated_by,
                    apply_restorations=apply_restorations,
                    max_reported_errors=max_reported_errors,
                )
                tracker.increment(success=ok)

            if len(page) < page_size:
                break

        tracker.finish()

    result.success = result.error_count == 0
    result.duration_seconds = round(clock() - started, 3)

    logger.info(
        f"Sweep {status_filter}: scanned={result.scanned} archived={result.archived} "
        f"deleted={result.deleted} restored={result.restored} recomputed={result.recomputed} "
        f"errors={result.error_count} timed_out={result.timed_out}",
        extra={
            "event": "sweep_summary",
            "status_filter": status_filter,
            "items_processed": result.scanned,
            "items_failed": result.error_count,
        },
    )
    return result


def run_archive_sweep(
    db: Session,
    now: datetime | None = None,
    time_budget_seconds: float | None = None,
    max_reported_errors: int | None = None,
    clock=time.monotonic,
    **kwargs,
) -> SweepResult:
    """
    Archive expired active listings, then inactive listings idle past the timeout.

    Both sweeps share one evaluation time and one time budget. If the active
    sweep uses up the budget the inactive sweep is not started and the
    combined result is marked timed_out.

    Returns:
        SweepResult whose counts are the sum of both sweeps
    """
    settings = get_settings()
    now = parse_timestamp(now, "now") if now is not None else utcnow()
    budget = time_budget_seconds if time_budget_seconds is not None else settings.SWEEP_TIME_BUDGET_SECONDS
    if max_reported_errors is None:
        max_reported_errors = settings.SWEEP_MAX_REPORTED_ERRORS
    started = clock()

    combined = SweepResult(
        success=True,
        status_filter=",".join(ARCHIVE_SWEEP_STATUSES),
        dry_run=kwargs.get("dry_run", False),
        started_at=now,
    )
    trace_ids = []

    for status_filter in ARCHIVE_SWEEP_STATUSES:
        remaining = budget - (clock() - started)
        if remaining <= 0:
            combined.timed_out = True
            logger.warning(
                f"Archive sweep skipped {status_filter} listings: time budget used up",
                extra={"event": "sweep_timed_out", "status_filter": status_filter},
            )
            break

        part = run_sweep(
            db, status_filter,
            now=now,
            time_budget_seconds=remaining,
            max_reported_errors=max_reported_errors,
            clock=clock,
            **kwargs,
        )
        _merge(combined, part, max_reported_errors)
        trace_ids.append(part.trace_id)
        if part.timed_out:
            break

    combined.trace_id = ",".join(t for t in trace_ids if t) or None
    combined.success = combined.error_count == 0
    combined.duration_seconds = round(clock() - started, 3)
    return combined


def _merge(combined: SweepResult, part: SweepResult, max_reported: int) -> None:
    for name in _COUNTERS:
        setattr(combined, name, getattr(combined, name) + getattr(part, name))
    combined.timed_out = combined.timed_out or part.timed_out
    combined.errors.extend(part.errors[: max(0, max_reported - len(combined.errors))])


def _process_listing(
    db: Session,
    listing: ListingRecord,
    tiers: TierCache,
    now: datetime,
    result: SweepResult,
    dry_run: bool,
    initiated_by: str,
    apply_restorations: bool,
    max_reported_errors: int,
) -> bool:
    """Evaluate and apply one listing. Returns False when it failed."""
    try:
        resolution = tiers.get(listing.user_id)
        evaluation = evaluate(listing, resolution.tier, now)

        if evaluation.verdict == Verdict.RESTORE_TO_ACTIVE and not apply_restorations:
            result.skipped += 1
            logger.info(
                f"Listing {listing.id} qualifies for restoration; left archived",
                extra={"event": "restoration_skipped", "listing_id": listing.id, "user_id": listing.user_id},
            )
            return True

        transition = apply_verdict(db, listing, evaluation, initiated_by=initiated_by, dry_run=dry_run, now=now)
        _tally(result, transition)

        if transition.cascade_error is not None:
            logger.error(
                f"Listing {listing.id} deleted but favorite cleanup incomplete: {transition.cascade_error}",
                extra={"event": "cascade_incomplete", "listing_id": listing.id, "error_kind": "cascade_failure"},
            )
            _record_error(result, listing.id, transition.cascade_error, max_reported_errors)
            return False
        return True

    except ListingNotFoundError:
        result.superseded += 1
        return True
    except LifecycleError as e:
        logger.error(
            f"Failed to process listing {listing.id}: {e}",
            extra={"event": "listing_failed", "listing_id": listing.id, "error_kind": e.kind},
        )
        _record_error(result, listing.id, e, max_reported_errors)
        return False
    except Exception as e:
        db.rollback()
        logger.error(
            f"Unexpected error processing listing {listing.id}: {e}",
            extra={"event": "listing_failed", "listing_id": listing.id, "error_kind": type(e).__name__},
            exc_info=True,
        )
        _record_error(result, listing.id, e, max_reported_errors)
        return False


def fix_listing(
    db: Session,
    listing_id: str,
    now: datetime | None = None,
    dry_run: bool = False,
    initiated_by: str = "admin",
) -> FixReport:
    """
    Diagnose (and unless dry_run, correct) a single listing.

    Raises:
        ListingNotFoundError: if no listing has this id
    """
    now = parse_timestamp(now, "now") if now is not None else utcnow()

    row = db.query(Listing).filter(Listing.id == listing_id).first()
    if row is None:
        raise ListingNotFoundError(f"Listing {listing_id} not found", listing_id=listing_id)

    before = ListingRecord.from_row(row)
    tier = TierCache(db, now=now).get(before.user_id)
    evaluation = evaluate(before, tier.tier, now)
    transition = apply_verdict(db, before, evaluation, initiated_by=initiated_by, dry_run=dry_run, now=now)

    after_row = db.query(Listing).filter(Listing.id == listing_id).first()

    logger.info(
        f"Fix listing {listing_id}: {evaluation.verdict.value} (applied={transition.applied})",
        extra={
            "event": "listing_fix",
            "listing_id": listing_id,
            "verdict": evaluation.verdict.value,
            "reason": evaluation.reason,
            "initiated_by": initiated_by,
        },
    )

    return FixReport(
        listing_id=listing_id,
        dry_run=dry_run,
        before=before.to_dict(),
        tier=tier,
        evaluation=evaluation,
        transition=transition,
        after=listing_snapshot(after_row) if after_row is not None else None,
    )


def get_lifecycle_stats(db: Session, now: datetime | None = None) -> dict:
    """
    Counts by status plus drift counts.

    Drift counters are states the sweeps should be converging to zero:
    active listings whose stored expiry has passed, archived listings with no
    delete_at or a passed delete_at, inactive listings idle past the timeout,
    and favorites pointing at missing listings.
    """
    now = parse_timestamp(now, "now") if now is not None else utcnow()

    by_status = {status.value: 0 for status in ListingStatus}
    for status, count in db.query(Listing.status, func.count(Listing.id)).group_by(Listing.status).all():
        by_status[status] = count

    active = Listing.status == ListingStatus.ACTIVE.value
    archived = Listing.status == ListingStatus.ARCHIVED.value
    inactive = Listing.status == ListingStatus.INACTIVE.value
    idle_cutoff = now - timedelta(days=inactive_timeout_days())

    drift = {
        "active_past_expires_at": db.query(Listing).filter(active, Listing.expires_at < now).count(),
        "active_missing_expires_at": db.query(Listing).filter(active, Listing.expires_at.is_(None)).count(),
        "active_with_delete_at": db.query(Listing).filter(active, Listing.delete_at.isnot(None)).count(),
        "archived_missing_delete_at": db.query(Listing).filter(archived, Listing.delete_at.is_(None)).count(),
        "archived_past_delete_at": db.query(Listing).filter(archived, Listing.delete_at < now).count(),
        "inactive_past_timeout": db.query(Listing).filter(inactive, Listing.updated_at < idle_cutoff).count(),
        "orphaned_favorites": (
            db.query(Favorite).filter(~Favorite.listing_id.in_(select(Listing.id))).count()
        ),
    }

    return {
        "as_of": isoformat(now),
        "listings_by_status": by_status,
        "total_listings": sum(by_status.values()),
        "total_favorites": db.query(Favorite).count(),
        "drift": drift,
    }
