# app/routers/cron.py
"""
Scheduler endpoints for the listing lifecycle.

POST /v1/cron/archive-expired - Archive active listings past their tier duration and
    inactive listings idle past the inactivity timeout (every 15 min)
POST /v1/cron/cleanup-archived - Delete archived listings past delete_at (hourly)
POST /v1/cron/cleanup-related-data - Remove favorites of listings that no longer exist
    (offers and short-id mappings are not modelled here)

Each call is bounded: it stops at SWEEP_TIME_BUDGET_SECONDS and
the next scheduled call picks up where it left off.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.auth import require_cron_secret
from app.database import get_db
from app.models import ListingStatus
from app.schemas.lifecycle import OrphanCleanupResponse, SweepResponse
from app.services.lifecycle import cleanup_orphaned_favorites, run_archive_sweep, run_sweep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/cron", tags=["cron"])


def _log_summary(name: str, summary: dict) -> None:
    if summary.get("success"):
        logger.info(f"Cron {name} finished", extra={"event": "cron_complete"})
    else:
        logger.error(
            f"Cron {name} finished with errors: {summary.get('errors', [])[:3]}",
            extra={"event": "cron_errors"},
        )


@router.post("/archive-expired", response_model=SweepResponse)
def archive_expired(
    db: Session = Depends(get_db),
    _: None = Depends(require_cron_secret),
) -> SweepResponse:
    """
    Sweep active listings (archive the expired ones, refresh expires_at on
    listings whose owner's tier changed), then archive inactive listings
    nobody has updated within the inactivity timeout.
    """
    result = run_archive_sweep(db, initiated_by="scheduler")
    summary = result.to_dict()
    _log_summary("archive-expired", summary)
    return SweepResponse(**summary)


@router.post("/cleanup-archived", response_model=SweepResponse)
def cleanup_archived(
    db: Session = Depends(get_db),
    _: None = Depends(require_cron_secret),
) -> SweepResponse:
    """
    Sweep archived listings: delete those past delete_at (cascading their
    favorites). Listings a premium upgrade brought back into range are
    reported as skipped unless SWEEP_APPLY_RESTORATIONS is on.
    """
    result = run_sweep(db, ListingStatus.ARCHIVED.value, initiated_by="scheduler")
    summary = result.to_dict()
    _log_summary("cleanup-archived", summary)
    return SweepResponse(**summary)


@router.post("/cleanup-related-data", response_model=OrphanCleanupResponse)
def cleanup_related_data(
    db: Session = Depends(get_db),
    _: None = Depends(require_cron_secret),
) -> OrphanCleanupResponse:
    """
    Remove favorites whose listing no longer exists.
    """
    result = cleanup_orphaned_favorites(db)
    summary = dict(result.__dict__)
    _log_summary("cleanup-related-data", summary)
    return OrphanCleanupResponse(**summary)
