"""
Expiration evaluator.

evaluate() decides what should happen to a listing right now. It is a pure
function of (listing, tier, now): no store reads, no clock reads, no writes.
The listing argument only needs the attributes of app.models.Listing
(id, status, created_at, updated_at, archived_at, delete_at,
expires_at, expiration_reason), so ORM rows, ListingRecord snapshots and
test doubles all work.

Verdicts:
- active listings: archive_now iff now > created_at + tier duration,
  otherwise keep_active
- archived listings: delete_now iff now > effective delete time
  (delete_at, else archived_at + retention); restore_to_active when the
  owner is now premium and the listing was archived for exceeding the free
  duration but would still be live under premium; stamp_delete_at when
  delete_at is missing but derivable; otherwise no_action
- inactive listings: archive_now iff now > updated_at + inactivity timeout;
  no_action when updated_at is missing or recent
- sold listings (or anything else): no_action
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from app.constants import ExpirationReasons
from app.models import AccountTier, ListingStatus
from app.services.lifecycle.duration_policy import delete_at_for, expected_expiry, inactive_archive_after
from app.services.lifecycle.errors import MalformedTimestampError
from app.services.lifecycle.timestamps import isoformat, parse_timestamp

logger = logging.getLogger(__name__)

MISSING_TIMESTAMPS = "missing timestamps"


class Verdict(str, Enum):
    """Outcome of evaluating a listing."""

    KEEP_ACTIVE = "keep_active"
    ARCHIVE_NOW = "archive_now"
    DELETE_NOW = "delete_now"
    RESTORE_TO_ACTIVE = "restore_to_active"
    STAMP_DELETE_AT = "stamp_delete_at"
    NO_ACTION = "no_action"


@dataclass(frozen=True)
class ListingRecord:
    """Detached copy of the lifecycle-relevant columns of a listing row."""

    id: str
    user_id: str | None = None
    status: str | None = None
    title: str | None = None
    created_at: object = None
    updated_at: object = None
    expires_at: object = None
    archived_at: object = None
    delete_at: object = None
    expiration_reason: str | None = None
    account_tier_at_archival: str | None = None
    previous_status: str | None = None
    restored_at: object = None
    restored_reason: str | None = None

    @classmethod
    def from_row(cls, row) -> "ListingRecord":
        return cls(**{name: getattr(row, name, None) for name in cls.__dataclass_fields__})

    def to_dict(self) -> dict:
        data = {}
        for name in self.__dataclass_fields__:
            value = getattr(self, name)
            data[name] = isoformat(value) if isinstance(value, datetime) else value
        return data


@dataclass
class Evaluation:
    """What evaluate() decided and the values it decided on."""

    listing_id: str | None
    verdict: Verdict
    reason: str
    tier: str
    evaluated_at: datetime
    observed_status: str
    expected_expiry: datetime | None = None
    effective_delete_at: datetime | None = None
    data_quality_issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "listing_id": self.listing_id,
            "verdict": self.verdict.value,
            "reason": self.reason,
            "tier": self.tier,
            "evaluated_at": isoformat(self.evaluated_at),
            "observed_status": self.observed_status,
            "expected_expiry": isoformat(self.expected_expiry),
            "effective_delete_at": isoformat(self.effective_delete_at),
            "data_quality_issues": list(self.data_quality_issues),
        }


def _status_value(status) -> str:
    return status.value if isinstance(status, ListingStatus) else str(status or "").lower()


def _tier_value(tier) -> str:
    return tier.value if isinstance(tier, AccountTier) else str(tier or AccountTier.FREE.value).lower()


def _read_timestamp(listing, field_name: str, issues: list[str]) -> tuple[datetime | None, bool]:
    """Return (value, malformed). Malformed values are logged as data-quality issues."""
    listing_id = getattr(listing, "id", None)
    try:
        return parse_timestamp(getattr(listing, field_name, None), field_name, listing_id), False
    except MalformedTimestampError as e:
        issues.append(str(e))
        logger.warning(
            f"Data quality: listing {listing_id} has malformed {field_name}, assuming expired",
            extra={"event": "malformed_timestamp", "listing_id": listing_id, "error_kind": e.kind},
        )
        return None, True


def evaluate(listing, tier, now: datetime) -> Evaluation:
    """Evaluate a listing under `tier` at `now`. See module docstring for the rules."""
    now = parse_timestamp(now, "now")
    tier = _tier_value(tier)
    status = _status_value(getattr(listing, "status", None))

    base = dict(
        listing_id=getattr(listing, "id", None),
        tier=tier,
        evaluated_at=now,
        observed_status=status,
    )

    if status == ListingStatus.ACTIVE.value:
        return _evaluate_active(listing, tier, now, base)
    if status == ListingStatus.ARCHIVED.value:
        return _evaluate_archived(listing, tier, now, base)
    if status == ListingStatus.INACTIVE.value:
        return _evaluate_inactive(listing, now, base)

    return Evaluation(
        verdict=Verdict.NO_ACTION,
        reason=f"status '{status}' is not managed by the lifecycle",
        **base,
    )


def _evaluate_active(listing, tier: str, now: datetime, base: dict) -> Evaluation:
    issues: list[str] = []
    created_at, malformed = _read_timestamp(listing, "created_at", issues)

    if created_at is None:
        reason = "malformed created_at" if malformed else "missing created_at"
        return Evaluation(
            verdict=Verdict.ARCHIVE_NOW,
            reason=reason,
            data_quality_issues=issues or [reason],
            **base,
        )

    expiry = expected_expiry(created_at, tier)
    if now > expiry:
        return Evaluation(
            verdict=Verdict.ARCHIVE_NOW,
            reason=ExpirationReasons.TIER_DURATION_EXCEEDED,
            expected_expiry=expiry,
            **base,
        )

    return Evaluation(
        verdict=Verdict.KEEP_ACTIVE,
        reason="within tier duration",
        expected_expiry=expiry,
        **base,
    )


def _evaluate_archived(listing, tier: str, now: datetime, base: dict) -> Evaluation:
    issues: list[str] = []
    delete_at, delete_at_malformed = _read_timestamp(listing, "delete_at", issues)
    archived_at, archived_at_malformed = _read_timestamp(listing, "archived_at", issues)

    if delete_at_malformed or (delete_at is None and archived_at_malformed):
        return Evaluation(
            verdict=Verdict.DELETE_NOW,
            reason="malformed timestamps",
            data_quality_issues=issues,
            **base,
        )

    if delete_at is None and archived_at is None:
        return Evaluation(
            verdict=Verdict.DELETE_NOW,
            reason=MISSING_TIMESTAMPS,
            data_quality_issues=issues or [MISSING_TIMESTAMPS],
            **base,
        )

    effective_delete_at = delete_at if delete_at is not None else delete_at_for(archived_at)

    if now > effective_delete_at:
        return Evaluation(
            verdict=Verdict.DELETE_NOW,
            reason="retention window elapsed",
            effective_delete_at=effective_delete_at,
            data_quality_issues=issues,
            **base,
        )

    restorable_expiry = _restorable_expiry(listing, tier, now, issues)
    if restorable_expiry is not None:
        return Evaluation(
            verdict=Verdict.RESTORE_TO_ACTIVE,
            reason="owner upgraded to premium; listing within premium duration",
            expected_expiry=restorable_expiry,
            effective_delete_at=effective_delete_at,
            data_quality_issues=issues,
            **base,
        )

    if delete_at is None:
        return Evaluation(
            verdict=Verdict.STAMP_DELETE_AT,
            reason="archived without delete_at",
            effective_delete_at=effective_delete_at,
            data_quality_issues=issues,
            **base,
        )

    return Evaluation(
        verdict=Verdict.NO_ACTION,
        reason="within retention window",
        effective_delete_at=effective_delete_at,
        data_quality_issues=issues,
        **base,
    )


def _evaluate_inactive(listing, now: datetime, base: dict) -> Evaluation:
    issues: list[str] = []
    updated_at, malformed = _read_timestamp(listing, "updated_at", issues)

    if malformed:
        return Evaluation(
            verdict=Verdict.ARCHIVE_NOW,
            reason="malformed updated_at",
            data_quality_issues=issues,
            **base,
        )

    if updated_at is None:
        return Evaluation(
            verdict=Verdict.NO_ACTION,
            reason="missing updated_at",
            data_quality_issues=["missing updated_at"],
            **base,
        )

    archive_after = inactive_archive_after(updated_at)
    if now > archive_after:
        return Evaluation(
            verdict=Verdict.ARCHIVE_NOW,
            reason=ExpirationReasons.INACTIVE_TIMEOUT,
            expected_expiry=archive_after,
            **base,
        )

    return Evaluation(
        verdict=Verdict.NO_ACTION,
        reason="within inactivity timeout",
        expected_expiry=archive_after,
        **base,
    )

def _restorable_expiry(listing, tier: str, now: datetime, issues: list[str]) -> datetime | None:
    """Premium expiry if the listing qualifies for restoration, else None."""
    if tier != AccountTier.PREMIUM.value:
        return None
    if getattr(listing, "expiration_reason", None) != ExpirationReasons.TIER_DURATION_EXCEEDED:
        return None

    created_at, _ = _read_timestamp(listing, "created_at", issues)
    if created_at is None:
        return None

    expiry = expected_expiry(created_at, tier)
    return expiry if now <= expiry else None
