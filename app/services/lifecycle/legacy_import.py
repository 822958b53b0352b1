"""
One-time import of legacy listing documents.

Older listings were exported from several document paths
(`listings/{id}`, `users/{uid}/listings/{id}`) with camelCase fields and a mix
of timestamp encodings. This module normalizes them into the canonical
`listings` table once, so nothing at read time ever has to look in more than
one place.

Malformed timestamps are not guessed at. They are recorded as data-quality
issues and stored so the next sweep treats the listing as expired:
- active listing, bad createdAt: created_at left empty (archived next sweep)
- archived listing, bad deleteAt/archivedAt: delete_at set to the import
  time (deleted next cleanup)
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.constants import StoreLimits
from app.models import LifecycleEventType, Listing, ListingStatus
from app.services.lifecycle.errors import MalformedTimestampError
from app.services.lifecycle.executor import log_lifecycle_event
from app.services.lifecycle.timestamps import parse_timestamp, utcnow

logger = logging.getLogger(__name__)

MAX_REPORTED_ISSUES = 100

# Listing.price is Numeric(10, 2)
MAX_PRICE = Decimal("99999999.99")

# Legacy field name -> column
_FIELD_MAP = {
    "userId": "user_id",
    "title": "title",
    "price": "price",
    "status": "status",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "expiresAt": "expires_at",
    "archivedAt": "archived_at",
    "deleteAt": "delete_at",
    "expirationReason": "expiration_reason",
    "accountTierAtArchival": "account_tier_at_archival",
    "originalStatus": "previous_status",
    "previousStatus": "previous_status",
    "restoredAt": "restored_at",
    "restoredReason": "restored_reason",
}

_TIMESTAMP_COLUMNS = ("created_at", "updated_at", "expires_at", "archived_at", "delete_at", "restored_at")


@dataclass
class LegacyImportResult:
    """Result of a legacy import."""
    success: bool
    source: str | None = None
    documents_read: int = 0
    imported: int = 0
    skipped_existing: int = 0
    rejected: int = 0
    data_quality_issues: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    dry_run: bool = False


def load_legacy_documents(path: str | Path) -> list[dict]:
    """
    Read an export file.

    Accepts a JSON list of documents, {"listings": [...]}, or a mapping of
    document path/id to document body.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("listings"), list):
        return data["listings"]
    if isinstance(data, dict):
        documents = []
        for key, body in data.items():
            if isinstance(body, dict):
                documents.append({"path": key, **body})
        return documents

    raise ValueError(f"Unrecognized export format in {path}")


def _ids_from_path(doc_path: str | None) -> tuple[str | None, str | None]:
    """(user_id, listing_id) implied by a legacy document path."""
    if not doc_path:
        return None, None
    parts = [p for p in doc_path.strip("/").split("/") if p]
    if len(parts) == 4 and parts[0] == "users" and parts[2] == "listings":
        return parts[1], parts[3]
    if len(parts) == 2 and parts[0] == "listings":
        return None, parts[1]
    return None, None


def _normalize_price(value, listing_id) -> Decimal | None:
    """Coerce a legacy price to a Decimal. Raises ValueError for anything the column cannot hold."""
    if value is None or value == "":
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise ValueError(f"invalid price {value!r} for listing {listing_id}")
    try:
        price = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"invalid price {value!r} for listing {listing_id}") from None
    if not price.is_finite() or abs(price) > MAX_PRICE:
        raise ValueError(f"invalid price {value!r} for listing {listing_id}")
    return price.quantize(Decimal("0.01"))


def normalize_document(doc: dict, imported_at: datetime) -> tuple[dict, list[str]]:
    """
    Map a legacy document onto Listing columns.

    Returns:
        (columns, issues). Raises ValueError when the document cannot be
        imported at all (no id, unknown status, unusable price or title).
    """
    path_user_id, path_listing_id = _ids_from_path(doc.get("path"))
    listing_id = doc.get("id") or path_listing_id
    if not listing_id:
        raise ValueError("document has no id")

    columns = {"id": str(listing_id)}
    for legacy_name, column in _FIELD_MAP.items():
        if legacy_name in doc:
            columns[column] = doc[legacy_name]
        elif column in doc:
            columns[column] = doc[column]

    if not columns.get("user_id") and path_user_id:
        columns["user_id"] = path_user_id

    status = str(columns.get("status") or ListingStatus.ACTIVE.value).lower()
    if status not in {s.value for s in ListingStatus}:
        raise ValueError(f"unknown status {status!r}")
    columns["status"] = status
    title = columns.get("title")
    if title is not None and not isinstance(title, str):
        raise ValueError(f"invalid title {title!r} for listing {listing_id}")
    columns["title"] = title or ""
    columns["price"] = _normalize_price(columns.get("price"), listing_id)

    issues = []
    malformed = set()
    for column in _TIMESTAMP_COLUMNS:
        if column not in columns:
            continue
        try:
            columns[column] = parse_timestamp(columns[column], column, listing_id)
        except MalformedTimestampError as e:
            issues.append(str(e))
            malformed.add(column)
            columns[column] = None

    if status == ListingStatus.ARCHIVED.value and malformed & {"delete_at", "archived_at"}:
        columns["delete_at"] = imported_at

    return columns, issues


def import_legacy_listings(
    db: Session,
    documents: list[dict],
    source: str | None = None,
    dry_run: bool = False,
    initiated_by: str = "cli",
    batch_size: int = StoreLimits.MAX_BATCH_OPERATIONS,
) -> LegacyImportResult:
    """
    Import legacy listing documents into the listings table.

    Listings whose id already exists are left untouched, so the import can be
    re-run safely.
    """
    imported_at = utcnow()
    batch_size = max(1, min(batch_size, StoreLimits.MAX_BATCH_OPERATIONS))
    result = LegacyImportResult(success=True, source=source, dry_run=dry_run)
    pending = 0
    seen = set()

    for doc in documents:
        result.documents_read += 1

        try:
            columns, issues = normalize_document(doc, imported_at)
        except ValueError as e:
            result.rejected += 1
            result.errors.append(f"Document {doc.get('id') or doc.get('path')}: {e}")
            continue

        listing_id = columns["id"]
        if listing_id in seen or db.query(Listing.id).filter(Listing.id == listing_id).first():
            result.skipped_existing += 1
            continue
        seen.add(listing_id)

        for issue in issues:
            logger.warning(
                f"Data quality: {issue}",
                extra={"event": "malformed_timestamp", "listing_id": listing_id},
            )
            if len(result.data_quality_issues) < MAX_REPORTED_ISSUES:
                result.data_quality_issues.append(f"Listing {listing_id}: {issue}")

        result.imported += 1
        if dry_run:
            continue

        db.add(Listing(**columns))
        log_lifecycle_event(
            db,
            listing_id,
            LifecycleEventType.IMPORTED,
            initiated_by,
            user_id=columns.get("user_id"),
            event_metadata={"source": source, "path": doc.get("path"), "issues": issues},
        )
        pending += 1

        if pending >= batch_size:
            _commit_batch(db, result, pending)
            pending = 0

    if pending and not dry_run:
        _commit_batch(db, result, pending)

    result.success = len(result.errors) == 0

    logger.info(
        f"Legacy import {'(dry run) ' if dry_run else ''}complete: {result.documents_read} read, "
        f"{result.imported} imported, {result.skipped_existing} existing, {result.rejected} rejected, "
        f"{len(result.data_quality_issues)} data-quality issues"
    )
    return result


def _commit_batch(db: Session, result: LegacyImportResult, pending: int) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        result.imported -= pending
        result.errors.append(f"Batch of {pending} listings failed: {e}")
        logger.error(f"Legacy import batch failed: {e}")
