"""
Timestamp normalization for lifecycle fields.

Listings reach the lifecycle from the ORM (datetimes, possibly naive when the
backend drops tzinfo) and from legacy document exports (ISO strings, epoch
numbers, exported Firestore timestamp maps). Everything is normalized to an
aware UTC datetime here so comparisons never mix naive and aware values.
"""

from datetime import date, datetime, time, timezone
from typing import Any

from app.services.lifecycle.errors import MalformedTimestampError

# Epoch values above this are milliseconds, not seconds (year 5138 in seconds)
_EPOCH_MILLIS_THRESHOLD = 1e11


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any, field_name: str = "timestamp", listing_id: str | None = None) -> datetime | None:
    """
    Normalize a stored timestamp to an aware UTC datetime.

    Accepts:
        None -> None
        datetime (naive values are taken to be UTC)
        date -> midnight UTC
        int/float epoch seconds or milliseconds
        ISO-8601 strings (trailing "Z" allowed)
        {"_seconds": ..., "_nanoseconds": ...} / {"seconds": ..., "nanos": ...}

    Raises:
        MalformedTimestampError: for anything else, including empty strings
        and values outside the representable range.
    """
    if value is None:
        return None

    try:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc)

        if isinstance(value, date):
            return datetime.combine(value, time.min, tzinfo=timezone.utc)

        if isinstance(value, bool):
            raise TypeError("boolean is not a timestamp")

        if isinstance(value, (int, float)):
            seconds = value / 1000 if abs(value) > _EPOCH_MILLIS_THRESHOLD else value
            return datetime.fromtimestamp(seconds, tz=timezone.utc)

        if isinstance(value, str):
            text = value.strip()
            if not text:
                raise ValueError("empty string")
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            return parse_timestamp(datetime.fromisoformat(text))

        if isinstance(value, dict):
            seconds = value.get("_seconds", value.get("seconds"))
            nanos = value.get("_nanoseconds", value.get("nanos", 0)) or 0
            if seconds is None:
                raise ValueError("timestamp map without seconds")
            return datetime.fromtimestamp(float(seconds) + float(nanos) / 1e9, tz=timezone.utc)

    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise MalformedTimestampError(field_name, value, listing_id=listing_id) from e

    raise MalformedTimestampError(field_name, value, listing_id=listing_id)


def isoformat(value: datetime | None) -> str | None:
    """Serialize an (already parsed) timestamp for diagnostics."""
    if value is None:
        return None
    return parse_timestamp(value).isoformat()
