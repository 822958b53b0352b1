"""
Error taxonomy for the listing lifecycle.

None of these abort a sweep: they are attributed to a single listing and
surfaced in the sweep's aggregate error list.
"""


class LifecycleError(Exception):
    """Base class for lifecycle errors."""

    kind = "lifecycle_error"

    def __init__(self, message: str, listing_id: str | None = None):
        super().__init__(message)
        self.listing_id = listing_id


class ListingNotFoundError(LifecycleError):
    """Listing is missing. Benign inside sweeps (a concurrent run removed it)."""

    kind = "not_found"


class MalformedTimestampError(LifecycleError):
    """A timestamp field could not be parsed. Callers assume the listing expired."""

    kind = "malformed_timestamp"

    def __init__(self, field_name: str, value: object, listing_id: str | None = None):
        super().__init__(f"Unparseable {field_name}: {value!r}", listing_id=listing_id)
        self.field_name = field_name
        self.value = value


class BatchWriteError(LifecycleError):
    """A listing's write failed after retries. Collected per item."""

    kind = "batch_write_failure"


class CascadeError(LifecycleError):
    """Favorite cleanup failed after the listing itself was deleted."""

    kind = "cascade_failure"

    def __init__(self, message: str, listing_id: str | None = None, failed_batches: int = 0):
        super().__init__(message, listing_id=listing_id)
        self.failed_batches = failed_batches
