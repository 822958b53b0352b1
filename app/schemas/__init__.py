# app/schemas/__init__.py
"""
Pydantic schemas for API request/response validation.
"""

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

__all__ = [
    "PolicyResponse",
    "LifecycleStatusResponse",
    "SweepRequest",
    "SweepResponse",
    "TierResponse",
    "ListingFixResponse",
    "UserRestoreResponse",
    "TierReconciliationResponse",
    "OrphanCleanupResponse",
]
