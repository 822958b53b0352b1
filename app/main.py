# app/main.py

from __future__ import annotations

from fastapi import FastAPI

from app.config import get_settings
from app.logging_config import configure_logging
from app.routers import admin_lifecycle_router, cron_router

VERSION = "1.0.0"

settings = get_settings()
configure_logging(json_format=settings.LOG_JSON, level=settings.LOG_LEVEL)

app = FastAPI(title="Waboku Listing Lifecycle", version=VERSION)

# Scheduler entry points (archive-expired, cleanup-archived, cleanup-related-data)
app.include_router(cron_router)

# Operator endpoints under /v1/admin/lifecycle
app.include_router(admin_lifecycle_router)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get("/health")
def health() -> dict:
    return {"status": "ok", "service": "waboku-lifecycle", "version": VERSION}


@app.get("/")
def root() -> dict:
    return {
        "service": "Waboku Listing Lifecycle",
        "environment": settings.ENVIRONMENT,
        "endpoints": [
            "/v1/cron/archive-expired",
            "/v1/cron/cleanup-archived",
            "/v1/cron/cleanup-related-data",
            "/v1/admin/lifecycle",
        ],
    }
