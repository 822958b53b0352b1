# app/auth.py
"""Shared authentication dependencies."""

import os
import secrets

from fastapi import Header, HTTPException


def require_admin_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> None:
    """Validate admin API key. Fails closed if ADMIN_API_KEY is not set."""
    expected_key = os.getenv("ADMIN_API_KEY")

    if not expected_key:
        raise HTTPException(
            status_code=500,
            detail="Server misconfiguration: admin authentication not configured",
        )

    if not x_api_key or not secrets.compare_digest(x_api_key, expected_key):
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing API key",
        )


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_cron_secret(
    x_cron_secret: str | None = Header(default=None, alias="X-Cron-Secret"),
    authorization: str | None = Header(default=None),
) -> None:
    """
    Validate the scheduler's credentials.

    Accepts `X-Cron-Secret: <CRON_SECRET>` or `Authorization: Bearer <token>`
    where the token is CRON_SECRET or ADMIN_API_KEY. Fails closed if neither
    secret is configured.
    """
    cron_secret = os.getenv("CRON_SECRET")
    admin_key = os.getenv("ADMIN_API_KEY")

    if not cron_secret and not admin_key:
        raise HTTPException(
            status_code=500,
            detail="Server misconfiguration: cron authentication not configured",
        )

    if x_cron_secret and cron_secret and secrets.compare_digest(x_cron_secret, cron_secret):
        return

    token = _bearer_token(authorization)
    if token:
        for expected in (cron_secret, admin_key):
            if expected and secrets.compare_digest(token, expected):
                return

    raise HTTPException(
        status_code=401,
        detail="Invalid or missing cron credentials",
    )
