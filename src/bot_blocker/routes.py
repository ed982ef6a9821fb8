"""
Admin API routes for the bot blocker.

JSON endpoints consumed by an admin UI: settings, stats, block logs.
Protected by the configured passkey (cookie session), open if none is set.
"""

import hashlib
import logging
import secrets
from datetime import date
from typing import Any

from fastapi import APIRouter, Body, Cookie, Form, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from .config import BotBlockerConfig, verify_passkey
from .events import EventStore
from .settings import SettingsStore

logger = logging.getLogger(__name__)

# Auth constants
AUTH_COOKIE_NAME = "bot_blocker_auth"
AUTH_COOKIE_MAX_AGE = 60 * 60 * 24 * 30  # 30 days

SETTINGS_KEYS = ("block_enabled", "allowed_bots")


def _session_token(config: BotBlockerConfig) -> str:
    """Cookie value for an authenticated admin, derived from the stored passkey."""
    return hashlib.sha256(f"{config.plugin_slug}:{config.passkey}".encode()).hexdigest()


def _verify_auth(auth_cookie: str | None, expected: str) -> bool:
    """Verify the auth cookie matches the expected token."""
    if not auth_cookie:
        return False
    return secrets.compare_digest(auth_cookie, expected)


def make_operator_check(config: BotBlockerConfig):
    """Build the middleware's is_operator callable from the admin cookie.

    Without a configured passkey nobody counts as an operator.
    """
    expected = _session_token(config) if config.has_auth else None

    def is_operator(request: Request) -> bool:
        if not expected:
            return False
        return _verify_auth(request.cookies.get(AUTH_COOKIE_NAME), expected)

    return is_operator


def create_admin_router(
    config: BotBlockerConfig,
    settings_store: SettingsStore,
    event_store: EventStore,
) -> APIRouter:
    """Create the admin router.

    Args:
        config: Bot blocker configuration
        settings_store: Store the settings endpoints read and write
        event_store: Store the stats and logs endpoints read
    """
    router = APIRouter(tags=["bot-blocker"])
    expected = _session_token(config) if config.has_auth else None

    def _require_auth(auth_cookie: str | None) -> None:
        if expected and not _verify_auth(auth_cookie, expected):
            raise HTTPException(status_code=401, detail="Unauthorized")

    # -------------------------------------------------------------------------
    # Auth Routes
    # -------------------------------------------------------------------------

    @router.post("/login")
    async def login(passkey: str = Form(...)):
        """Exchange the passkey for a session cookie."""
        if not config.passkey or not verify_passkey(config.passkey, passkey):
            logger.warning("Rejected bot blocker admin login")
            raise HTTPException(status_code=401, detail="Invalid passkey")

        response = JSONResponse({"success": True})
        response.set_cookie(
            AUTH_COOKIE_NAME,
            expected,
            max_age=AUTH_COOKIE_MAX_AGE,
            httponly=True,
            samesite="lax",
        )
        return response

    @router.get("/logout")
    async def logout():
        """Clear the auth cookie."""
        response = JSONResponse({"success": True})
        response.delete_cookie(AUTH_COOKIE_NAME)
        return response

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    @router.get("/settings")
    async def get_settings(auth: str | None = Cookie(None, alias=AUTH_COOKIE_NAME)):
        _require_auth(auth)
        settings = await settings_store.load()
        return settings.model_dump()

    @router.post("/settings")
    async def save_settings(
        payload: dict[str, Any] = Body(...),
        auth: str | None = Cookie(None, alias=AUTH_COOKIE_NAME),
    ):
        """Save settings. block_enabled is normalized to "0"/"1"."""
        _require_auth(auth)
        values = {key: payload[key] for key in SETTINGS_KEYS if key in payload}
        if not values:
            raise HTTPException(status_code=400, detail="No settings supplied")

        if not await settings_store.save(values):
            raise HTTPException(status_code=500, detail="Failed to save settings")

        settings = await settings_store.reload()
        return settings.model_dump()

    # -------------------------------------------------------------------------
    # Stats & Logs
    # -------------------------------------------------------------------------

    @router.get("/stats")
    async def get_stats(
        date_from: date | None = Query(None),
        date_to: date | None = Query(None),
        auth: str | None = Cookie(None, alias=AUTH_COOKIE_NAME),
    ):
        _require_auth(auth)
        if date_from and date_to and date_from > date_to:
            raise HTTPException(status_code=400, detail="date_from must not be after date_to")
        stats = await event_store.stats(date_from, date_to)
        return stats.model_dump()

    @router.get("/logs")
    async def get_logs(
        limit: int = Query(50, ge=1, le=500),
        auth: str | None = Cookie(None, alias=AUTH_COOKIE_NAME),
    ):
        _require_auth(auth)
        events = await event_store.recent(limit)
        return [event.model_dump(mode="json") for event in events]

    @router.post("/logs/clear")
    async def clear_logs(auth: str | None = Cookie(None, alias=AUTH_COOKIE_NAME)):
        _require_auth(auth)
        if not await event_store.clear():
            return JSONResponse({"success": False}, status_code=500)
        return {"success": True}

    return router
