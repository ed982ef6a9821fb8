"""
User-Agent bot blocking for FastAPI apps.

Usage:
    from bot_blocker import setup_bot_blocker

    blocker = setup_bot_blocker(
        d1_database_id="your-d1-id",
        cf_account_id="your-account-id",
        cf_api_token="your-api-token",
        timezone="Europe/Kyiv",
        passkey="pbkdf2:...",
    )

    # Block bots before they reach your routes
    blocker.install(app)

    # Admin JSON API (settings, stats, logs)
    app.include_router(blocker.admin_router, prefix="/admin/bot-blocker")

    # Once, on first deploy
    await blocker.install_defaults()
"""

from typing import Optional

import httpx

from .classifier import BotClassifier, Verdict
from .config import BotBlockerConfig, hash_passkey
from .database import D1Database, StoreError, StoreUnavailable
from .dedup import DedupGuard
from .events import EventStore
from .gate import GateDecision, RequestGate, RequestLatch
from .middleware import BotBlockerMiddleware
from .models import BlockEvent, BlockStats, Settings
from .routes import create_admin_router, make_operator_check
from .settings import SettingsStore

__version__ = "0.1.0"
__all__ = [
    "setup_bot_blocker", "BotBlocker", "BotBlockerConfig", "hash_passkey",
    "BotClassifier", "Verdict", "RequestGate", "RequestLatch", "GateDecision",
    "DedupGuard", "EventStore", "SettingsStore", "D1Database",
    "StoreError", "StoreUnavailable", "BotBlockerMiddleware",
    "BlockEvent", "BlockStats", "Settings",
]


class BotBlocker:
    """Wires stores, gate, middleware and admin routes for one app."""

    def __init__(
        self,
        config: BotBlockerConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.db = D1Database(
            d1_database_id=config.d1_database_id,
            cf_account_id=config.cf_account_id,
            cf_api_token=config.cf_api_token,
            timeout=config.query_timeout_seconds,
            transport=transport,
        )
        self.settings_store = SettingsStore(
            self.db,
            plugin_slug=config.plugin_slug,
            cache_ttl_seconds=config.cache_ttl_seconds,
        )
        self.event_store = EventStore(self.db, timezone=config.timezone)
        self.dedup = DedupGuard(
            ttl_sec=config.dedup_ttl_seconds,
            max_entries=config.dedup_max_entries,
        )
        self.gate = RequestGate(
            self.settings_store,
            self.event_store,
            dedup=self.dedup,
            admin_prefix=config.admin_prefix,
            api_prefix=config.api_prefix,
        )
        self.is_operator = make_operator_check(config)
        self.admin_router = create_admin_router(config, self.settings_store, self.event_store)

    def install(self, app) -> None:
        """Add the blocking middleware to a FastAPI/Starlette app."""
        app.add_middleware(
            BotBlockerMiddleware,
            gate=self.gate,
            is_operator=self.is_operator,
            trust_forwarded_for=self.config.trust_forwarded_for,
        )

    async def install_defaults(self) -> None:
        """Create tables and seed default settings where none exist."""
        await self.event_store.ensure_table()
        await self.settings_store.install_defaults()


def setup_bot_blocker(
    d1_database_id: str,
    cf_account_id: str,
    cf_api_token: str,
    timezone: str | None = None,
    passkey: str | None = None,
    **options,
) -> BotBlocker:
    """
    Set up bot blocking for an app.

    Args:
        d1_database_id: Cloudflare D1 database ID
        cf_account_id: Cloudflare account ID
        cf_api_token: Cloudflare API token with D1 read/write access
        timezone: IANA timezone for block timestamps (default: local time)
        passkey: Optional admin passkey (preferably from hash_passkey())
        **options: Any other BotBlockerConfig field

    Returns:
        BotBlocker with install(), admin_router and install_defaults()
    """
    config = BotBlockerConfig(
        d1_database_id=d1_database_id,
        cf_account_id=cf_account_id,
        cf_api_token=cf_api_token,
        timezone=timezone,
        passkey=passkey,
        **options,
    )
    return BotBlocker(config)
