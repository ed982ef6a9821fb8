"""
Key-value settings storage for the bot blocker.

Settings live in the shared plugin_settings table, one row per key, scoped
by plugin slug. Reads go through a short-lived cache; every save drops the
cache so the next load sees the new values.
"""

import logging
import time
from typing import Any, Mapping, Optional, Union

from .database import D1Database, StoreError
from .models import DEFAULT_ALLOWED_BOTS, SETTINGS_TABLE, Settings

logger = logging.getLogger(__name__)

CREATE_SETTINGS_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS {SETTINGS_TABLE} (
    plugin_slug TEXT NOT NULL,
    setting_key TEXT NOT NULL,
    setting_value TEXT,
    PRIMARY KEY (plugin_slug, setting_key)
)
"""

UPSERT_SQL = f"""
INSERT INTO {SETTINGS_TABLE} (plugin_slug, setting_key, setting_value)
VALUES (?, ?, ?)
ON CONFLICT (plugin_slug, setting_key) DO UPDATE SET setting_value = excluded.setting_value
"""

INSERT_IF_MISSING_SQL = f"""
INSERT INTO {SETTINGS_TABLE} (plugin_slug, setting_key, setting_value)
VALUES (?, ?, ?)
ON CONFLICT (plugin_slug, setting_key) DO NOTHING
"""


class SettingsStore:
    """Loads and saves bot blocker settings for one plugin slug."""

    def __init__(
        self,
        db: D1Database,
        plugin_slug: str = "bot-blocker",
        cache_ttl_seconds: int = 60,
    ):
        self.db = db
        self.plugin_slug = plugin_slug
        self.cache_ttl_seconds = cache_ttl_seconds
        self._cached: Optional[Settings] = None
        self._cached_at = 0.0
        self._table_ready = False

    async def _ensure_table(self) -> None:
        if self._table_ready:
            return
        await self.db.execute(CREATE_SETTINGS_TABLE_SQL)
        self._table_ready = True

    def invalidate(self) -> None:
        """Drop the cached settings so the next load hits the database."""
        self._cached = None
        self._cached_at = 0.0

    async def load(self) -> Settings:
        """Return current settings, falling back to defaults on store errors.

        The defaults have blocking disabled, so an unreachable store never
        blocks traffic.
        """
        now = time.monotonic()
        if self._cached is not None and now - self._cached_at < self.cache_ttl_seconds:
            return self._cached

        try:
            await self._ensure_table()
            rows = await self.db.query(
                f"SELECT setting_key, setting_value FROM {SETTINGS_TABLE} "
                "WHERE plugin_slug = ? ORDER BY setting_key",
                [self.plugin_slug],
            )
        except StoreError as e:
            logger.warning(f"Failed to load settings for {self.plugin_slug}: {e}")
            return Settings()

        settings = Settings.from_rows(rows)
        self._cached = settings
        self._cached_at = now
        return settings

    async def reload(self) -> Settings:
        """Invalidate the cache and load fresh settings."""
        self.invalidate()
        return await self.load()

    async def save(self, settings: Union[Settings, Mapping[str, Any]]) -> bool:
        """Upsert each settings key independently.

        A failing key is logged and skipped; keys already written stay
        written. Returns True only if every key was stored.

        Args:
            settings: Settings model or a mapping with block_enabled and/or
                allowed_bots (raw values are normalized first)
        """
        if isinstance(settings, Settings):
            rows = settings.to_rows()
        else:
            # Only write the keys the caller supplied
            parsed = Settings.model_validate(dict(settings))
            rows = {key: value for key, value in parsed.to_rows().items() if key in settings}

        try:
            await self._ensure_table()
        except StoreError as e:
            logger.error(f"Failed to save settings for {self.plugin_slug}: {e}")
            return False

        ok = True
        for key, value in rows.items():
            try:
                await self.db.execute(UPSERT_SQL, [self.plugin_slug, key, value])
            except StoreError as e:
                logger.error(f"Failed to save setting {self.plugin_slug}.{key}: {e}")
                ok = False

        self.invalidate()
        if ok:
            logger.info(f"Saved settings for {self.plugin_slug}: {sorted(rows)}")
        return ok

    async def install_defaults(self) -> None:
        """Seed first-install defaults without touching existing keys."""
        defaults = Settings(block_enabled="1", allowed_bots=DEFAULT_ALLOWED_BOTS)
        await self._ensure_table()
        for key, value in defaults.to_rows().items():
            await self.db.execute(INSERT_IF_MISSING_SQL, [self.plugin_slug, key, value])
        self.invalidate()
