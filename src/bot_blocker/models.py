"""Pydantic models for bot blocker settings, events and stats."""

import json
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

# Persisted table names
EVENTS_TABLE = "bot_blocker_logs"
SETTINGS_TABLE = "plugin_settings"

DEFAULT_ALLOWED_BOTS = ["googlebot", "bingbot", "yandexbot", "baiduspider"]


def normalize_block_enabled(value: Any) -> str:
    """Normalize a stored enable flag to exactly "0" or "1".

    Only the string "1" (surrounding whitespace ignored) reads as enabled.
    """
    if isinstance(value, str) and value.strip() == "1":
        return "1"
    return "0"


def coerce_block_enabled(value: Any) -> str:
    """Normalize an incoming enable flag before it is written."""
    if value is True or value == "true":
        return "1"
    if isinstance(value, int) and not isinstance(value, bool) and value == 1:
        return "1"
    return normalize_block_enabled(value)


def parse_allowed_bots(value: Any) -> list[str]:
    """Decode a stored allow-list, yielding [] for anything unusable."""
    if isinstance(value, (list, tuple)):
        items = list(value)
    elif isinstance(value, str):
        try:
            items = json.loads(value)
        except ValueError:
            return []
    else:
        return []

    if not isinstance(items, list):
        return []
    return [item.strip() for item in items if isinstance(item, str) and item.strip()]


class Settings(BaseModel):
    """Operator-configurable bot blocker settings."""

    block_enabled: str = "0"  # "0" or "1"
    allowed_bots: list[str] = Field(default_factory=list)

    @field_validator("block_enabled", mode="before")
    @classmethod
    def _normalize_enabled(cls, value: Any) -> str:
        return coerce_block_enabled(value)

    @field_validator("allowed_bots", mode="before")
    @classmethod
    def _normalize_allowed(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                if value.lstrip().startswith("["):
                    return []
                # Textarea input, one entry per line
                value = value.splitlines()
        return parse_allowed_bots(value)

    @property
    def is_enabled(self) -> bool:
        return self.block_enabled == "1"

    @classmethod
    def from_rows(cls, rows: list[dict]) -> "Settings":
        """Build settings from plugin_settings rows.

        Stored values are normalized strictly: only an exact "1" enables
        blocking, and a corrupt allow-list reads as empty.
        """
        stored = {
            row["setting_key"]: row.get("setting_value")
            for row in rows
            if row.get("setting_key")
        }
        return cls.model_construct(
            block_enabled=normalize_block_enabled(stored.get("block_enabled", "0")),
            allowed_bots=parse_allowed_bots(stored.get("allowed_bots")),
        )

    def to_rows(self) -> dict[str, str]:
        """Serialize to the key/value pairs written to plugin_settings."""
        return {
            "block_enabled": self.block_enabled,
            "allowed_bots": json.dumps(self.allowed_bots, ensure_ascii=False),
        }


class BlockEvent(BaseModel):
    """A single blocked request."""

    id: Optional[int] = None
    ip_address: str
    user_agent: str = ""
    url: str = "/"
    blocked_at: datetime
    created_at: datetime


class IPCount(BaseModel):
    """Block count for one source IP."""

    ip_address: str
    count: int = 0


class BlockStats(BaseModel):
    """Aggregate block statistics for the admin UI."""

    total_blocks: int = 0
    today_blocks: int = 0
    top_ips: list[IPCount] = Field(default_factory=list)
