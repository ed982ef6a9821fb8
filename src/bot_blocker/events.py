"""
Append-only log of blocked requests and the stats built from it.

Timestamps are written as naive "YYYY-MM-DD HH:MM:SS" strings in the
configured timezone, so date() in SQL gives the local calendar day.
"""

import logging
from datetime import date, datetime, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .database import D1Database, StoreError
from .models import EVENTS_TABLE, BlockEvent, BlockStats, IPCount

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
TOP_IPS_LIMIT = 10

CREATE_EVENTS_SQL = [
    f"""
    CREATE TABLE IF NOT EXISTS {EVENTS_TABLE} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        ip_address TEXT NOT NULL,
        user_agent TEXT,
        url TEXT,
        blocked_at TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    f"CREATE INDEX IF NOT EXISTS idx_{EVENTS_TABLE}_blocked_at ON {EVENTS_TABLE} (blocked_at)",
    f"CREATE INDEX IF NOT EXISTS idx_{EVENTS_TABLE}_ip_address ON {EVENTS_TABLE} (ip_address)",
]


def resolve_timezone(name: Optional[str]) -> Optional[tzinfo]:
    """Resolve an IANA timezone name.

    Returns None for the process local zone, which EventStore.now() looks up
    on every call.
    """
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone '{name}', using local time")
    return None


class EventStore:
    """Stores BlockEvents in D1 and answers stats queries."""

    def __init__(self, db: D1Database, timezone: Optional[str] = None):
        self.db = db
        self.tz = resolve_timezone(timezone)
        self._table_ready = False

    def now(self) -> datetime:
        """Current time in the configured timezone, to the second."""
        if self.tz is None:
            return datetime.now().astimezone().replace(microsecond=0)
        return datetime.now(self.tz).replace(microsecond=0)

    def today(self) -> date:
        return self.now().date()

    async def ensure_table(self) -> bool:
        """Create the log table and indexes if missing. Never destructive."""
        if self._table_ready:
            return True
        try:
            for sql in CREATE_EVENTS_SQL:
                await self.db.execute(sql)
        except StoreError as e:
            logger.error(f"Failed to create {EVENTS_TABLE}: {e}")
            return False
        self._table_ready = True
        return True

    async def append(self, event: BlockEvent) -> bool:
        """Persist one event. Failures are logged and reported, never raised."""
        if not await self.ensure_table():
            return False
        try:
            await self.db.execute(
                f"""
                INSERT INTO {EVENTS_TABLE} (ip_address, user_agent, url, blocked_at, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    event.ip_address,
                    event.user_agent,
                    event.url,
                    event.blocked_at.strftime(TIMESTAMP_FORMAT),
                    event.created_at.strftime(TIMESTAMP_FORMAT),
                ],
            )
        except StoreError as e:
            logger.error(f"Failed to log blocked request from {event.ip_address}: {e}")
            return False
        return True

    async def record(self, ip: str, user_agent: str, url: str) -> bool:
        """Append an event stamped with the current time."""
        now = self.now()
        event = BlockEvent(
            ip_address=ip,
            user_agent=user_agent,
            url=url,
            blocked_at=now,
            created_at=now,
        )
        return await self.append(event)

    async def stats(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> BlockStats:
        """
        Aggregate block statistics.

        Args:
            date_from: Start of the range for total_blocks (inclusive)
            date_to: End of the range for total_blocks (inclusive).
                The range only applies when both ends are given.

        Returns:
            BlockStats; empty stats if the store is unavailable
        """
        if not await self.ensure_table():
            return BlockStats()

        try:
            if date_from and date_to:
                total = await self.db.scalar(
                    f"SELECT COUNT(*) AS total_blocks FROM {EVENTS_TABLE} "
                    "WHERE date(blocked_at) BETWEEN ? AND ?",
                    [date_from.isoformat(), date_to.isoformat()],
                )
            else:
                total = await self.db.scalar(
                    f"SELECT COUNT(*) AS total_blocks FROM {EVENTS_TABLE}"
                )

            today_blocks = await self.db.scalar(
                f"SELECT COUNT(*) AS today_blocks FROM {EVENTS_TABLE} WHERE date(blocked_at) = ?",
                [self.today().isoformat()],
            )

            top_ips = await self.db.query(
                f"""
                SELECT ip_address, COUNT(*) AS count
                FROM {EVENTS_TABLE}
                GROUP BY ip_address
                ORDER BY count DESC, ip_address ASC
                LIMIT {TOP_IPS_LIMIT}
                """
            )
        except StoreError as e:
            logger.error(f"Failed to load block stats: {e}")
            return BlockStats()

        return BlockStats(
            total_blocks=int(total or 0),
            today_blocks=int(today_blocks or 0),
            top_ips=[
                IPCount(ip_address=row["ip_address"], count=row.get("count") or 0)
                for row in top_ips
            ],
        )

    async def recent(self, limit: int = 50) -> list[BlockEvent]:
        """Most recent events first."""
        if not await self.ensure_table():
            return []
        try:
            rows = await self.db.query(
                f"""
                SELECT id, ip_address, user_agent, url, blocked_at, created_at
                FROM {EVENTS_TABLE}
                ORDER BY blocked_at DESC, id DESC
                LIMIT ?
                """,
                [limit],
            )
        except StoreError as e:
            logger.error(f"Failed to load recent blocks: {e}")
            return []

        events = []
        for row in rows:
            try:
                blocked_at = datetime.strptime(row["blocked_at"], TIMESTAMP_FORMAT)
                created_at = datetime.strptime(row["created_at"], TIMESTAMP_FORMAT)
            except (TypeError, ValueError):
                logger.warning(f"Skipping block log row {row.get('id')} with unreadable timestamp")
                continue
            events.append(BlockEvent(
                id=row.get("id"),
                ip_address=row["ip_address"],
                user_agent=row.get("user_agent") or "",
                url=row.get("url") or "",
                blocked_at=blocked_at,
                created_at=created_at,
            ))
        return events

    async def clear(self) -> bool:
        """Delete every logged event. Irreversible."""
        if not await self.ensure_table():
            return False
        try:
            await self.db.execute(f"DELETE FROM {EVENTS_TABLE}")
        except StoreError as e:
            logger.error(f"Failed to clear {EVENTS_TABLE}: {e}")
            return False
        logger.info(f"Cleared {EVENTS_TABLE}")
        return True
