"""
Per-request bot blocking decision.

RequestGate ties the pieces together: bypass rules, the settings snapshot,
classification, deduplicated logging. It never raises; any internal fault
lets the request through.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .classifier import BotClassifier
from .dedup import DedupGuard
from .events import EventStore
from .settings import SettingsStore

logger = logging.getLogger(__name__)

STATIC_FILE_REGEX = re.compile(r"\.(ico|png|jpg|jpeg|gif|css|js|woff|woff2|ttf|svg)$", re.IGNORECASE)


class GateDecision(str, Enum):
    CONTINUE = "continue"
    BLOCKED = "blocked"


@dataclass
class RequestLatch:
    """Per-request marker so the gate classifies each request at most once."""

    checked: bool = False
    decision: GateDecision = GateDecision.CONTINUE

    def set(self, decision: GateDecision) -> GateDecision:
        self.checked = True
        self.decision = decision
        return decision


class RequestGate:
    """Decides whether one inbound request continues or is blocked."""

    def __init__(
        self,
        settings_store: SettingsStore,
        event_store: EventStore,
        dedup: Optional[DedupGuard] = None,
        admin_prefix: str = "/admin",
        api_prefix: str = "/api",
    ):
        self.settings_store = settings_store
        self.event_store = event_store
        self.dedup = dedup if dedup is not None else DedupGuard()
        self.admin_prefix = admin_prefix
        self.api_prefix = api_prefix

    def is_bypassed(self, path: str) -> bool:
        """Admin, API, well-known and static asset paths are never checked."""
        path = path.split("?", 1)[0] or "/"
        return (
            path.startswith(self.admin_prefix)
            or path.startswith(self.api_prefix)
            or path == "/favicon.ico"
            or path.startswith("/robots.txt")
            or path.startswith("/sitemap")
            or bool(STATIC_FILE_REGEX.search(path))
        )

    async def handle(
        self,
        path: str,
        user_agent: Optional[str],
        ip: Optional[str],
        is_operator: bool = False,
        latch: Optional[RequestLatch] = None,
    ) -> GateDecision:
        """
        Run the bot check for one request.

        Args:
            path: Request path (query string allowed)
            user_agent: User-Agent header, empty if missing
            ip: Client address
            is_operator: Request comes from a logged-in admin
            latch: Per-request latch; repeat calls with the same latch
                return the first decision without re-checking

        Returns:
            GateDecision.BLOCKED if the caller must answer with the 403 page
        """
        latch = latch or RequestLatch()
        if latch.checked:
            return latch.decision

        try:
            if self.is_bypassed(path):
                logger.debug(f"Bypassing bot check for {path}")
                return latch.set(GateDecision.CONTINUE)

            if is_operator:
                return latch.set(GateDecision.CONTINUE)

            settings = await self.settings_store.load()
            verdict = BotClassifier(settings).detect(user_agent or "", ip)
            if not verdict:
                return latch.set(GateDecision.CONTINUE)

            latch.set(GateDecision.BLOCKED)
            await self._log_block(user_agent or "", ip, path, verdict.pattern or verdict.reason)
            return GateDecision.BLOCKED
        except Exception:
            logger.exception(f"Bot check failed for {path}, letting request through")
            return latch.set(GateDecision.CONTINUE)

    async def _log_block(self, user_agent: str, ip: Optional[str], path: str, why: str) -> None:
        if not self.dedup.should_process(ip, user_agent, path):
            logger.debug(f"Duplicate block for {ip} {path}, not logging again")
            return

        logger.info(f"Blocked bot ({why}) | IP: {ip} | UA: {user_agent} | Path: {path}")
        try:
            await self.event_store.record(ip or "0.0.0.0", user_agent, path or "/")
        except Exception:
            # The 403 still goes out
            logger.exception(f"Failed to record block for {ip}")
