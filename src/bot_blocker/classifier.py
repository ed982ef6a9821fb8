"""
User-Agent classification.

Decides whether a request comes from automated traffic using the built-in
pattern catalog and the operator's allow-list. The classifier is a pure
function of a settings snapshot and its inputs: build a new one (or call
SettingsStore.reload()) to pick up changed settings.

Decision order:
1. Blocking disabled: never a bot
2. Loopback source address: never a bot
3. Empty User-Agent: bot (real browsers always send one)
4. Allow-listed User-Agent: never a bot
5. First matching blocking catalog rule: bot
"""

from dataclasses import dataclass
from typing import Optional

from .models import Settings
from .patterns import (
    BROWSER_TOKENS,
    DEFAULT_CATALOG,
    GENERIC_BOT_TOKEN,
    PatternRule,
    blocking_rules,
)

# Not operator-configurable. "localhost" never equals a raw socket address;
# it only matches when a host passes a resolved name through.
WHITELISTED_IPS = frozenset({"127.0.0.1", "::1", "localhost"})


@dataclass(frozen=True)
class Verdict:
    """
    Outcome of classifying one request.

    Attributes:
        is_bot: Whether the request should be blocked
        reason: Short machine-readable reason (for logs)
        pattern: Catalog substring that matched, if any
    """
    is_bot: bool
    reason: str
    pattern: Optional[str] = None

    def __bool__(self) -> bool:
        return self.is_bot


class BotClassifier:
    """Classifies requests against the catalog and an allow-list."""

    def __init__(
        self,
        settings: Settings,
        catalog: tuple[PatternRule, ...] = DEFAULT_CATALOG,
    ):
        self.enabled = settings.is_enabled
        self.allowed = [
            entry.strip().lower()
            for entry in settings.allowed_bots
            if entry and entry.strip()
        ]
        self.rules = blocking_rules(catalog)

    def _is_allowed(self, ua_lower: str) -> bool:
        return any(entry in ua_lower for entry in self.allowed)

    def _shadowed_by_allow_list(self, pattern: str) -> bool:
        # Keeps e.g. a "googlebot" entry from being overridden by a shorter
        # catalog fragment it contains.
        return any(pattern in entry for entry in self.allowed)

    def _matches_generic_bot(self, ua_lower: str) -> bool:
        if GENERIC_BOT_TOKEN not in ua_lower:
            return False
        return not any(token in ua_lower for token in BROWSER_TOKENS)

    def detect(self, user_agent: Optional[str], ip: Optional[str] = None) -> Verdict:
        """
        Classify a request and explain why.

        Args:
            user_agent: The User-Agent header (may be empty)
            ip: Source address of the request

        Returns:
            Verdict with is_bot, reason, and matched pattern

        Examples:
            >>> BotClassifier(Settings(block_enabled="1")).detect("curl/8.0", "10.0.0.1")
            Verdict(is_bot=True, reason='pattern', pattern='curl')
        """
        if not self.enabled:
            return Verdict(is_bot=False, reason="disabled")

        if ip and ip in WHITELISTED_IPS:
            return Verdict(is_bot=False, reason="whitelisted_ip")

        if not user_agent:
            return Verdict(is_bot=True, reason="empty_user_agent")

        ua_lower = user_agent.lower()

        if self._is_allowed(ua_lower):
            return Verdict(is_bot=False, reason="allowed")

        for rule in self.rules:
            if rule.substring == GENERIC_BOT_TOKEN:
                if self._matches_generic_bot(ua_lower) and not self._is_allowed(ua_lower):
                    return Verdict(is_bot=True, reason="pattern", pattern=rule.substring)
            elif rule.substring in ua_lower:
                if not self._shadowed_by_allow_list(rule.substring):
                    return Verdict(is_bot=True, reason="pattern", pattern=rule.substring)

        return Verdict(is_bot=False, reason="no_match")

    def is_bot(self, user_agent: Optional[str], ip: Optional[str] = None) -> bool:
        """Quick boolean check, see detect()."""
        return self.detect(user_agent, ip).is_bot
