"""
Built-in User-Agent pattern catalog.

Every pattern is a lowercase substring matched with `in` against the
lowercased User-Agent. Each one is tagged as blocking or not. Search engine
crawlers are catalogued but inert; most of them still trip the generic "bot"
rule, so letting them through is the allow-list's job.

Order matters. The classifier walks the catalog top to bottom and stops at
the first blocking rule that matches.
"""

from dataclasses import dataclass
from enum import Enum


class PatternCategory(str, Enum):
    """Categories of catalogued automated traffic."""

    SEARCH_ENGINE = "search_engine"      # Google, Bing, etc.
    SOCIAL_PREVIEW = "social_preview"    # Link preview fetchers
    LIBRARY = "library"                  # HTTP libraries and CLI tools
    GENERIC = "generic"                  # Generic bot vocabulary
    CRAWLER = "crawler"                  # Named crawlers and archivers


@dataclass(frozen=True)
class PatternRule:
    """
    A single catalog entry.

    Attributes:
        substring: Lowercase fragment searched for in the User-Agent
        blocks: Whether a match marks the request as a bot
        name: Human-readable name for logs
        category: Grouping for logs and the admin UI
    """
    substring: str
    blocks: bool
    name: str
    category: PatternCategory


# Generic token that needs browser exceptions (see classifier)
GENERIC_BOT_TOKEN = "bot"

# Tokens present in ordinary browser User-Agents
BROWSER_TOKENS = ("chrome", "firefox", "safari", "edge", "opera", "mobile")


# =============================================================================
# PATTERN DATABASE
# =============================================================================
# Each dict maps a lowercase pattern to a human-readable name.

SEARCH_ENGINE_BOTS = {
    "googlebot": "Google",
    "bingbot": "Bing",
    "yandexbot": "Yandex",
    "baiduspider": "Baidu",
}

SOCIAL_PREVIEW_BOTS = {
    "facebookexternalhit": "Facebook",
    "twitterbot": "Twitter",
    "linkedinbot": "LinkedIn",
    "whatsapp": "WhatsApp",
    "telegrambot": "Telegram",
}

GENERIC_BOTS = {
    "bot": "Generic Bot",
    "crawl": "Generic Crawler",
    "spider": "Generic Spider",
    "scrape": "Generic Scraper",
}

HTTP_LIBRARY_BOTS = {
    "curl": "cURL",
    "wget": "Wget",
    "python-requests": "Python Requests",
    "scraper": "Scraper",
}

NAMED_CRAWLER_BOTS = {
    "slurp": "Yahoo Slurp",
    "duckduckbot": "DuckDuckGo",
    "applebot": "Apple",
    "ia_archiver": "Alexa",
    "archive": "Archiver",
}


def _rules(patterns: dict[str, str], category: PatternCategory, blocks: bool) -> list[PatternRule]:
    return [
        PatternRule(substring=pattern, blocks=blocks, name=name, category=category)
        for pattern, name in patterns.items()
    ]


DEFAULT_CATALOG: tuple[PatternRule, ...] = tuple(
    _rules(SEARCH_ENGINE_BOTS, PatternCategory.SEARCH_ENGINE, blocks=False)
    + _rules(SOCIAL_PREVIEW_BOTS, PatternCategory.SOCIAL_PREVIEW, blocks=True)
    + _rules(GENERIC_BOTS, PatternCategory.GENERIC, blocks=True)
    + _rules(HTTP_LIBRARY_BOTS, PatternCategory.LIBRARY, blocks=True)
    + _rules(NAMED_CRAWLER_BOTS, PatternCategory.CRAWLER, blocks=True)
)


def blocking_rules(catalog: tuple[PatternRule, ...] = DEFAULT_CATALOG) -> list[PatternRule]:
    """Return only the rules that can mark a request as a bot."""
    return [rule for rule in catalog if rule.blocks]
