"""In-memory guard against logging the same blocked request twice."""

import hashlib
import time
from collections import OrderedDict
from threading import Lock
from typing import Optional

DEFAULT_TTL_SEC = 60
DEFAULT_MAX_ENTRIES = 10_000


class DedupGuard:
    """Remembers recently handled (ip, user agent, url) triples.

    Bounded and time-expiring. Thread-safe: the check and the insert happen
    under one lock, so two concurrent identical requests cannot both pass.
    Only covers one process.
    """

    def __init__(self, ttl_sec: int = DEFAULT_TTL_SEC, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.ttl_sec = ttl_sec
        self.max_entries = max_entries
        self._seen: "OrderedDict[str, float]" = OrderedDict()
        self._lock = Lock()

    @staticmethod
    def make_key(ip: Optional[str], user_agent: str, url: Optional[str]) -> str:
        ip_value = ip or "0.0.0.0"
        url_value = url or "/"
        return hashlib.md5(f"{ip_value}|{user_agent}|{url_value}".encode()).hexdigest()

    def _cleanup(self, now: float) -> None:
        """Remove expired keys (oldest first)."""
        cutoff = now - self.ttl_sec
        while self._seen:
            _, seen_at = next(iter(self._seen.items()))
            if seen_at > cutoff:
                break
            self._seen.popitem(last=False)

    def should_process(self, ip: Optional[str], user_agent: str, url: Optional[str]) -> bool:
        """True only the first time a key is seen within the TTL."""
        key = self.make_key(ip, user_agent or "", url)
        now = time.monotonic()

        with self._lock:
            self._cleanup(now)
            if key in self._seen:
                return False
            self._seen[key] = now
            while len(self._seen) > self.max_entries:
                self._seen.popitem(last=False)
            return True

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)
