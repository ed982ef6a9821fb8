"""
Configuration for the bot blocker.
"""
import hashlib
import logging
import os
import secrets
import warnings
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Passkey security constants
MIN_PASSKEY_LENGTH = 16
PASSKEY_ITERATIONS = 100_000


class PasskeyTooShortError(ValueError):
    """Raised when a passkey doesn't meet minimum length requirements."""
    pass


def validate_passkey_strength(passkey: str) -> None:
    """Validate passkey meets security requirements.

    Raises:
        PasskeyTooShortError: If passkey is shorter than MIN_PASSKEY_LENGTH
    """
    if len(passkey) < MIN_PASSKEY_LENGTH:
        raise PasskeyTooShortError(
            f"Passkey must be at least {MIN_PASSKEY_LENGTH} characters. "
            f"Got {len(passkey)} characters."
        )


def hash_passkey(passkey: str, validate: bool = True) -> str:
    """Hash an admin passkey using PBKDF2-SHA256.

    Returns a string in format: pbkdf2:iterations:salt_hex:hash_hex

    Generate the value for the config once:

        from bot_blocker.config import hash_passkey
        print(hash_passkey("your-secret-passkey"))

    Raises:
        PasskeyTooShortError: If validate=True and passkey is too short
    """
    if validate:
        validate_passkey_strength(passkey)

    salt = os.urandom(16)
    dk = hashlib.pbkdf2_hmac("sha256", passkey.encode(), salt, PASSKEY_ITERATIONS)
    return f"pbkdf2:{PASSKEY_ITERATIONS}:{salt.hex()}:{dk.hex()}"


def verify_passkey(stored: str, provided: str) -> bool:
    """Verify a passkey using timing-safe comparison.

    Handles both hashed (pbkdf2:...) and plaintext passkeys.
    """
    if stored.startswith("pbkdf2:"):
        try:
            _, iterations_str, salt_hex, hash_hex = stored.split(":")
            iterations = int(iterations_str)
            salt = bytes.fromhex(salt_hex)
            expected_hash = bytes.fromhex(hash_hex)

            dk = hashlib.pbkdf2_hmac("sha256", provided.encode(), salt, iterations)
            return secrets.compare_digest(dk, expected_hash)
        except (ValueError, TypeError):
            return False
    else:
        return secrets.compare_digest(stored.encode(), provided.encode())


@dataclass
class BotBlockerConfig:
    """Configuration for a single bot blocker instance."""

    # Required (Cloudflare D1 backing store)
    d1_database_id: str
    cf_account_id: str
    cf_api_token: str

    # Settings scope in the plugin_settings table
    plugin_slug: str = "bot-blocker"

    # IANA timezone for block timestamps; None means the process local zone
    timezone: str | None = None

    # Optional admin authentication
    passkey: str | None = None

    # Request routing
    admin_prefix: str = "/admin"
    api_prefix: str = "/api"
    trust_forwarded_for: bool = False  # Only behind a proxy you control

    # Dedup guard
    dedup_ttl_seconds: int = 60
    dedup_max_entries: int = 10_000

    # Performance
    cache_ttl_seconds: int = 60  # Settings read-through cache
    query_timeout_seconds: float = 30.0

    @property
    def has_auth(self) -> bool:
        """Check if admin authentication is configured."""
        return bool(self.passkey)

    @property
    def is_passkey_hashed(self) -> bool:
        """Check if the passkey is properly hashed."""
        return bool(self.passkey and self.passkey.startswith("pbkdf2:"))

    def __post_init__(self):
        self._validate_passkey()

    def _validate_passkey(self) -> None:
        """Warn about plaintext or short passkeys."""
        if not self.passkey:
            return

        if self.is_passkey_hashed:
            logger.debug(f"Bot blocker {self.plugin_slug}: Using hashed passkey")
            return

        warnings.warn(
            f"Bot blocker {self.plugin_slug}: Using plaintext passkey is deprecated. "
            f"Use hash_passkey() to generate a hashed passkey:\n"
            f"  from bot_blocker.config import hash_passkey\n"
            f"  print(hash_passkey('your-passkey'))",
            DeprecationWarning,
            stacklevel=3
        )
        if len(self.passkey) < MIN_PASSKEY_LENGTH:
            logger.warning(
                f"Bot blocker {self.plugin_slug}: Passkey is shorter than "
                f"recommended {MIN_PASSKEY_LENGTH} characters"
            )
