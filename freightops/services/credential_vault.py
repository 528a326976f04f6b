"""
Session-scoped credential vault

Holds the username/password captured at interactive login so expired
carrier tokens can be refreshed silently. Contents live in process memory
only and are never persisted; ending the session destroys them.

Entries are namespaced per carrier identity:
    logistics:credentials:<identity>
    logistics:session-active

No operation raises. Missing or unreadable entries read as None.
"""
import logging
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Optional

from freightops.core.config import settings
from freightops.models.carrier import normalize_carrier
from freightops.services.encryption import (
    decrypt_secret,
    encrypt_secret,
    mask_username,
)

logger = logging.getLogger(__name__)

CREDENTIALS_KEY_PREFIX = "logistics:credentials:"
SESSION_ACTIVE_KEY = "logistics:session-active"


@dataclass(frozen=True)
class Credentials:
    """Cached login for one carrier."""
    username: str
    password: str
    carrier: str

    def __repr__(self) -> str:
        return f"Credentials(carrier={self.carrier!r}, username={mask_username(self.username)!r})"


class CredentialVault:
    """
    In-memory credential cache plus the session-activity flag.

    Args:
        encrypt_at_rest: Hold passwords Fernet-encrypted in memory.
            Defaults to CREDENTIAL_VAULT_ENCRYPTION.
    """

    def __init__(self, encrypt_at_rest: Optional[bool] = None):
        if encrypt_at_rest is None:
            encrypt_at_rest = settings.CREDENTIAL_VAULT_ENCRYPTION
        self.encrypt_at_rest = encrypt_at_rest
        self._entries: Dict[str, object] = {}
        self._lock = Lock()

    @staticmethod
    def _key(carrier: str) -> str:
        return f"{CREDENTIALS_KEY_PREFIX}{normalize_carrier(carrier)}"

    def set_credentials(self, carrier: str, username: str, password: str) -> None:
        """
        Cache a login for a carrier and mark the session active.

        Args:
            carrier: Raw carrier name (aliases resolved)
            username: Carrier login
            password: Carrier password
        """
        identity = normalize_carrier(carrier)
        stored_password = password
        if self.encrypt_at_rest:
            try:
                stored_password = encrypt_secret(password)
            except ValueError:
                logger.error(f"[VAULT] Could not encrypt credentials for {identity}, not cached")
                return

        with self._lock:
            self._entries[self._key(identity)] = {
                "username": username,
                "password": stored_password,
                "carrier": identity,
            }
            self._entries[SESSION_ACTIVE_KEY] = True

        logger.info(f"[VAULT] Credentials cached for {identity} ({mask_username(username)})")

    def get_credentials(self, carrier: str) -> Optional[Credentials]:
        """Return the cached login for a carrier, or None."""
        with self._lock:
            entry = self._entries.get(self._key(carrier))

        if not entry:
            return None

        password = entry["password"]
        if self.encrypt_at_rest:
            try:
                password = decrypt_secret(password)
            except ValueError:
                logger.warning(f"[VAULT] Unreadable credentials for {entry['carrier']}, ignoring")
                return None

        return Credentials(
            username=entry["username"],
            password=password,
            carrier=entry["carrier"],
        )

    def clear_credentials(self, carrier: str) -> None:
        with self._lock:
            removed = self._entries.pop(self._key(carrier), None)
        if removed:
            logger.info(f"[VAULT] Credentials cleared for {normalize_carrier(carrier)}")

    def clear_all(self) -> None:
        """Drop every cached login. The session flag is left as is."""
        with self._lock:
            for key in [k for k in self._entries if k.startswith(CREDENTIALS_KEY_PREFIX)]:
                del self._entries[key]
        logger.info("[VAULT] All credentials cleared")

    def is_session_active(self) -> bool:
        with self._lock:
            return bool(self._entries.get(SESSION_ACTIVE_KEY, False))

    def mark_session_active(self) -> None:
        with self._lock:
            self._entries[SESSION_ACTIVE_KEY] = True

    def end_session(self) -> None:
        """Full logout: forget every credential and the session flag."""
        with self._lock:
            self._entries.clear()
        logger.info("[VAULT] Session ended")
