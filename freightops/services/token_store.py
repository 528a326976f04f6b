"""
Persisted carrier token store

One JSON blob holds a slot per raw carrier name:

    {"estes": TokenRecord|null, "xpo": TokenRecord|null, "expo": TokenRecord|null}

xpo and expo are kept in sync so either spelling reads the latest token.
Unknown carriers are not stored.

No operation raises. Absence is None (get) or True (is_expired); I/O
failures are logged and the store keeps working from memory.

Writes persist synchronously while holding a threading lock, including when
reached from the async refresh path. The blob is a few hundred bytes, so the
blocking write is short; keep TOKEN_STORE_PATH on local disk.
"""
import json
import logging
import os
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, Optional, Union

from freightops.core.config import settings
from freightops.models.carrier import (
    PERSISTED_SLOTS,
    CarrierCode,
    normalize_carrier,
)
from freightops.services.credential_vault import CredentialVault
from freightops.services.encryption import mask_token

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_MINUTES = 10

_FROM_SETTINGS = object()


@dataclass
class TokenRecord:
    """A bearer token issued for one carrier."""
    token: str
    label: str
    issued_at: float  # epoch seconds

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["TokenRecord"]:
        if not isinstance(data, dict):
            return None
        try:
            record = cls(
                token=str(data["token"]),
                label=str(data.get("label", "")),
                issued_at=float(data["issued_at"]),
            )
        except (KeyError, TypeError, ValueError):
            return None
        return record if record.token else None


def _empty_blob() -> Dict[str, Optional[TokenRecord]]:
    return {slot: None for slots in PERSISTED_SLOTS.values() for slot in slots}


class TokenStore:
    """
    Carrier token cache with optional JSON file persistence.

    Pass the store explicitly to whatever needs it. Call init() before use
    and teardown() on shutdown.

    Args:
        path: JSON file location. None keeps tokens in memory only.
            Defaults to TOKEN_STORE_PATH.
        vault: Credential vault whose entries are dropped with their token
        clock: Returns epoch seconds
    """

    def __init__(
        self,
        path: Union[str, Path, None, object] = _FROM_SETTINGS,
        vault: Optional[CredentialVault] = None,
        clock: Callable[[], float] = time.time,
    ):
        if path is _FROM_SETTINGS:
            path = settings.TOKEN_STORE_PATH
        self.path: Optional[Path] = Path(path) if path else None
        self.vault = vault
        self._clock = clock
        self._records: Dict[str, Optional[TokenRecord]] = _empty_blob()
        self._lock = Lock()
        self._initialized = False

    # ----- Lifecycle -----

    def init(self) -> "TokenStore":
        """Load the persisted blob, if any."""
        self._records = _empty_blob()
        if self.path and self.path.exists():
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning(f"[TOKENS] Could not read {self.path}: {e}. Starting empty.")
                raw = {}
            if isinstance(raw, dict):
                for slot in self._records:
                    self._records[slot] = TokenRecord.from_dict(raw.get(slot))
            loaded = [slot for slot, rec in self._records.items() if rec]
            logger.info(f"[TOKENS] Loaded persisted tokens for: {loaded or 'none'}")
        self._initialized = True
        return self

    def teardown(self) -> None:
        """Flush to disk and stop accepting the store as initialized."""
        if self._initialized:
            self._persist()
        self._initialized = False

    def __enter__(self) -> "TokenStore":
        return self.init()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.teardown()

    def _persist(self) -> None:
        if not self.path:
            return
        blob = {
            slot: asdict(rec) if rec else None
            for slot, rec in self._records.items()
        }
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(blob, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"[TOKENS] Failed to persist tokens to {self.path}: {e}")

    # ----- Reads -----

    def get_record(self, carrier: str) -> Optional[TokenRecord]:
        identity = normalize_carrier(carrier)
        slots = PERSISTED_SLOTS.get(identity)
        if not slots:
            return None
        with self._lock:
            # Primary slot first, then the alias slots as fallback
            for slot in slots:
                record = self._records.get(slot)
                if record and record.token:
                    return record
        return None

    def get_token(self, carrier: str) -> Optional[str]:
        """Return the bearer token for a carrier or None."""
        record = self.get_record(carrier)
        return record.token if record else None

    def get_estes_token(self) -> Optional[str]:
        return self.get_token(CarrierCode.ESTES.value)

    def get_xpo_token(self) -> Optional[str]:
        return self.get_token(CarrierCode.XPO.value)

    def age_seconds(self, carrier: str) -> Optional[float]:
        record = self.get_record(carrier)
        if not record:
            return None
        return self._clock() - record.issued_at

    def is_expired(self, carrier: str, max_age_minutes: float = DEFAULT_MAX_AGE_MINUTES) -> bool:
        """
        True when no token exists or it is at least max_age_minutes old.

        Example:
            store.is_expired("xpo", 10)
        """
        age = self.age_seconds(carrier)
        if age is None:
            return True
        return age >= max_age_minutes * 60

    # ----- Writes -----

    def set_token(self, carrier: str, token: str, label: str) -> None:
        """
        Store a freshly issued token, stamped with the current time.

        Writes every slot that shares the carrier identity.
        """
        identity = normalize_carrier(carrier)
        slots = PERSISTED_SLOTS.get(identity)
        if not slots:
            logger.warning(f"[TOKENS] Unknown carrier '{carrier}', token not stored")
            return
        if not token:
            logger.warning(f"[TOKENS] Refusing to store empty token for {identity}")
            return

        record = TokenRecord(token=token, label=label, issued_at=self._clock())
        with self._lock:
            for slot in slots:
                self._records[slot] = record
            self._persist()

        logger.info(f"[TOKENS] Token stored for {identity} ({label}): {mask_token(token)}")

    def clear_token(self, carrier: str) -> None:
        """Remove a carrier's token and its cached credentials."""
        identity = normalize_carrier(carrier)
        slots = PERSISTED_SLOTS.get(identity, ())
        with self._lock:
            for slot in slots:
                self._records[slot] = None
            self._persist()

        if self.vault is not None:
            self.vault.clear_credentials(identity)
        logger.info(f"[TOKENS] Token cleared for {identity}")

    def clear_estes_token(self) -> None:
        self.clear_token(CarrierCode.ESTES.value)

    def clear_xpo_token(self) -> None:
        self.clear_token(CarrierCode.XPO.value)

    def clear_all(self) -> None:
        """Remove every token and every cached credential."""
        with self._lock:
            self._records = _empty_blob()
            self._persist()

        if self.vault is not None:
            self.vault.clear_all()
        logger.info("[TOKENS] All tokens cleared")
