"""
Carrier token refresh orchestration

Decides, per carrier, whether the cached token is usable, needs a silent
refresh with cached credentials, or needs a full auto-login with the
environment-configured credentials. Evaluated lazily before each carrier
request; TokenRefreshScheduler optionally keeps tokens warm in the
background.

State machine (per carrier identity):

    UNAUTHENTICATED / STALE
        -> REFRESHING        (silent, cached credentials, session active)
            -> VALID
            -> REAUTH_REQUIRED
        -> REFRESHING_FULL   (default credentials)
            -> VALID
            -> FAILED        (AuthFailure returned, manual login needed)

At most one silent and one full Authenticate call per evaluation.
Concurrent callers for the same identity share one in-flight refresh.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from freightops.core.config import settings
from freightops.core.exceptions import LogisticsError
from freightops.models.carrier import (
    CarrierCode,
    display_name,
    is_known_carrier,
    normalize_carrier,
)
from freightops.services.credential_vault import CredentialVault
from freightops.services.logistics_client import LogisticsClient
from freightops.services.token_store import TokenStore

logger = logging.getLogger(__name__)

DefaultCredentials = Callable[[str], Optional[Tuple[str, str]]]


class TokenState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    VALID = "valid"
    STALE = "stale"
    REFRESHING = "refreshing"
    REAUTH_REQUIRED = "reauth_required"
    REFRESHING_FULL = "refreshing_full"
    FAILED = "failed"


@dataclass
class AuthFailure:
    """
    Returned (never raised) when no usable token could be obtained.

    The caller should present a manual login prompt for the carrier.
    """
    carrier: str
    reason: str
    attempts: List[str] = field(default_factory=list)
    last_error: Optional[LogisticsError] = None
    requires_manual_login: bool = True

    @property
    def message(self) -> str:
        return f"{display_name(self.carrier)} login required: {self.reason}"


def is_auth_failure(result: Union[str, AuthFailure]) -> bool:
    return isinstance(result, AuthFailure)


class RefreshOrchestrator:
    """
    Hands out usable bearer tokens, refreshing them when stale.

    Args:
        store: Token store (already initialized)
        vault: Credential vault shared with the store
        client: Client used for the Authenticate endpoint
        default_credentials: carrier identity -> (username, password) or None
        max_age_minutes: Staleness threshold, defaults to TOKEN_MAX_AGE_MINUTES
    """

    def __init__(
        self,
        store: TokenStore,
        vault: CredentialVault,
        client: LogisticsClient,
        default_credentials: Optional[DefaultCredentials] = None,
        max_age_minutes: Optional[float] = None,
    ):
        self.store = store
        self.vault = vault
        self.client = client
        self.default_credentials = default_credentials or settings.default_credentials
        self.max_age_minutes = (
            settings.TOKEN_MAX_AGE_MINUTES if max_age_minutes is None else max_age_minutes
        )
        self._states: Dict[str, TokenState] = {}
        self._inflight: Dict[str, asyncio.Future] = {}

    # ----- State -----

    def _set_state(self, identity: str, state: TokenState) -> None:
        previous = self._states.get(identity)
        self._states[identity] = state
        if previous != state:
            logger.debug(f"[REFRESH] {identity}: {previous.value if previous else '-'} -> {state.value}")

    def state(self, carrier: str) -> TokenState:
        """Last evaluated state, or the state implied by the store."""
        identity = normalize_carrier(carrier)
        if identity in self._states:
            return self._states[identity]
        if self.store.get_token(identity) is None:
            return TokenState.UNAUTHENTICATED
        if self.store.is_expired(identity, self.max_age_minutes):
            return TokenState.STALE
        return TokenState.VALID

    # ----- Public API -----

    async def ensure_token(self, carrier: str) -> Union[str, AuthFailure]:
        """
        Return a usable bearer token for a carrier, refreshing if needed.

        Returns:
            The token string, or AuthFailure if both silent refresh and
            full auto-login failed

        Example:
            result = await orchestrator.ensure_token("xpo")
            if is_auth_failure(result):
                show_login_prompt(result.carrier, result.message)
        """
        identity = normalize_carrier(carrier)
        if not is_known_carrier(identity):
            logger.warning(f"[REFRESH] Unknown carrier requested: {carrier!r}")
            return AuthFailure(carrier=identity, reason=f"Unknown carrier '{carrier}'")

        token = self.store.get_token(identity)
        if token and not self.store.is_expired(identity, self.max_age_minutes):
            self._set_state(identity, TokenState.VALID)
            return token

        self._set_state(identity, TokenState.STALE if token else TokenState.UNAUTHENTICATED)
        return await self._deduplicated_refresh(identity)

    async def force_refresh(self, carrier: str) -> Union[str, AuthFailure]:
        """Run the refresh path even if the cached token is still fresh."""
        identity = normalize_carrier(carrier)
        if not is_known_carrier(identity):
            return AuthFailure(carrier=identity, reason=f"Unknown carrier '{carrier}'")
        return await self._deduplicated_refresh(identity)

    async def refresh(self, carrier: str) -> Union[str, AuthFailure]:
        """
        Silent refresh only, never falls back to default credentials.

        Used when the operator asks to renew a token they logged in with.
        """
        identity = normalize_carrier(carrier)
        if not is_known_carrier(identity):
            return AuthFailure(carrier=identity, reason=f"Unknown carrier '{carrier}'")

        attempts: List[str] = []
        token, last_error = await self._silent_refresh(identity, attempts)
        if token:
            return token
        return self._fail(identity, attempts, last_error)

    async def login(self, carrier: str, username: str, password: str) -> str:
        """
        Interactive manual login.

        Caches the credentials for later silent refresh and marks the
        session active.

        Raises:
            ApiError subclass, NetworkError or TokenMissingError
        """
        identity = normalize_carrier(carrier)
        result = await self.client.authenticate(identity, username, password)
        self.store.set_token(identity, result.token, result.label)
        self.vault.set_credentials(identity, username, password)
        self._set_state(identity, TokenState.VALID)
        logger.info(f"[AUTH] Manual login succeeded for {identity}")
        return result.token

    def logout(self, carrier: str) -> None:
        """Drop one carrier's token and cached credentials."""
        identity = normalize_carrier(carrier)
        self.store.clear_token(identity)
        self._set_state(identity, TokenState.UNAUTHENTICATED)

    def logout_all(self) -> None:
        """Full logout: every token, every credential, and the session flag."""
        self.store.clear_all()
        self.vault.end_session()
        for identity in list(self._states):
            self._set_state(identity, TokenState.UNAUTHENTICATED)

    # ----- Refresh paths -----

    async def _deduplicated_refresh(self, identity: str) -> Union[str, AuthFailure]:
        future = self._inflight.get(identity)
        if future is None:
            future = asyncio.ensure_future(self._refresh(identity))
            self._inflight[identity] = future

            def _forget(done: asyncio.Future, key: str = identity) -> None:
                if self._inflight.get(key) is done:
                    del self._inflight[key]

            future.add_done_callback(_forget)
        else:
            logger.debug(f"[REFRESH] {identity}: joining in-flight refresh")

        # One caller going away must not cancel the refresh for the others
        return await asyncio.shield(future)

    async def _silent_refresh(
        self,
        identity: str,
        attempts: List[str],
    ) -> Tuple[Optional[str], Optional[LogisticsError]]:
        """One Authenticate with cached credentials. Returns (token, error)."""
        if not self.vault.is_session_active():
            attempts.append("no active session")
            return None, None

        credentials = self.vault.get_credentials(identity)
        if credentials is None:
            attempts.append("no cached credentials")
            return None, None

        self._set_state(identity, TokenState.REFRESHING)
        try:
            result = await self.client.authenticate(
                identity, credentials.username, credentials.password
            )
        except LogisticsError as e:
            attempts.append(f"silent refresh failed: {e.message}")
            logger.warning(f"[REFRESH] {identity}: silent refresh failed ({e.code}): {e.message}")
            return None, e

        self.store.set_token(identity, result.token, result.label)
        self._set_state(identity, TokenState.VALID)
        logger.info(f"[REFRESH] {identity}: silent refresh succeeded")
        return result.token, None

    async def _refresh(self, identity: str) -> Union[str, AuthFailure]:
        attempts: List[str] = []

        # Step 1: silent refresh with cached credentials
        token, last_error = await self._silent_refresh(identity, attempts)
        if token:
            return token

        self._set_state(identity, TokenState.REAUTH_REQUIRED)

        # Step 2: full auto-login with environment credentials
        defaults = self.default_credentials(identity)
        if not defaults:
            attempts.append("no default credentials configured")
            return self._fail(identity, attempts, last_error)

        username, password = defaults
        self._set_state(identity, TokenState.REFRESHING_FULL)
        try:
            result = await self.client.authenticate(identity, username, password)
        except LogisticsError as e:
            attempts.append(f"auto-login failed: {e.message}")
            logger.warning(f"[REFRESH] {identity}: auto-login failed ({e.code}): {e.message}")
            return self._fail(identity, attempts, e)

        self.store.set_token(identity, result.token, result.label)
        self.vault.set_credentials(identity, username, password)
        self._set_state(identity, TokenState.VALID)
        logger.info(f"[REFRESH] {identity}: auto-login succeeded")
        return result.token

    def _fail(
        self,
        identity: str,
        attempts: List[str],
        last_error: Optional[LogisticsError],
    ) -> AuthFailure:
        self._set_state(identity, TokenState.FAILED)
        reason = last_error.message if last_error else attempts[-1]
        logger.error(f"[REFRESH] {identity}: manual login required ({'; '.join(attempts)})")
        return AuthFailure(
            carrier=identity,
            reason=reason,
            attempts=attempts,
            last_error=last_error,
        )


class TokenRefreshScheduler:
    """
    Background loop that keeps carrier tokens fresh.

    Only runs refreshes while the session is active. Each tick checks every
    carrier and calls ensure_token for the expired ones.
    """

    def __init__(
        self,
        orchestrator: RefreshOrchestrator,
        carriers: Iterable[str] = (CarrierCode.ESTES.value, CarrierCode.XPO.value),
        interval_minutes: Optional[float] = None,
    ):
        self.orchestrator = orchestrator
        self.carriers = [normalize_carrier(c) for c in carriers]
        self.interval_minutes = (
            settings.TOKEN_REFRESH_INTERVAL_MINUTES if interval_minutes is None else interval_minutes
        )
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_now(self) -> Dict[str, bool]:
        """
        Refresh every expired carrier token once.

        Returns:
            {carrier: refreshed_ok} for the carriers that needed a refresh
        """
        orchestrator = self.orchestrator
        if not orchestrator.vault.is_session_active():
            logger.debug("[SCHEDULER] Session not active, skipping token refresh")
            return {}

        results: Dict[str, bool] = {}
        for carrier in self.carriers:
            if not orchestrator.store.is_expired(carrier, orchestrator.max_age_minutes):
                continue
            logger.info(f"[SCHEDULER] Token expired for {carrier}, refreshing")
            result = await orchestrator.ensure_token(carrier)
            results[carrier] = not is_auth_failure(result)
            if is_auth_failure(result):
                logger.warning(f"[SCHEDULER] Failed to refresh token for {carrier}: {result.reason}")
        return results

    async def on_activity(self) -> Dict[str, bool]:
        """User came back to the console: mark the session active and check."""
        self.orchestrator.vault.mark_session_active()
        return await self.check_now()

    async def start(self) -> None:
        """Start background refresh task."""
        if self.running:
            return

        async def refresh_loop():
            while True:
                try:
                    await self.check_now()
                except Exception:
                    logger.exception("[SCHEDULER] Token refresh tick failed")
                await asyncio.sleep(self.interval_minutes * 60)

        self._task = asyncio.create_task(refresh_loop())
        logger.info(f"Token refresh task started (interval: {self.interval_minutes} min)")

    async def stop(self) -> None:
        """Stop background refresh task."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            logger.info("Token refresh task stopped")
        self._task = None
