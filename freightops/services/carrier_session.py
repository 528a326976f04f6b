"""
Carrier Session Service

High-level service that coordinates:
- Token store and credential vault lifecycle
- Token refresh before each carrier request
- Rate-limit retry around the carrier call itself

The console builds one CarrierSession at startup and passes it to whatever
needs carrier access.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from freightops.core.http_client import OnRetry, ResilientRequestExecutor
from freightops.services.credential_vault import CredentialVault
from freightops.services.logistics_client import LogisticsClient
from freightops.services.token_refresh import (
    AuthFailure,
    RefreshOrchestrator,
    TokenRefreshScheduler,
    is_auth_failure,
)
from freightops.services.token_store import TokenStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CarrierSession:
    """
    Owns the session components and wires them together.

    Usage:
        async with CarrierSession() as session:
            quote = await session.call(
                "xpo", lambda token: session.client.create_rate_quote(token, payload)
            )
            if is_auth_failure(quote):
                ...prompt for login...
    """

    def __init__(
        self,
        store: Optional[TokenStore] = None,
        vault: Optional[CredentialVault] = None,
        client: Optional[LogisticsClient] = None,
        executor: Optional[ResilientRequestExecutor] = None,
        orchestrator: Optional[RefreshOrchestrator] = None,
        background_refresh: bool = False,
    ):
        self.vault = vault or (store.vault if store and store.vault else CredentialVault())
        self.store = store or TokenStore(vault=self.vault)
        if self.store.vault is None:
            self.store.vault = self.vault
        self.client = client or LogisticsClient()
        self.executor = executor or ResilientRequestExecutor()
        self.orchestrator = orchestrator or RefreshOrchestrator(self.store, self.vault, self.client)
        self.scheduler = TokenRefreshScheduler(self.orchestrator) if background_refresh else None

    async def init(self) -> "CarrierSession":
        self.store.init()
        if self.scheduler:
            await self.scheduler.start()
        logger.info(f"[SESSION] Carrier session ready (api: {self.client.base_url})")
        return self

    async def teardown(self) -> None:
        if self.scheduler:
            await self.scheduler.stop()
        self.store.teardown()
        await self.client.close()

    async def __aenter__(self) -> "CarrierSession":
        return await self.init()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.teardown()

    async def call(
        self,
        carrier: str,
        operation: Callable[[str], Awaitable[T]],
        max_retries: Optional[int] = None,
        on_retry: Optional[OnRetry] = None,
    ) -> Union[T, AuthFailure]:
        """
        Run a carrier request with a fresh token and rate-limit retries.

        Args:
            carrier: Raw carrier name
            operation: Coroutine function taking the bearer token
            max_retries: Rate limit retries, defaults to RETRY_MAX_RETRIES
            on_retry: Observability hook, see ResilientRequestExecutor

        Returns:
            The operation result, or AuthFailure when no token is available
        """
        token = await self.orchestrator.ensure_token(carrier)
        if is_auth_failure(token):
            return token

        return await self.executor.execute(
            lambda: operation(token),
            max_retries=max_retries,
            on_retry=on_retry,
        )

    async def login(self, carrier: str, username: str, password: str) -> str:
        return await self.orchestrator.login(carrier, username, password)

    def logout(self, carrier: Optional[str] = None) -> None:
        """Log out of one carrier, or everything when carrier is None."""
        if carrier is None:
            self.orchestrator.logout_all()
        else:
            self.orchestrator.logout(carrier)

    def status(self) -> Dict[str, Dict[str, Any]]:
        """Per-carrier token status for diagnostics. Never exposes tokens."""
        report = {}
        for carrier in ("estes", "xpo"):
            record = self.store.get_record(carrier)
            report[carrier] = {
                "state": self.orchestrator.state(carrier).value,
                "label": record.label if record else None,
                "age_seconds": self.store.age_seconds(carrier),
                "has_credentials": self.vault.get_credentials(carrier) is not None,
            }
        report["session_active"] = {"value": self.vault.is_session_active()}
        return report
