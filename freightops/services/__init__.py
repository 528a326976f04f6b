# Services layer for the carrier session
from freightops.services.credential_vault import CredentialVault, Credentials
from freightops.services.token_store import TokenStore, TokenRecord
from freightops.services.logistics_client import LogisticsClient, AuthenticateResult, extract_token
from freightops.services.token_refresh import (
    AuthFailure,
    RefreshOrchestrator,
    TokenRefreshScheduler,
    TokenState,
    is_auth_failure,
)
from freightops.services.carrier_session import CarrierSession
