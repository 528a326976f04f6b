"""
Logistics API Client for XPO / Estes freight integration

Talks to the order processing backend that fronts the carrier APIs:
- Authenticate (exchange carrier login for a bearer token)
- Rate quotes, bills of lading, pickup requests, BOL PDF download

Every non-2xx response is converted into the error taxonomy in
freightops.core.exceptions; transport failures become NetworkError.
Payload shapes for the carrier endpoints are owned by the callers.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import httpx

from freightops.core.config import settings
from freightops.core.exceptions import NetworkError, TokenMissingError
from freightops.core.http_client import raise_for_api_error
from freightops.models.carrier import display_name, normalize_carrier
from freightops.services.encryption import mask_username, sanitize_for_logging

logger = logging.getLogger(__name__)

# API endpoints
AUTHENTICATE_PATH = "/Logistics/Authenticate"
RATE_QUOTE_PATH = "/Logistics/create-rate-quote"
BILL_OF_LADING_PATH = "/Logistics/create-bill-of-lading"
PICKUP_REQUEST_PATH = "/Logistics/create-pickup-request"
BOL_PDF_PATH = "/Logistics/download-bol-pdf"


# =============================================================================
# Token extraction
# =============================================================================

def _flat(key: str) -> Callable[[Any], Optional[str]]:
    def extract(payload: Any) -> Optional[str]:
        if isinstance(payload, dict):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value
        return None
    extract.__name__ = f"extract_{key}"
    return extract


def _nested(key: str) -> Callable[[Any], Optional[str]]:
    flat = _flat(key)

    def extract(payload: Any) -> Optional[str]:
        if isinstance(payload, dict):
            return flat(payload.get("data"))
        return None
    extract.__name__ = f"extract_data_{key}"
    return extract


# Tried in order; the first non-empty string wins
TOKEN_EXTRACTORS: List[Callable[[Any], Optional[str]]] = [
    _flat("token"),
    _flat("accessToken"),
    _flat("access_token"),
    _nested("token"),
    _nested("accessToken"),
    _nested("access_token"),
]


def extract_token(payload: Any) -> str:
    """
    Pull the bearer token out of an Authenticate response.

    Raises:
        TokenMissingError: If no known shape yields a non-empty string

    Example:
        extract_token({"data": {"accessToken": "abc"}}) == "abc"
    """
    for extractor in TOKEN_EXTRACTORS:
        token = extractor(payload)
        if token:
            return token
    raise TokenMissingError(
        "Invalid response: authentication succeeded but no token was returned",
        status=200,
    )


@dataclass
class AuthenticateResult:
    """Successful Authenticate call."""
    carrier: str
    token: str
    label: str
    raw_response: Dict = field(default_factory=dict)


# =============================================================================
# Client
# =============================================================================

class LogisticsClient:
    """
    Async client for the logistics backend.

    Usage:
        async with LogisticsClient() as client:
            result = await client.authenticate("xpo", "user", "secret")
            quote = await client.create_rate_quote(result.token, payload)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.LOGISTICS_API_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.LOGISTICS_HTTP_TIMEOUT_SECONDS
        self._http_client = http_client

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        client = await self._get_http_client()
        url = self._url(path)
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"[HTTP] {method} {path} failed: {e}")
            raise NetworkError(f"Network error: {e}", details={"path": path})

        logger.debug(f"[HTTP] {method} {path} -> {response.status_code}")
        if not response.is_success:
            logger.warning(
                f"[HTTP] {method} {path} -> {response.status_code}: "
                f"{sanitize_for_logging(response.text, 200)}"
            )
        return raise_for_api_error(response)

    # ----- Authentication -----

    async def authenticate(self, carrier: str, username: str, password: str) -> AuthenticateResult:
        """
        Exchange a carrier login for a bearer token.

        Args:
            carrier: Raw carrier name, sent normalized as shippingCompany
            username: Carrier login
            password: Carrier password

        Returns:
            AuthenticateResult with token and display label

        Raises:
            ApiError subclass on non-2xx, NetworkError, TokenMissingError
        """
        identity = normalize_carrier(carrier)
        logger.info(f"[AUTH] Authenticating {identity} as {mask_username(username)}")

        response = await self._send(
            "POST",
            AUTHENTICATE_PATH,
            json={
                "username": username,
                "password": password,
                "shippingCompany": identity,
            },
        )

        try:
            data = response.json()
        except ValueError:
            data = {}

        token = extract_token(data)
        label = ""
        if isinstance(data, dict):
            label = data.get("shippingCompanyName") or ""
        return AuthenticateResult(
            carrier=identity,
            token=token,
            label=label or display_name(identity),
            raw_response=data if isinstance(data, dict) else {},
        )

    # ----- Carrier endpoints -----

    @staticmethod
    def bearer_headers(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def _post_authorized(self, path: str, token: str, payload: Dict) -> Dict:
        response = await self._send("POST", path, json=payload, headers=self.bearer_headers(token))
        try:
            return response.json()
        except ValueError:
            return {}

    async def create_rate_quote(self, token: str, payload: Dict) -> Dict:
        return await self._post_authorized(RATE_QUOTE_PATH, token, payload)

    async def create_bill_of_lading(self, token: str, payload: Dict) -> Dict:
        return await self._post_authorized(BILL_OF_LADING_PATH, token, payload)

    async def create_pickup_request(self, token: str, payload: Dict) -> Dict:
        return await self._post_authorized(PICKUP_REQUEST_PATH, token, payload)

    async def download_bol_pdf(self, token: str, payload: Dict) -> bytes:
        """Download a bill of lading PDF. Returns raw bytes."""
        response = await self._send(
            "POST", BOL_PDF_PATH, json=payload, headers=self.bearer_headers(token)
        )
        return response.content
