"""
Pytest configuration and fixtures for FreightOps tests.
"""
import os
from typing import List
from unittest.mock import AsyncMock

import pytest

# Set test environment before importing freightops modules
os.environ["ENVIRONMENT"] = "development"
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests-only"
os.environ["TOKEN_STORE_PATH"] = ""
os.environ["XPO_USERNAME"] = ""
os.environ["XPO_PASSWORD"] = ""
os.environ["ESTES_USERNAME"] = ""
os.environ["ESTES_PASSWORD"] = ""

from freightops.services.credential_vault import CredentialVault
from freightops.services.logistics_client import AuthenticateResult
from freightops.services.token_store import TokenStore


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested delays and advances the clock instead of waiting."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        self.clock.advance(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep(clock) -> FakeSleep:
    return FakeSleep(clock)


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(encrypt_at_rest=False)


@pytest.fixture
def store(vault, clock) -> TokenStore:
    """Memory-only token store on the fake clock."""
    return TokenStore(path=None, vault=vault, clock=clock).init()


@pytest.fixture
def mock_logistics_client() -> AsyncMock:
    """Create mock logistics client whose Authenticate always succeeds."""
    client = AsyncMock()

    async def authenticate(carrier, username, password):
        return AuthenticateResult(
            carrier=carrier,
            token=f"token-{carrier}-{username}",
            label=carrier.upper(),
            raw_response={},
        )

    client.authenticate = AsyncMock(side_effect=authenticate)
    client.close = AsyncMock()
    return client
