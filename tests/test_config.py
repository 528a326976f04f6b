import pytest

from freightops.core.config import Settings


class TestSettings:
    def test_trailing_slash_stripped(self):
        s = Settings(ENVIRONMENT="development", LOGISTICS_API_BASE_URL="https://api.test/v1/")
        assert s.LOGISTICS_API_BASE_URL == "https://api.test/v1"

    def test_empty_store_path_is_memory_only(self):
        s = Settings(ENVIRONMENT="development", TOKEN_STORE_PATH="  ")
        assert s.TOKEN_STORE_PATH is None

    def test_debug_forbidden_in_production(self):
        with pytest.raises(ValueError):
            Settings(ENVIRONMENT="production", DEBUG=True)

    def test_vault_encryption_needs_secret_in_production(self):
        with pytest.raises(ValueError):
            Settings(ENVIRONMENT="production", CREDENTIAL_VAULT_ENCRYPTION=True, SECRET_KEY="")

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError):
            Settings(ENVIRONMENT="development", RETRY_MAX_RETRIES=-1)

    def test_default_credentials_need_both_halves(self):
        s = Settings(ENVIRONMENT="development", XPO_USERNAME="user", XPO_PASSWORD="")
        assert s.default_credentials("xpo") is None

    def test_default_credentials(self):
        s = Settings(ENVIRONMENT="development", ESTES_USERNAME="user", ESTES_PASSWORD="pw")
        assert s.default_credentials("estes") == ("user", "pw")
        assert s.default_credentials("fedex") is None


def test_configure_logging_quiets_httpx():
    import logging

    from freightops.core.logging_config import configure_logging

    configure_logging("debug")
    assert logging.getLogger("httpx").level == logging.WARNING
