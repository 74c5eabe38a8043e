"""
Tests for environment-based settings.
"""
import pytest
from pydantic import ValidationError

from gateway_reconciliation.config import Settings

REQUIRED = {
    "merchant_id": "TESTMERCHANT",
    "signing_secret": "test-signing-secret",
    "gateway_base_url": "https://gateway.test",
    "return_url": "https://shop.test/payments/return",
    "database_url": "sqlite+aiosqlite:///:memory:",
}


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **{**REQUIRED, **overrides})


class TestSettings:
    @pytest.mark.unit
    def test_defaults(self) -> None:
        settings = _settings()

        assert settings.currency == "INR"
        assert settings.redis_url is None
        assert settings.checkout_url == "https://gateway.test"
        assert settings.is_production is False

    @pytest.mark.unit
    @pytest.mark.parametrize("missing", sorted(REQUIRED))
    def test_required_fields(self, missing: str, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(missing.upper(), raising=False)
        values = {k: v for k, v in REQUIRED.items() if k != missing}

        with pytest.raises(ValidationError):
            Settings(_env_file=None, **values)

    @pytest.mark.unit
    def test_blank_signing_secret_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _settings(signing_secret="   ")

    @pytest.mark.unit
    def test_merchant_id_cannot_contain_delimiter(self) -> None:
        with pytest.raises(ValidationError):
            _settings(merchant_id="MER|CHANT")

    @pytest.mark.unit
    def test_currency_and_log_level_normalized(self) -> None:
        settings = _settings(currency="inr", log_level="debug")

        assert settings.currency == "INR"
        assert settings.log_level == "DEBUG"

    @pytest.mark.unit
    def test_invalid_currency_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _settings(currency="RUPEE")

    @pytest.mark.unit
    def test_environment_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PAYMENT_URL", "https://gateway.test/pay")
        monkeypatch.setenv("APP_ENV", "production")

        settings = _settings()

        assert settings.checkout_url == "https://gateway.test/pay"
        assert settings.is_production is True

    @pytest.mark.unit
    def test_allowed_origins_list(self) -> None:
        settings = _settings(allowed_origins="https://a.test, https://b.test")

        assert settings.get_allowed_origins_list() == ["https://a.test", "https://b.test"]
