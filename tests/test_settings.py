import pytest

from pydantic import ValidationError

from config.settings import load_settings


@pytest.fixture
def environment(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "env-secret")
    return monkeypatch


def test_redis_timeouts_accept_fractional_seconds(environment):
    environment.setenv("REDIS_SOCKET_TIMEOUT", "2.5")
    environment.setenv("REDIS_CONNECT_TIMEOUT", "0.75")

    settings = load_settings()

    assert settings.redis_socket_timeout == 2.5
    assert settings.redis_connect_timeout == 0.75


def test_invalid_values_fall_back_to_defaults(environment):
    environment.setenv("REDIS_SOCKET_TIMEOUT", "fast")
    environment.setenv("SESSION_EXPIRY", "a day")

    settings = load_settings()

    assert settings.redis_socket_timeout == 5.0
    assert settings.session_expiry == 86400


def test_two_factor_and_email_settings(environment):
    environment.setenv("PENDING_2FA_EXPIRY", "120")
    environment.setenv("SMTP_SERVER", "smtp.example.com")
    environment.setenv("SITE_URL", "https://example.com")

    settings = load_settings()

    assert settings.pending_2fa_expiry == 120
    assert settings.smtp_server == "smtp.example.com"
    assert settings.site_url == "https://example.com"
    assert settings.verification_resend_cooldown == 60


def test_jwt_secret_is_required(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "")

    with pytest.raises(ValidationError):
        load_settings()
