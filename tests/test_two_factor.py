import time

import pyotp
import pytest

from schema.security import AuthResult, PendingLogin
from security.errors import (
    InvalidCredentials,
    InvalidPendingLogin,
    InvalidTwoFactorCode,
    RateLimited,
    TwoFactorAlreadyEnabled,
    TwoFactorNotEnabled,
    TwoFactorSetupRequired,
)
from security.two_factor import TwoFactorService


def wrong_code(secret):
    totp = pyotp.TOTP(secret)
    valid = {totp.at(time.time() + offset) for offset in (-30, 0, 30)}
    return next(code for code in ("000000", "111111", "222222", "333333") if code not in valid)


async def enable_two_factor(auth_service, user_repository):
    await auth_service.register("alice", "alice@example.com", "password123")
    user = await auth_service.get_user_by_id((await user_repository.get_by_username("alice")).id)

    secret, _, _ = await auth_service.setup_two_factor(user)
    await auth_service.enable_two_factor(user.id, pyotp.TOTP(secret).now())
    return user.id, secret


def test_verify_accepts_current_code():
    service = TwoFactorService()
    secret = service.generate_secret()

    assert service.verify(secret, pyotp.TOTP(secret).now()) is True


@pytest.mark.parametrize("code", ["", "12345", "1234567", "12a456", None])
def test_verify_rejects_malformed_codes(code):
    service = TwoFactorService()

    assert service.verify(service.generate_secret(), code) is False


def test_provisioning_uri_names_issuer_and_account():
    service = TwoFactorService(issuer="gotchu.lol")

    uri = service.provisioning_uri(service.generate_secret(), "alice@example.com")

    assert uri.startswith("otpauth://totp/")
    assert "issuer=gotchu.lol" in uri
    assert "alice%40example.com" in uri


@pytest.mark.asyncio
async def test_setup_keeps_secret_pending_until_enabled(auth_service, user_repository, fake_redis):
    await auth_service.register("alice", "alice@example.com", "password123")
    user = await auth_service.get_user_by_id((await user_repository.get_by_username("alice")).id)

    secret, uri, expires_at = await auth_service.setup_two_factor(user)

    assert fake_redis._data[f"totp_setup:{user.id}"] == secret
    assert secret in uri
    assert expires_at is not None
    assert user_repository.users[user.id].two_factor_enabled is False
    assert user.id not in user_repository.totp_secrets


@pytest.mark.asyncio
async def test_enable_requires_setup_and_valid_code(auth_service, user_repository, fake_redis):
    await auth_service.register("alice", "alice@example.com", "password123")
    user = await auth_service.get_user_by_id((await user_repository.get_by_username("alice")).id)

    with pytest.raises(TwoFactorSetupRequired):
        await auth_service.enable_two_factor(user.id, "123456")

    secret, _, _ = await auth_service.setup_two_factor(user)
    with pytest.raises(InvalidTwoFactorCode):
        await auth_service.enable_two_factor(user.id, "abcdef")

    await auth_service.enable_two_factor(user.id, pyotp.TOTP(secret).now())

    assert user_repository.users[user.id].two_factor_enabled is True
    assert user_repository.totp_secrets[user.id] == secret
    assert f"totp_setup:{user.id}" not in fake_redis._data
    assert (await auth_service.get_user_by_id(user.id)).two_factor_enabled is True


@pytest.mark.asyncio
async def test_setup_rejected_when_already_enabled(auth_service, user_repository):
    user_id, _ = await enable_two_factor(auth_service, user_repository)

    with pytest.raises(TwoFactorAlreadyEnabled):
        await auth_service.setup_two_factor(await auth_service.get_user_by_id(user_id))


@pytest.mark.asyncio
async def test_login_with_two_factor(auth_service, user_repository, fake_redis):
    user_id, secret = await enable_two_factor(auth_service, user_repository)

    pending = await auth_service.login("alice", "password123")

    assert isinstance(pending, PendingLogin)
    assert pending.user_id == user_id

    with pytest.raises(InvalidTwoFactorCode):
        await auth_service.login_two_factor(pending.pending_token, wrong_code(secret))

    result = await auth_service.login_two_factor(pending.pending_token, pyotp.TOTP(secret).now())

    assert isinstance(result, AuthResult)
    assert result.user.user_id == user_id
    assert f"session:{result.session_id}" in fake_redis._data
    assert f"pending_2fa:{pending.pending_token}" not in fake_redis._data

    # The pending login is spent
    with pytest.raises(InvalidPendingLogin):
        await auth_service.login_two_factor(pending.pending_token, pyotp.TOTP(secret).now())


@pytest.mark.asyncio
async def test_login_two_factor_unknown_pending_token(auth_service):
    with pytest.raises(InvalidPendingLogin):
        await auth_service.login_two_factor("never-issued", "123456")


@pytest.mark.asyncio
async def test_too_many_codes_discard_pending_login(auth_service, user_repository, fake_redis):
    _, secret = await enable_two_factor(auth_service, user_repository)
    pending = await auth_service.login("alice", "password123")

    for _ in range(5):
        with pytest.raises(InvalidTwoFactorCode):
            await auth_service.login_two_factor(pending.pending_token, wrong_code(secret))

    with pytest.raises(RateLimited) as exc_info:
        await auth_service.login_two_factor(pending.pending_token, pyotp.TOTP(secret).now())

    assert exc_info.value.message == "Too many 2FA attempts. Please log in again."
    assert f"pending_2fa:{pending.pending_token}" not in fake_redis._data


@pytest.mark.asyncio
async def test_pending_login_expires(auth_service, user_repository, fake_redis):
    _, secret = await enable_two_factor(auth_service, user_repository)
    pending = await auth_service.login("alice", "password123")

    fake_redis.advance(301)

    with pytest.raises(InvalidPendingLogin):
        await auth_service.login_two_factor(pending.pending_token, pyotp.TOTP(secret).now())


@pytest.mark.asyncio
async def test_disable_requires_password(auth_service, user_repository):
    user_id, _ = await enable_two_factor(auth_service, user_repository)
    user = await auth_service.get_user_by_id(user_id)

    with pytest.raises(InvalidCredentials) as exc_info:
        await auth_service.disable_two_factor(user, "wrong-password")
    assert exc_info.value.message == "Invalid password"

    await auth_service.disable_two_factor(user, "password123")

    assert user_repository.users[user_id].two_factor_enabled is False
    assert user_id not in user_repository.totp_secrets
    assert isinstance(await auth_service.login("alice", "password123"), AuthResult)

    with pytest.raises(TwoFactorNotEnabled):
        await auth_service.disable_two_factor(await auth_service.get_user_by_id(user_id), "password123")
