import pyotp
import pytest


def register(client, username="alice", email="alice@example.com", password="longenough1"):
    response = client.post(
        "/api/auth/register",
        json={"username": username, "email": email, "password": password},
    )
    assert response.status_code == 201
    return response.json()["data"]


def verification_tokens(fake_redis):
    prefix = "email_verification:"
    return [key[len(prefix):] for key in fake_redis._data if key.startswith(prefix)]


def enable_two_factor(client, headers):
    secret = client.post("/api/auth/2fa/setup", headers=headers).json()["data"]["secret"]
    response = client.post("/api/auth/2fa/enable", json={"code": pyotp.TOTP(secret).now()}, headers=headers)
    assert response.status_code == 200
    return secret


def test_register_issues_verification_token(client, fake_redis):
    data = register(client)

    tokens = verification_tokens(fake_redis)

    assert len(tokens) == 1
    assert fake_redis._data[f"email_verification:{tokens[0]}"] == data["user"]["userId"]


def test_verify_email(client, fake_redis, user_repository):
    data = register(client)
    [token] = verification_tokens(fake_redis)

    response = client.post("/api/auth/verify-email", json={"token": token})

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Email verified successfully! Welcome to Gotchu!"
    assert body["data"]["sessionId"]
    assert user_repository.users[data["user"]["userId"]].is_verified is True

    response = client.post("/api/auth/verify-email", json={"token": token})
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_VERIFICATION_TOKEN"


def test_verify_email_requires_token(client):
    response = client.post("/api/auth/verify-email", json={})

    assert response.status_code == 400
    assert response.json()["code"] == "MISSING_TOKEN"


def test_resend_verification(client, fake_redis):
    register(client)

    response = client.post("/api/auth/resend-verification", json={"email": "alice@example.com"})
    assert response.status_code == 429
    assert response.json()["code"] == "VERIFICATION_COOLDOWN"

    fake_redis.advance(61)
    response = client.post("/api/auth/resend-verification", json={"email": "alice@example.com"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Verification email sent successfully"}
    assert len(verification_tokens(fake_redis)) == 2


def test_resend_verification_unknown_email_looks_the_same(client):
    response = client.post("/api/auth/resend-verification", json={"email": "nobody@example.com"})

    assert response.status_code == 200
    assert response.json()["message"] == "Verification email sent successfully"


@pytest.mark.parametrize("payload", [{}, {"email": "not-an-email"}])
def test_resend_verification_requires_valid_email(client, payload):
    response = client.post("/api/auth/resend-verification", json=payload)

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Valid email is required", "code": "INVALID_EMAIL"}


def test_resend_verification_when_already_verified(client, fake_redis):
    register(client)
    [token] = verification_tokens(fake_redis)
    client.post("/api/auth/verify-email", json={"token": token})

    response = client.post("/api/auth/resend-verification", json={"email": "alice@example.com"})

    assert response.status_code == 400
    assert response.json()["code"] == "ALREADY_VERIFIED"


def test_two_factor_setup_and_login(client):
    data = register(client)
    headers = {"X-Session-ID": data["sessionId"]}

    response = client.post("/api/auth/2fa/setup", headers=headers)
    assert response.status_code == 200
    setup = response.json()["data"]
    assert setup["otpauthUrl"].startswith("otpauth://totp/")
    assert setup["expiresAt"]

    response = client.post("/api/auth/2fa/enable", json={"code": pyotp.TOTP(setup["secret"]).now()}, headers=headers)
    assert response.status_code == 200
    assert response.json()["message"] == "2FA enabled successfully"
    assert client.get("/api/auth/me", headers=headers).json()["data"]["user"]["twoFactorEnabled"] is True

    response = client.post("/api/auth/login", json={"identifier": "alice", "password": "longenough1"})
    assert response.status_code == 200
    body = response.json()
    assert body["requires2fa"] is True
    assert body["message"] == "2FA verification required"
    pending_token = body["data"]["pendingToken"]

    response = client.post(
        "/api/auth/login/2fa",
        json={"pendingToken": pending_token, "code": pyotp.TOTP(setup["secret"]).now()},
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Login successful"
    assert response.json()["data"]["sessionId"]


def test_two_factor_setup_requires_auth(client):
    assert client.post("/api/auth/2fa/setup").status_code == 401


def test_two_factor_setup_when_enabled(client):
    headers = {"X-Session-ID": register(client)["sessionId"]}
    enable_two_factor(client, headers)

    response = client.post("/api/auth/2fa/setup", headers=headers)

    assert response.status_code == 409
    assert response.json()["code"] == "TWO_FACTOR_ALREADY_ENABLED"


def test_two_factor_enable_without_setup(client):
    headers = {"X-Session-ID": register(client)["sessionId"]}

    response = client.post("/api/auth/2fa/enable", json={"code": "123456"}, headers=headers)

    assert response.status_code == 400
    assert response.json()["code"] == "TWO_FACTOR_SETUP_REQUIRED"


def test_login_two_factor_rejections(client):
    headers = {"X-Session-ID": register(client)["sessionId"]}
    enable_two_factor(client, headers)

    response = client.post("/api/auth/login/2fa", json={"code": "123456"})
    assert response.status_code == 400
    assert response.json()["code"] == "MISSING_FIELDS"

    response = client.post("/api/auth/login/2fa", json={"pendingToken": "unknown", "code": "123456"})
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_PENDING_LOGIN"

    pending_token = client.post(
        "/api/auth/login", json={"identifier": "alice", "password": "longenough1"}
    ).json()["data"]["pendingToken"]
    response = client.post("/api/auth/login/2fa", json={"pendingToken": pending_token, "code": "abcdef"})
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_2FA_CODE"


def test_two_factor_disable(client):
    headers = {"X-Session-ID": register(client)["sessionId"]}
    enable_two_factor(client, headers)

    response = client.post("/api/auth/2fa/disable", json={"password": "wrong-password"}, headers=headers)
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_CREDENTIALS"

    response = client.post("/api/auth/2fa/disable", json={"password": "longenough1"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["message"] == "2FA disabled successfully"

    response = client.post("/api/auth/2fa/disable", json={"password": "longenough1"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["code"] == "TWO_FACTOR_NOT_ENABLED"

    response = client.post("/api/auth/login", json={"identifier": "alice", "password": "longenough1"})
    assert response.json()["data"]["sessionId"]
