import pytest

from datetime import timedelta

from jose import jwt

from security.errors import InvalidToken
from security.tokens import TokenService


@pytest.fixture
def tokens():
    return TokenService(secret="test-secret", issuer="gotchu.lol", audience="gotchu-users")


def test_generate_and_verify(tokens):
    token = tokens.generate("user-1", "session-1", username="alice")

    claims = tokens.verify(token)

    assert claims.user_id == "user-1"
    assert claims.session_id == "session-1"
    assert claims.username == "alice"
    assert claims.sub == "user:user-1"
    assert claims.jti == "session-1"
    assert claims.iss == "gotchu.lol"
    assert claims.aud == "gotchu-users"
    assert claims.exp - claims.iat == 24 * 60 * 60


def test_expired_token_is_rejected(tokens):
    token = tokens.generate("user-1", "session-1", expires_delta=timedelta(seconds=-10))

    with pytest.raises(InvalidToken):
        tokens.verify(token)


def test_token_signed_with_other_secret_is_rejected(tokens):
    other = TokenService(secret="other-secret", issuer="gotchu.lol", audience="gotchu-users")

    with pytest.raises(InvalidToken):
        tokens.verify(other.generate("user-1", "session-1"))


@pytest.mark.parametrize(
    "issuer, audience",
    [("someone-else", "gotchu-users"), ("gotchu.lol", "someone-else")],
)
def test_issuer_and_audience_must_match(tokens, issuer, audience):
    foreign = TokenService(secret="test-secret", issuer=issuer, audience=audience)

    with pytest.raises(InvalidToken):
        tokens.verify(foreign.generate("user-1", "session-1"))


def test_token_without_session_claim_is_rejected(tokens):
    token = jwt.encode(
        {"userId": "user-1", "iss": "gotchu.lol", "aud": "gotchu-users", "iat": 0, "exp": 4102444800},
        "test-secret",
        algorithm="HS256",
    )

    with pytest.raises(InvalidToken):
        tokens.verify(token)


def test_garbage_is_rejected(tokens):
    with pytest.raises(InvalidToken):
        tokens.verify("not.a.jwt")


def test_empty_secret_is_refused():
    with pytest.raises(ValueError):
        TokenService(secret="", issuer="gotchu.lol", audience="gotchu-users")
