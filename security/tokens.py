"""Bearer token issuing and verification.

Tokens are a transport convenience layered over server-side sessions: a valid
signature is necessary but not sufficient, the embedded `sessionId` must still
resolve to a live session.
"""

import logfire

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from pydantic import ValidationError

from schema.security import TokenClaims
from security.errors import InvalidToken


ALGORITHM = "HS256"


class TokenService:
    """Signs and verifies HS256 JWTs with fixed issuer and audience claims."""

    def __init__(
        self,
        secret: str,
        issuer: str,
        audience: str,
        expires_in: timedelta = timedelta(hours=24),
    ):
        if not secret:
            raise ValueError("token signing secret cannot be empty")
        self.secret = secret
        self.issuer = issuer
        self.audience = audience
        self.expires_in = expires_in

    def generate(
        self,
        user_id: str,
        session_id: str,
        username: str | None = None,
        expires_delta: timedelta | None = None,
    ) -> str:
        """Creates a signed token referencing `session_id`.

        Args:
            user_id (str): The user the session belongs to.
            session_id (str): The server-side session the token points at.
            username (str | None, optional): Included for client convenience. Defaults to None.
            expires_delta (timedelta | None, optional): Overrides the configured lifetime. Defaults to None.

        Returns:
            str: The encoded JWT.
        """
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta if expires_delta is not None else self.expires_in)

        to_encode = {
            "userId": user_id,
            "sessionId": session_id,
            "sub": f"user:{user_id}",
            "jti": session_id,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": int(now.timestamp()),
            "nbf": int(now.timestamp()),
            "exp": int(expire.timestamp()),
        }
        if username:
            to_encode["username"] = username

        return jwt.encode(to_encode, self.secret, algorithm=ALGORITHM)

    def verify(self, token: str) -> TokenClaims:
        """Decode and validate a token.

        Raises:
            InvalidToken: On a bad signature, expiry, issuer or audience mismatch, or missing claims.

        Returns:
            TokenClaims: The validated claims.
        """
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options={
                    "require_exp": True,
                    "require_iat": True,
                    "require_iss": True,
                    "require_aud": True,
                },
            )
            return TokenClaims.model_validate(payload)
        except JWTError as e:
            logfire.debug(f"Rejected bearer token: {str(e)}")
            raise InvalidToken() from e
        except ValidationError as e:
            logfire.debug(f"Bearer token is missing required claims: {str(e)}")
            raise InvalidToken() from e
