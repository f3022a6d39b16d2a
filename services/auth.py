"""Contains the authentication workflows: registration, login, sessions and tokens.

Sessions live server-side in the session store; the bearer token only points
at a session. Destroying the session therefore revokes every token issued for
it, even while the token signature is still valid.

Accounts with two-factor authentication enabled log in in two steps: the
password check yields a short-lived pending login, and only a valid TOTP code
for that pending login opens a session.
"""

import uuid
import secrets
import pytz
import logfire

from datetime import datetime, timedelta

from typing import Optional, Tuple, Union

from config.settings import Settings
from schema.security import AuthResult, PendingLogin, RateLimitResult, SessionRecord, TokenClaims
from schema.users import UserProfile, UserRecord
from security.errors import (
    AlreadyVerified,
    EmailExists,
    InvalidCredentials,
    InvalidPendingLogin,
    InvalidSession,
    InvalidTwoFactorCode,
    InvalidVerificationToken,
    PasswordUnchanged,
    RateLimited,
    TwoFactorAlreadyEnabled,
    TwoFactorNotEnabled,
    TwoFactorSetupRequired,
    UsernameExists,
    VerificationCooldown,
    WeakPassword,
)
from security.hashing import PasswordHasher
from security.tokens import TokenService
from security.two_factor import TwoFactorService
from services.rate_limiter import RateLimiter
from services.session_store import SessionStore
from services.users import UserRepository
from services.validation import is_password_strong, normalize_identifier
from services.verification import EmailVerificationService


AUTH_RATE_LIMIT_PREFIX = "auth:"
TWO_FACTOR_RATE_LIMIT_PREFIX = "2fa:"


class AuthService:
    """Orchestrates the hasher, user repository, session store, rate limiter and tokens."""

    def __init__(
        self,
        store: SessionStore,
        repository: UserRepository,
        hasher: PasswordHasher,
        tokens: TokenService,
        rate_limiter: RateLimiter,
        verification: EmailVerificationService,
        two_factor: TwoFactorService,
        session_ttl: int = 86400,
        user_cache_ttl: int = 1800,
        auth_rate_limit_max: int = 5,
        auth_rate_limit_window: int = 300,
        totp_setup_ttl: int = 600,
        pending_login_ttl: int = 300,
    ):
        self.store = store
        self.repository = repository
        self.hasher = hasher
        self.tokens = tokens
        self.rate_limiter = rate_limiter
        self.verification = verification
        self.two_factor = two_factor
        self.session_ttl = session_ttl
        self.user_cache_ttl = user_cache_ttl
        self.auth_rate_limit_max = auth_rate_limit_max
        self.auth_rate_limit_window = auth_rate_limit_window
        self.totp_setup_ttl = totp_setup_ttl
        self.pending_login_ttl = pending_login_ttl

    @classmethod
    def from_settings(
        cls, settings: Settings, store: SessionStore, repository: UserRepository
    ) -> "AuthService":
        return cls(
            store=store,
            repository=repository,
            hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
            tokens=TokenService(
                secret=settings.jwt_secret,
                issuer=settings.jwt_issuer,
                audience=settings.jwt_audience,
                expires_in=timedelta(seconds=settings.session_expiry),
            ),
            rate_limiter=RateLimiter(store),
            verification=EmailVerificationService.from_settings(settings, store),
            two_factor=TwoFactorService(issuer=settings.totp_issuer),
            session_ttl=settings.session_expiry,
            user_cache_ttl=settings.user_cache_expiry,
            auth_rate_limit_max=settings.auth_rate_limit_max,
            auth_rate_limit_window=settings.auth_rate_limit_window,
            totp_setup_ttl=settings.totp_setup_expiry,
            pending_login_ttl=settings.pending_2fa_expiry,
        )

    async def register(self, username: str, email: str, password: str) -> AuthResult:
        """Create a new user and log them in.

        Args:
            username (str): Requested username. Stored trimmed and lower-cased.
            email (str): Email address. Stored trimmed and lower-cased.
            password (str): Plain text password, already checked by the caller.

        Raises:
            UsernameExists: If the username is taken.
            EmailExists: If the email is taken.

        Returns:
            AuthResult: The new session, its token and the session record.
        """
        display_name = username.strip()
        username = normalize_identifier(username)
        email = normalize_identifier(email)

        with logfire.span("register user {username}", username=username):
            if await self.repository.get_by_username(username) is not None:
                logfire.info(f"Registration rejected, username taken: {username}")
                raise UsernameExists()

            if await self.repository.get_by_email(email) is not None:
                logfire.info(f"Registration rejected, email taken for username {username}")
                raise EmailExists()

            password_hash = await self.hasher.hash_async(password)

            user = await self.repository.create(
                username=username,
                email=email,
                password_hash=password_hash,
                display_name=display_name,
                bio=f"Welcome to {display_name}'s profile!",
            )

            logfire.info(f"User registered: {user.username} ({user.id})")
            return await self.create_session(user)

    async def login(self, identifier: str, password: str) -> Union[AuthResult, PendingLogin]:
        """Authenticate by username or email and open a session.

        Unknown, inactive and wrong-password attempts are indistinguishable to
        the caller: all raise `InvalidCredentials`. For accounts with 2FA
        enabled a `PendingLogin` is returned instead of a session.
        """
        identifier = normalize_identifier(identifier)

        with logfire.span("login {identifier}", identifier=identifier):
            user = await self.repository.find_active_by_identifier(identifier)

            if user is None:
                await self.hasher.dummy_verify_async()
                logfire.info(f"Login failed, no active user for {identifier}")
                raise InvalidCredentials()

            password_hash = await self.repository.get_password_hash(user.id)
            if password_hash is None:
                await self.hasher.dummy_verify_async()
                logfire.warning(f"Login failed, no credential stored for {user.username}")
                raise InvalidCredentials()

            if not await self.hasher.verify_async(password, password_hash):
                logfire.info(f"Login failed, wrong password for {user.username}")
                raise InvalidCredentials()

            if user.two_factor_enabled:
                return await self._start_pending_login(user)

            return await self._complete_login(user)

    async def _start_pending_login(self, user: UserRecord) -> PendingLogin:
        pending_token = secrets.token_urlsafe(32)
        await self.store.set_pending_login(pending_token, user.id, self.pending_login_ttl)

        logfire.info(f"Password accepted for {user.username}, waiting for 2FA code")
        return PendingLogin(
            pending_token=pending_token,
            user_id=user.id,
            expires_at=datetime.now(pytz.utc) + timedelta(seconds=self.pending_login_ttl),
        )

    async def _complete_login(self, user: UserRecord) -> AuthResult:
        logged_in_at = datetime.now(pytz.utc)
        await self.repository.record_login(user.id, logged_in_at)
        user = user.model_copy(update={"last_login_at": logged_in_at})

        logfire.info(f"User logged in: {user.username} ({user.id})")
        return await self.create_session(user)

    async def login_two_factor(self, pending_token: str, code: str) -> AuthResult:
        """Finish a login started by `login` for an account with 2FA enabled.

        Each pending login accepts at most `auth_rate_limit_max` codes; after
        that it is discarded and the user has to log in again.

        Raises:
            RateLimited: When too many codes were tried for this pending login.
            InvalidPendingLogin: If the pending login is unknown or expired.
            InvalidTwoFactorCode: If the code does not match.
        """
        attempt_key = f"{TWO_FACTOR_RATE_LIMIT_PREFIX}{pending_token}"
        attempts = await self.rate_limiter.check_rate_limit(
            attempt_key, self.auth_rate_limit_max, self.pending_login_ttl
        )
        if attempts.exceeded:
            await self.store.delete_pending_login(pending_token)
            raise RateLimited(attempts, "Too many 2FA attempts. Please log in again.")

        user_id = await self.store.get_pending_login(pending_token)
        if user_id is None:
            raise InvalidPendingLogin()

        user = await self.repository.get_by_id(user_id)
        if user is None or not user.is_active or not user.two_factor_enabled:
            await self.store.delete_pending_login(pending_token)
            raise InvalidPendingLogin()

        secret = await self.repository.get_totp_secret(user_id)
        if not self.two_factor.verify(secret, code):
            logfire.info(f"2FA login failed for {user.username}, wrong code")
            raise InvalidTwoFactorCode()

        await self.store.delete_pending_login(pending_token)
        await self.rate_limiter.clear(attempt_key)
        # The password step was counted under whichever identifier was used
        await self.clear_auth_rate_limit(user.username)
        await self.clear_auth_rate_limit(user.email)

        return await self._complete_login(user)

    async def create_session(self, user: UserRecord) -> AuthResult:
        """Store a new session for `user`, warm the user cache and issue a token."""
        session_id = str(uuid.uuid4())
        now = datetime.now(pytz.utc)

        record = SessionRecord(
            user_id=user.id,
            username=user.username,
            email=user.email,
            is_verified=user.is_verified,
            plan=user.plan,
            created_at=now,
        )

        await self.store.set_session(session_id, record, self.session_ttl)
        await self.store.cache_user(user.id, user.to_profile(), self.user_cache_ttl)

        return AuthResult(
            session_id=session_id,
            token=self.generate_jwt(user.id, session_id, user.username),
            user=record,
            expires_at=now + timedelta(seconds=self.session_ttl),
        )

    async def validate_session(self, session_id: str) -> Optional[SessionRecord]:
        """Return the live session and push its expiry out by a full TTL, or None."""
        if not session_id:
            return None

        session = await self.store.get_session(session_id)
        if session is None:
            return None

        await self.store.extend_session(session_id, self.session_ttl)
        return session

    async def destroy_session(self, session_id: str) -> None:
        await self.store.delete_session(session_id)
        logfire.info(f"Session destroyed: {session_id}")

    async def get_user_by_id(self, user_id: str) -> Optional[UserProfile]:
        """Read-through lookup: the cache first, then the repository (re-populating the cache)."""
        cached = await self.store.get_cached_user(user_id)
        if cached is not None:
            return cached

        user = await self.repository.get_by_id(user_id)
        if user is None:
            return None

        profile = user.to_profile()
        await self.store.cache_user(user_id, profile, self.user_cache_ttl)
        return profile

    def generate_jwt(self, user_id: str, session_id: str, username: Optional[str] = None) -> str:
        return self.tokens.generate(user_id, session_id, username=username)

    def verify_jwt(self, token: str) -> TokenClaims:
        return self.tokens.verify(token)

    async def check_auth_rate_limit(self, identifier: str) -> RateLimitResult:
        """Count one authentication attempt for `identifier`.

        Raises:
            RateLimited: When the attempt budget for the current window is spent.
        """
        result = await self.rate_limiter.check_rate_limit(
            f"{AUTH_RATE_LIMIT_PREFIX}{normalize_identifier(identifier)}",
            self.auth_rate_limit_max,
            self.auth_rate_limit_window,
        )

        if result.exceeded:
            minutes = max(1, self.auth_rate_limit_window // 60)
            raise RateLimited(
                result,
                f"Too many login attempts. Please try again in {minutes} minutes.",
            )

        return result

    async def clear_auth_rate_limit(self, identifier: str) -> None:
        await self.rate_limiter.clear(f"{AUTH_RATE_LIMIT_PREFIX}{normalize_identifier(identifier)}")

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        """Replace the password of `user_id` after checking the current one.

        Raises:
            WeakPassword: If `new_password` does not meet the length rules.
            PasswordUnchanged: If `new_password` equals `current_password`.
            InvalidCredentials: If `current_password` is wrong.
        """
        is_strong, message = is_password_strong(new_password)
        if not is_strong:
            raise WeakPassword(message)

        if current_password == new_password:
            raise PasswordUnchanged()

        password_hash = await self.repository.get_password_hash(user_id)
        if not await self.hasher.verify_async(current_password, password_hash):
            logfire.info(f"Password change rejected for {user_id}, wrong current password")
            raise InvalidCredentials("Current password is incorrect")

        new_hash = await self.hasher.hash_async(new_password)
        await self.repository.set_password_hash(user_id, new_hash)
        await self.store.invalidate_user_cache(user_id)

        logfire.info(f"Password changed for user {user_id}")

    async def is_username_available(self, username: str) -> bool:
        return await self.repository.get_by_username(normalize_identifier(username)) is None

    async def refresh_token(self, session_id: str) -> Tuple[str, SessionRecord]:
        """Extend `session_id` and issue a fresh token for it.

        Raises:
            InvalidSession: If the session is missing or expired.
        """
        session = await self.validate_session(session_id)
        if session is None:
            raise InvalidSession()

        return self.generate_jwt(session.user_id, session_id, session.username), session

    # Email verification

    async def issue_email_verification(self, user_id: str) -> str:
        """Issue the first verification token for a new account and start its resend cooldown."""
        await self.verification.acquire_resend_cooldown(user_id)
        return await self.verification.issue_token(user_id)

    async def resend_verification(self, email: str) -> Optional[Tuple[UserRecord, str]]:
        """Issue a new verification token for the account registered with `email`.

        Raises:
            AlreadyVerified: If the account is already verified.
            VerificationCooldown: If a token was issued less than the cooldown ago.

        Returns:
            Optional[Tuple[UserRecord, str]]: The user and the new token, or None
                when no active account uses `email`.
        """
        email = normalize_identifier(email)

        user = await self.repository.get_by_email(email)
        if user is None or not user.is_active:
            logfire.info("Verification resend requested for an unknown email")
            return None

        if user.is_verified:
            raise AlreadyVerified()

        if not await self.verification.acquire_resend_cooldown(user.id):
            seconds = int(self.verification.resend_cooldown.total_seconds())
            raise VerificationCooldown(
                f"Please wait {seconds} seconds before requesting another verification email"
            )

        token = await self.verification.issue_token(user.id)
        return user, token

    async def verify_email(self, token: str) -> Optional[AuthResult]:
        """Redeem a verification token and mark the owning account verified.

        Accounts without 2FA are logged in straight away. With 2FA enabled no
        session is opened and None is returned.

        Raises:
            InvalidVerificationToken: If the token is unknown, expired or already used.
        """
        user_id = await self.verification.consume_token(token)
        if user_id is None:
            raise InvalidVerificationToken()

        user = await self.repository.get_by_id(user_id)
        if user is None or not user.is_active:
            raise InvalidVerificationToken()

        if not user.is_verified:
            await self.repository.mark_verified(user_id)
            user = user.model_copy(update={"is_verified": True})
            logfire.info(f"Email verified for {user.username} ({user.id})")

        await self.store.invalidate_user_cache(user_id)

        if user.two_factor_enabled:
            return None

        return await self.create_session(user)

    # Two-factor authentication

    async def setup_two_factor(self, user: UserProfile) -> Tuple[str, str, datetime]:
        """Generate a TOTP secret for `user`, kept aside until confirmed by `enable_two_factor`.

        Raises:
            TwoFactorAlreadyEnabled: If the account already has 2FA.

        Returns:
            Tuple[str, str, datetime]: The secret, its `otpauth://` URI and when the setup expires.
        """
        if user.two_factor_enabled:
            raise TwoFactorAlreadyEnabled()

        secret = self.two_factor.generate_secret()
        await self.store.set_totp_setup(user.id, secret, self.totp_setup_ttl)

        expires_at = datetime.now(pytz.utc) + timedelta(seconds=self.totp_setup_ttl)
        return secret, self.two_factor.provisioning_uri(secret, user.email), expires_at

    async def enable_two_factor(self, user_id: str, code: str) -> None:
        """Turn 2FA on once `code` proves the authenticator holds the pending secret.

        Raises:
            TwoFactorSetupRequired: If there is no pending secret for the user.
            InvalidTwoFactorCode: If the code does not match the pending secret.
        """
        secret = await self.store.get_totp_setup(user_id)
        if secret is None:
            raise TwoFactorSetupRequired()

        if not self.two_factor.verify(secret, code):
            raise InvalidTwoFactorCode()

        await self.repository.set_two_factor(user_id, secret)
        await self.store.delete_totp_setup(user_id)
        await self.store.invalidate_user_cache(user_id)

        logfire.info(f"2FA enabled for user {user_id}")

    async def disable_two_factor(self, user: UserProfile, password: str) -> None:
        """Turn 2FA off after re-checking the password.

        Raises:
            TwoFactorNotEnabled: If the account has no 2FA.
            InvalidCredentials: If `password` is wrong.
        """
        if not user.two_factor_enabled:
            raise TwoFactorNotEnabled()

        password_hash = await self.repository.get_password_hash(user.id)
        if password_hash is None or not await self.hasher.verify_async(password, password_hash):
            logfire.info(f"2FA disable rejected for {user.id}, wrong password")
            raise InvalidCredentials("Invalid password")

        await self.repository.set_two_factor(user.id, None)
        await self.store.invalidate_user_cache(user.id)

        logfire.info(f"2FA disabled for user {user.id}")
