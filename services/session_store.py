"""Redis backed storage for sessions, cached user snapshots, rate limit counters
and the short-lived tokens of email verification and two-factor login.
"""

import logfire

import redis.asyncio

from contextlib import contextmanager

from typing import Optional, Tuple

from pydantic import ValidationError

from redis.exceptions import RedisError

from config.settings import Settings
from schema.security import SessionRecord
from schema.users import UserProfile
from security.errors import StoreUnavailable


SESSION_PREFIX = "session:"
USER_CACHE_PREFIX = "user:"
RATE_LIMIT_PREFIX = "rate_limit:"
VERIFICATION_PREFIX = "email_verification:"
VERIFICATION_COOLDOWN_PREFIX = "email_verification_cooldown:"
PENDING_2FA_PREFIX = "pending_2fa:"
TOTP_SETUP_PREFIX = "totp_setup:"

DEFAULT_USER_CACHE_TTL = 1800  # 30 minutes

# INCR and the first EXPIRE run atomically; later increments keep the window's TTL.
FIXED_WINDOW_SCRIPT = """
local current = redis.call('INCR', KEYS[1])
if current == 1 then
    redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return {current, redis.call('TTL', KEYS[1])}
"""


class SessionStore:
    """Key-value store for session records and the per-user profile cache.

    The connection is established lazily on first use and reused afterwards.
    Call `close()` on shutdown. Any Redis failure (including timeouts) is
    raised as `StoreUnavailable`.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        username: Optional[str] = None,
        password: Optional[str] = None,
        db: int = 0,
        socket_timeout: float = 5.0,
        connect_timeout: float = 10.0,
        client: Optional[redis.asyncio.Redis] = None,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.db = db
        self.socket_timeout = socket_timeout
        self.connect_timeout = connect_timeout
        self._client = client
        self._connected = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionStore":
        return cls(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password,
            db=settings.redis_db,
            socket_timeout=settings.redis_socket_timeout,
            connect_timeout=settings.redis_connect_timeout,
        )

    @contextmanager
    def _translate_errors(self, operation: str):
        try:
            yield
        except RedisError as e:
            logfire.error(f"Redis {operation} failed: {str(e)}")
            raise StoreUnavailable(f"Session store unavailable during {operation}") from e

    async def connect(self) -> redis.asyncio.Redis:
        """Connect to Redis once and return the shared client."""
        if self._client is not None and self._connected:
            return self._client

        if self._client is None:
            self._client = redis.asyncio.Redis(
                host=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                db=self.db,
                decode_responses=True,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.connect_timeout,
                client_name="gotchu-api",
            )

        with self._translate_errors("connect"):
            await self._client.ping()

        self._connected = True
        logfire.info(f"Redis connection established ({self.host}:{self.port}/{self.db})")
        return self._client

    async def close(self) -> None:
        """Release the connection pool. Safe to call more than once."""
        if self._client is None:
            return
        await self._client.aclose()
        self._client = None
        self._connected = False
        logfire.info("Redis connection closed")

    async def ping(self) -> bool:
        client = await self.connect()
        with self._translate_errors("ping"):
            return bool(await client.ping())

    # Sessions

    async def set_session(self, session_id: str, record: SessionRecord, ttl_seconds: int) -> None:
        """Store a session record with an expiration, replacing any existing value."""
        client = await self.connect()
        with self._translate_errors("set_session"):
            await client.setex(
                f"{SESSION_PREFIX}{session_id}",
                ttl_seconds,
                record.model_dump_json(by_alias=True),
            )

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        """Return the session record or None when missing or expired."""
        client = await self.connect()
        with self._translate_errors("get_session"):
            raw = await client.get(f"{SESSION_PREFIX}{session_id}")

        if raw is None:
            return None

        try:
            return SessionRecord.model_validate_json(raw)
        except ValidationError as e:
            logfire.warning(f"Discarding unreadable session {session_id}: {str(e)}")
            return None

    async def delete_session(self, session_id: str) -> None:
        client = await self.connect()
        with self._translate_errors("delete_session"):
            await client.delete(f"{SESSION_PREFIX}{session_id}")

    async def extend_session(self, session_id: str, ttl_seconds: int) -> None:
        """Reset the TTL of a session without touching its value. No-op when the key is gone."""
        client = await self.connect()
        with self._translate_errors("extend_session"):
            await client.expire(f"{SESSION_PREFIX}{session_id}", ttl_seconds)

    # User cache

    async def cache_user(
        self, user_id: str, snapshot: UserProfile, ttl_seconds: int = DEFAULT_USER_CACHE_TTL
    ) -> None:
        client = await self.connect()
        with self._translate_errors("cache_user"):
            await client.setex(
                f"{USER_CACHE_PREFIX}{user_id}",
                ttl_seconds,
                snapshot.model_dump_json(by_alias=True),
            )

    async def get_cached_user(self, user_id: str) -> Optional[UserProfile]:
        client = await self.connect()
        with self._translate_errors("get_cached_user"):
            raw = await client.get(f"{USER_CACHE_PREFIX}{user_id}")

        if raw is None:
            return None

        try:
            return UserProfile.model_validate_json(raw)
        except ValidationError as e:
            logfire.warning(f"Discarding unreadable cached user {user_id}: {str(e)}")
            return None

    async def invalidate_user_cache(self, user_id: str) -> None:
        client = await self.connect()
        with self._translate_errors("invalidate_user_cache"):
            await client.delete(f"{USER_CACHE_PREFIX}{user_id}")

    # Counters

    async def increment_window(self, key: str, window_seconds: int) -> Tuple[int, int]:
        """Atomically increment a fixed-window counter.

        Args:
            key (str): Counter key, without the `rate_limit:` prefix.
            window_seconds (int): Window length, applied only when the counter is created.

        Returns:
            Tuple[int, int]: The new count and the seconds left in the window.
        """
        client = await self.connect()
        with self._translate_errors("increment_window"):
            count, ttl = await client.eval(
                FIXED_WINDOW_SCRIPT, 1, f"{RATE_LIMIT_PREFIX}{key}", window_seconds
            )
        return int(count), int(ttl)

    async def delete_counter(self, key: str) -> None:
        """Delete a counter key, without the `rate_limit:` prefix."""
        client = await self.connect()
        with self._translate_errors("delete_counter"):
            await client.delete(f"{RATE_LIMIT_PREFIX}{key}")

    # Short-lived tokens

    async def _set_expiring(self, operation: str, key: str, value: str, ttl_seconds: int) -> None:
        client = await self.connect()
        with self._translate_errors(operation):
            await client.setex(key, ttl_seconds, value)

    async def _get(self, operation: str, key: str) -> Optional[str]:
        client = await self.connect()
        with self._translate_errors(operation):
            return await client.get(key)

    async def _delete(self, operation: str, key: str) -> None:
        client = await self.connect()
        with self._translate_errors(operation):
            await client.delete(key)

    async def set_verification_token(self, token: str, user_id: str, ttl_seconds: int) -> None:
        await self._set_expiring(
            "set_verification_token", f"{VERIFICATION_PREFIX}{token}", user_id, ttl_seconds
        )

    async def consume_verification_token(self, token: str) -> Optional[str]:
        """Return the user id the token was issued for and delete it, so it works only once."""
        client = await self.connect()
        with self._translate_errors("consume_verification_token"):
            return await client.getdel(f"{VERIFICATION_PREFIX}{token}")

    async def acquire_resend_cooldown(self, user_id: str, ttl_seconds: int) -> bool:
        """Start the resend cooldown for `user_id`. False if one is already running."""
        client = await self.connect()
        with self._translate_errors("acquire_resend_cooldown"):
            created = await client.set(
                f"{VERIFICATION_COOLDOWN_PREFIX}{user_id}", "1", ex=ttl_seconds, nx=True
            )
        return bool(created)

    async def set_pending_login(self, token: str, user_id: str, ttl_seconds: int) -> None:
        await self._set_expiring("set_pending_login", f"{PENDING_2FA_PREFIX}{token}", user_id, ttl_seconds)

    async def get_pending_login(self, token: str) -> Optional[str]:
        return await self._get("get_pending_login", f"{PENDING_2FA_PREFIX}{token}")

    async def delete_pending_login(self, token: str) -> None:
        await self._delete("delete_pending_login", f"{PENDING_2FA_PREFIX}{token}")

    async def set_totp_setup(self, user_id: str, secret: str, ttl_seconds: int) -> None:
        await self._set_expiring("set_totp_setup", f"{TOTP_SETUP_PREFIX}{user_id}", secret, ttl_seconds)

    async def get_totp_setup(self, user_id: str) -> Optional[str]:
        return await self._get("get_totp_setup", f"{TOTP_SETUP_PREFIX}{user_id}")

    async def delete_totp_setup(self, user_id: str) -> None:
        await self._delete("delete_totp_setup", f"{TOTP_SETUP_PREFIX}{user_id}")
