import os

os.environ.setdefault("JWT_SECRET", "test-secret")

import secrets

import logfire
import pytest

from datetime import datetime

import pytz

from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from config.settings import Settings
from main import create_app
from schema.users import UserRecord
from security.errors import EmailExists, RepositoryUnavailable, UsernameExists
from services.auth import AuthService
from services.session_store import SessionStore
from services.users import UserRepository


logfire.configure(send_to_logfire=False, console=False)


class FakeRedis:
    """In-memory stand-in for `redis.asyncio.Redis` with a controllable clock."""

    def __init__(self):
        self.now = 0.0
        self.fail = False
        self.closed = False
        self._data = {}
        self._expires = {}

    def advance(self, seconds):
        self.now += seconds

    def _check(self):
        if self.fail:
            raise RedisConnectionError("redis down")

    def _purge(self, key):
        expires_at = self._expires.get(key)
        if expires_at is not None and expires_at <= self.now:
            self._data.pop(key, None)
            self._expires.pop(key, None)

    def _ttl(self, key):
        self._purge(key)
        if key not in self._data:
            return -2
        if key not in self._expires:
            return -1
        return int(self._expires[key] - self.now)

    async def ping(self):
        self._check()
        return True

    async def get(self, key):
        self._check()
        self._purge(key)
        return self._data.get(key)

    async def setex(self, key, ttl, value):
        self._check()
        self._data[key] = value
        self._expires[key] = self.now + ttl
        return True

    async def set(self, key, value, ex=None, nx=False):
        self._check()
        self._purge(key)
        if nx and key in self._data:
            return None
        self._data[key] = value
        if ex is None:
            self._expires.pop(key, None)
        else:
            self._expires[key] = self.now + ex
        return True

    async def getdel(self, key):
        self._check()
        self._purge(key)
        self._expires.pop(key, None)
        return self._data.pop(key, None)

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            self._purge(key)
            if key in self._data:
                del self._data[key]
                self._expires.pop(key, None)
                removed += 1
        return removed

    async def expire(self, key, ttl):
        self._check()
        self._purge(key)
        if key not in self._data:
            return False
        self._expires[key] = self.now + ttl
        return True

    async def ttl(self, key):
        self._check()
        return self._ttl(key)

    async def eval(self, script, numkeys, *args):
        """Only understands the fixed-window counter script."""
        self._check()
        key, window = args[0], int(args[1])
        self._purge(key)
        count = int(self._data.get(key, 0)) + 1
        self._data[key] = str(count)
        if count == 1:
            self._expires[key] = self.now + window
        return [count, self._ttl(key)]

    async def aclose(self):
        self.closed = True


class FakeUserRepository(UserRepository):
    def __init__(self):
        self.users = {}
        self.password_hashes = {}
        self.totp_secrets = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise RepositoryUnavailable()

    async def get_by_id(self, user_id):
        self._check()
        return self.users.get(user_id)

    async def get_by_username(self, username):
        self._check()
        return next((u for u in self.users.values() if u.username == username), None)

    async def get_by_email(self, email):
        self._check()
        return next((u for u in self.users.values() if u.email == email), None)

    async def find_active_by_identifier(self, identifier):
        self._check()
        return next(
            (
                u
                for u in self.users.values()
                if u.is_active and identifier in (u.username, u.email)
            ),
            None,
        )

    async def create(self, username, email, password_hash, display_name=None, bio=None):
        self._check()
        if await self.get_by_username(username):
            raise UsernameExists()
        if await self.get_by_email(email):
            raise EmailExists()

        now = datetime.now(pytz.utc)
        user = UserRecord(
            id=secrets.token_hex(12),
            username=username,
            email=email,
            display_name=display_name,
            bio=bio,
            created_at=now,
            updated_at=now,
        )
        self.users[user.id] = user
        self.password_hashes[user.id] = password_hash
        return user

    async def get_password_hash(self, user_id):
        self._check()
        return self.password_hashes.get(user_id)

    async def set_password_hash(self, user_id, password_hash):
        self._check()
        self.password_hashes[user_id] = password_hash

    async def record_login(self, user_id, logged_in_at):
        self._check()
        user = self.users[user_id]
        self.users[user_id] = user.model_copy(update={"last_login_at": logged_in_at})

    async def mark_verified(self, user_id):
        self._check()
        self.update(user_id, is_verified=True)

    async def get_totp_secret(self, user_id):
        self._check()
        return self.totp_secrets.get(user_id)

    async def set_two_factor(self, user_id, totp_secret):
        self._check()
        if totp_secret is None:
            self.totp_secrets.pop(user_id, None)
        else:
            self.totp_secrets[user_id] = totp_secret
        self.update(user_id, two_factor_enabled=totp_secret is not None)

    def update(self, user_id, **changes):
        self.users[user_id] = self.users[user_id].model_copy(update=changes)


@pytest.fixture
def settings():
    return Settings(jwt_secret="test-secret", bcrypt_rounds=4)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def session_store(fake_redis):
    return SessionStore(client=fake_redis)


@pytest.fixture
def user_repository():
    return FakeUserRepository()


@pytest.fixture
def auth_service(settings, session_store, user_repository):
    return AuthService.from_settings(settings, session_store, user_repository)


@pytest.fixture
def app(settings, session_store, user_repository):
    return create_app(
        settings=settings,
        session_store=session_store,
        user_repository=user_repository,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client

