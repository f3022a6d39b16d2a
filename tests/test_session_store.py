import pytest

from datetime import datetime

import pytz

from fakeredis import aioredis as fake_aioredis

from schema.security import SessionRecord
from schema.users import UserProfile
from security.errors import StoreUnavailable
from services.session_store import SessionStore


def make_record(**overrides):
    values = {
        "user_id": "user-1",
        "username": "alice",
        "email": "alice@example.com",
        "created_at": datetime(2026, 1, 1, tzinfo=pytz.utc),
    }
    values.update(overrides)
    return SessionRecord(**values)


@pytest.mark.asyncio
async def test_set_and_get_session(session_store, fake_redis):
    await session_store.set_session("s1", make_record(), 60)

    record = await session_store.get_session("s1")

    assert record == make_record()
    assert '"userId":"user-1"' in fake_redis._data["session:s1"]


@pytest.mark.asyncio
async def test_session_expires(session_store, fake_redis):
    await session_store.set_session("s1", make_record(), 60)

    fake_redis.advance(61)

    assert await session_store.get_session("s1") is None


@pytest.mark.asyncio
async def test_extend_session_resets_ttl(session_store, fake_redis):
    await session_store.set_session("s1", make_record(), 60)

    fake_redis.advance(50)
    await session_store.extend_session("s1", 60)
    fake_redis.advance(50)

    assert await session_store.get_session("s1") is not None


@pytest.mark.asyncio
async def test_extend_missing_session_is_noop(session_store):
    await session_store.extend_session("missing", 60)

    assert await session_store.get_session("missing") is None


@pytest.mark.asyncio
async def test_delete_session_is_idempotent(session_store):
    await session_store.set_session("s1", make_record(), 60)

    await session_store.delete_session("s1")
    await session_store.delete_session("s1")

    assert await session_store.get_session("s1") is None


@pytest.mark.asyncio
async def test_unreadable_session_is_a_miss(session_store, fake_redis):
    await fake_redis.setex("session:broken", 60, "{not json")

    assert await session_store.get_session("broken") is None


@pytest.mark.asyncio
async def test_user_cache_uses_its_own_namespace(session_store, fake_redis):
    profile = UserProfile(id="user-1", username="alice", email="alice@example.com")

    await session_store.cache_user("user-1", profile)

    assert "user:user-1" in fake_redis._data
    assert await fake_redis.ttl("user:user-1") == 1800
    assert await session_store.get_cached_user("user-1") == profile
    assert await session_store.get_session("user-1") is None

    await session_store.invalidate_user_cache("user-1")

    assert await session_store.get_cached_user("user-1") is None


@pytest.mark.asyncio
async def test_increment_window_sets_ttl_only_once(session_store, fake_redis):
    assert await session_store.increment_window("auth:alice", 300) == (1, 300)

    fake_redis.advance(100)

    assert await session_store.increment_window("auth:alice", 300) == (2, 200)


@pytest.mark.asyncio
async def test_redis_failures_raise_store_unavailable(session_store, fake_redis):
    await session_store.connect()
    fake_redis.fail = True

    with pytest.raises(StoreUnavailable):
        await session_store.get_session("s1")

    with pytest.raises(StoreUnavailable):
        await session_store.set_session("s1", make_record(), 60)

    with pytest.raises(StoreUnavailable):
        await session_store.increment_window("auth:alice", 300)


@pytest.mark.asyncio
async def test_close_releases_client(session_store, fake_redis):
    await session_store.connect()

    await session_store.close()

    assert fake_redis.closed is True


@pytest.fixture
def real_store():
    """Store over fakeredis, which runs the Lua counter script for real."""
    client = fake_aioredis.FakeRedis(decode_responses=True)
    return client, SessionStore(client=client)


@pytest.mark.asyncio
async def test_fixed_window_script_sets_ttl_on_first_increment(real_store):
    client, store = real_store

    count, ttl = await store.increment_window("auth:alice", 300)

    assert count == 1
    assert 0 < ttl <= 300
    assert 0 < await client.ttl("rate_limit:auth:alice") <= 300


@pytest.mark.asyncio
async def test_fixed_window_script_leaves_ttl_alone_after_first_increment(real_store):
    client, store = real_store
    await store.increment_window("auth:alice", 300)
    await client.expire("rate_limit:auth:alice", 10)

    count, ttl = await store.increment_window("auth:alice", 300)

    assert count == 2
    assert 0 < ttl <= 10
    assert await client.get("rate_limit:auth:alice") == "2"


@pytest.mark.asyncio
async def test_delete_counter_starts_a_new_window(real_store):
    _, store = real_store
    await store.increment_window("auth:alice", 300)
    await store.increment_window("auth:alice", 300)

    await store.delete_counter("auth:alice")

    assert (await store.increment_window("auth:alice", 300))[0] == 1


@pytest.mark.asyncio
async def test_verification_token_is_single_use(real_store):
    client, store = real_store
    await store.set_verification_token("abc", "user-1", 86400)

    assert 0 < await client.ttl("email_verification:abc") <= 86400
    assert await store.consume_verification_token("abc") == "user-1"
    assert await store.consume_verification_token("abc") is None


@pytest.mark.asyncio
async def test_resend_cooldown_is_acquired_once(real_store):
    client, store = real_store

    assert await store.acquire_resend_cooldown("user-1", 60) is True
    assert await store.acquire_resend_cooldown("user-1", 60) is False
    assert 0 < await client.ttl("email_verification_cooldown:user-1") <= 60


@pytest.mark.asyncio
async def test_pending_login_and_totp_setup_round_trip(real_store):
    _, store = real_store
    await store.set_pending_login("pending", "user-1", 300)
    await store.set_totp_setup("user-1", "SECRET", 600)

    assert await store.get_pending_login("pending") == "user-1"
    assert await store.get_totp_setup("user-1") == "SECRET"

    await store.delete_pending_login("pending")
    await store.delete_totp_setup("user-1")

    assert await store.get_pending_login("pending") is None
    assert await store.get_totp_setup("user-1") is None
