"""Test suite for the ephemeral conversation cache."""

import asyncio

import pytest

from realtime_chat.domain.models import ClientMessage

MESSAGES = [ClientMessage(role="user", content="hello")]


@pytest.mark.asyncio
async def test_set_then_get(cache, clock):
    """Test that an entry is present right after set with the TTL applied."""
    entry = await cache.set("a", MESSAGES)

    assert entry.expires_at == clock.now + 3600
    assert await cache.get("a") == entry
    assert await cache.session_ids() == ["a"]


@pytest.mark.asyncio
async def test_sweep_removes_only_expired(cache, clock):
    """Test that sweeping drops the expired entry and keeps a valid one."""
    await cache.set("a", MESSAGES)
    clock.now += 1800
    await cache.set("b", MESSAGES)
    clock.now += 1801

    assert await cache.sweep() == 1
    assert await cache.session_ids() == ["b"]
    assert await cache.get("b") is not None


@pytest.mark.asyncio
async def test_expired_entry_lingers_until_sweep(cache, clock):
    """Test that expiry is lazy: hidden from get, still stored until swept."""
    await cache.set("a", MESSAGES)
    clock.now += 3600

    assert await cache.get("a") is None
    assert await cache.session_ids() == ["a"]
    assert await cache.sweep() == 1
    assert await cache.session_ids() == []


@pytest.mark.asyncio
async def test_last_write_wins(cache, clock):
    """Test that a second set overwrites content and refreshes expiry."""
    await cache.set("a", MESSAGES)
    clock.now += 3000
    newer = [ClientMessage(role="user", content="again")]
    await cache.set("a", newer)
    clock.now += 1000

    await cache.sweep()
    stored = await cache.get("a")
    assert stored is not None
    assert stored.messages == newer
    assert await cache.session_ids() == ["a"]


@pytest.mark.asyncio
async def test_concurrent_sessions_do_not_interfere(cache):
    """Test concurrent writes for many sessions."""
    await asyncio.gather(
        *[cache.set(f"s{i}", [ClientMessage(role="user", content=str(i))]) for i in range(20)]
    )

    assert sorted(await cache.session_ids()) == sorted(f"s{i}" for i in range(20))
    for i in range(20):
        stored = await cache.get(f"s{i}")
        assert stored.messages[0].content == str(i)
