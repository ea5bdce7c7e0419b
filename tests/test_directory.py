"""Tests for directory.py."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from directory import DirectoryCache
from models import User


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _users(*pairs: tuple[str, str]) -> list[User]:
    return [User(id=uid, name=name) for uid, name in pairs]


# ---------------------------------------------------------------------------
# Staleness
# ---------------------------------------------------------------------------


class TestStaleness:
    def test_new_cache_is_stale(self) -> None:
        assert DirectoryCache().is_stale()

    @pytest.mark.asyncio
    async def test_fresh_until_ttl(self) -> None:
        clock = FakeClock()
        cache = DirectoryCache(ttl=600, clock=clock)
        await cache.get(AsyncMock(return_value=_users(("U1", "alice"))))
        clock.now += 599
        assert not cache.is_stale()
        clock.now += 1
        assert cache.is_stale()

    @pytest.mark.asyncio
    async def test_invalidate_keeps_contents(self) -> None:
        cache = DirectoryCache()
        await cache.get(AsyncMock(return_value=_users(("U1", "alice"))))
        cache.invalidate()
        assert cache.is_stale()
        assert cache.resolve("U1") == "alice"


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    @pytest.mark.asyncio
    async def test_loads_once_while_fresh(self) -> None:
        loader = AsyncMock(return_value=_users(("U1", "alice")))
        cache = DirectoryCache()
        await cache.get(loader)
        names = await cache.get(loader)
        loader.assert_awaited_once()
        assert names["U1"] == "alice"
        assert cache.users()["U1"].name == "alice"

    @pytest.mark.asyncio
    async def test_reloads_after_ttl(self) -> None:
        clock = FakeClock()
        loader = AsyncMock(
            side_effect=[_users(("U1", "alice")), _users(("U1", "alice2"), ("U2", "bob"))]
        )
        cache = DirectoryCache(ttl=10, clock=clock)
        await cache.get(loader)
        clock.now += 11
        names = await cache.get(loader)
        assert loader.await_count == 2
        assert names == {"U1": "alice2", "U2": "bob"}

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_load(self) -> None:
        release = asyncio.Event()
        calls = 0

        async def loader() -> list[User]:
            nonlocal calls
            calls += 1
            await release.wait()
            return _users(("U1", "alice"))

        cache = DirectoryCache()
        tasks = [asyncio.create_task(cache.get(loader)) for _ in range(5)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks)
        assert calls == 1
        assert all(r["U1"] == "alice" for r in results)

    @pytest.mark.asyncio
    async def test_failed_load_serves_previous_and_stays_stale(self) -> None:
        clock = FakeClock()
        cache = DirectoryCache(ttl=10, clock=clock)
        await cache.get(AsyncMock(return_value=_users(("U1", "alice"))))
        clock.now += 11

        names = await cache.get(AsyncMock(side_effect=RuntimeError("boom")))

        assert names["U1"] == "alice"
        assert cache.is_stale()

    @pytest.mark.asyncio
    async def test_first_load_failure_returns_empty(self) -> None:
        cache = DirectoryCache()
        names = await cache.get(AsyncMock(side_effect=RuntimeError("boom")))
        assert dict(names) == {}
        assert cache.resolve("U1") == "U1"

    @pytest.mark.asyncio
    async def test_snapshot_is_read_only(self) -> None:
        cache = DirectoryCache()
        await cache.get(AsyncMock(return_value=_users(("U1", "alice"))))
        snapshot = cache.snapshot()
        with pytest.raises(TypeError):
            snapshot["U2"] = "mallory"  # type: ignore[index]
