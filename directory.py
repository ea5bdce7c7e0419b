"""Time-bounded cache of the workspace user directory."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from types import MappingProxyType

from models import User

logger = logging.getLogger("slackzc.directory")

DEFAULT_TTL = 600.0

UserLoader = Callable[[], Awaitable[list[User]]]


class DirectoryCache:
    """User id → display name, refreshed lazily once older than *ttl*.

    Readers never take the lock: the mapping is replaced wholesale on
    refresh, so a reader sees either the old or the new directory.
    Refreshes are serialized by an :class:`asyncio.Lock` and re-check the
    staleness after acquiring it, so concurrent callers trigger at most
    one remote load.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._names: Mapping[str, str] = MappingProxyType({})
        self._users: Mapping[str, User] = MappingProxyType({})
        self._refreshed_at: float | None = None
        self._lock = asyncio.Lock()

    @property
    def refreshed_at(self) -> float | None:
        return self._refreshed_at

    def is_stale(self) -> bool:
        if self._refreshed_at is None:
            return True
        return self._clock() - self._refreshed_at >= self._ttl

    def snapshot(self) -> Mapping[str, str]:
        """Return the current id → name mapping without refreshing."""
        return self._names

    def users(self) -> Mapping[str, User]:
        return self._users

    def resolve(self, user_id: str) -> str:
        """Return the cached display name for *user_id*, or the id itself."""
        return self._names.get(user_id, user_id)

    def invalidate(self) -> None:
        """Mark the cache stale; contents are kept until the next refresh."""
        self._refreshed_at = None

    async def refresh_if_stale(self, loader: UserLoader) -> Mapping[str, str]:
        """Reload through *loader* when stale and return the current mapping.

        A failed load is logged and the previous contents are served; the
        cache stays stale so the next caller tries again.
        """
        if not self.is_stale():
            return self._names
        async with self._lock:
            if not self.is_stale():
                return self._names
            try:
                loaded = await loader()
            except Exception as exc:
                logger.warning("User directory refresh failed: %s", exc)
                return self._names
            users = {user.id: user for user in loaded}
            # Swap both views in one step so readers never see a mix
            self._users = MappingProxyType(users)
            self._names = MappingProxyType(
                {uid: user.resolved_name for uid, user in users.items()}
            )
            self._refreshed_at = self._clock()
            logger.debug("User directory refreshed with %d users", len(users))
            return self._names

    async def get(self, loader: UserLoader) -> Mapping[str, str]:
        """Return the mapping, refreshing first when stale."""
        return await self.refresh_if_stale(loader)
