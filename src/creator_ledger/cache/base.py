from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional


class AsyncCacheBackend(ABC):
    """
    Async cache for item lookups. Cached values are read models only; the
    ledger never trusts a cached counter for a write.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Optional[Any]]],
        ttl_seconds: int | None = None,
        still_valid: Optional[Callable[[], bool]] = None,
    ) -> Optional[Any]:
        """
        Cached value, or the loader's result stored under `key`. Misses are
        not cached, and neither is a load that `still_valid()` rejects
        (e.g. because the key was invalidated while loading).
        """
        value = await self.get(key)
        if value is None:
            value = await loader()
            if value is not None and (still_valid is None or still_valid()):
                await self.set(key, value, ttl_seconds=ttl_seconds)
        return value
